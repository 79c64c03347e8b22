"""QingCloud machine driver: the lifecycle contract the host tool calls into.

The driver only translates between DriverState and the orchestrator; all
waiting and convergence logic lives in qcmachine.provisioning.
"""

import asyncio
import enum
import logging
import os
from dataclasses import dataclass, fields, replace

from qcmachine.config import (
    DEFAULT_CPU,
    DEFAULT_IMAGE,
    DEFAULT_MEMORY,
    DEFAULT_SSH_PORT,
    DEFAULT_SSH_USER,
    DEFAULT_ZONE,
    DRIVER_NAME,
)
from qcmachine.provisioning.client import QingCloudClient
from qcmachine.provisioning.errors import DriverError, PartialProvisioningError, QCMachineError
from qcmachine.provisioning.orchestrate import (
    DEFAULT_EIP_BANDWIDTH,
    DEFAULT_VXNET,
    DOCKER_PORT,
    InstanceOrchestrator,
    ProvisioningDefaults,
)
from qcmachine.provisioning.remote import check_os_env
from qcmachine.provisioning.ssh import generate_ssh_key, read_public_key, wait_for_ssh
from qcmachine.provisioning.types import (
    INSTANCE_STATUS_CEASED,
    INSTANCE_STATUS_PENDING,
    INSTANCE_STATUS_RUNNING,
    INSTANCE_STATUS_STOPPED,
    INSTANCE_STATUS_SUSPENDED,
    INSTANCE_STATUS_TERMINATED,
    ElasticIP,
    InstanceSpec,
    SecurityGroup,
)
from qcmachine.provisioning.waiters import DEFAULT_OP_TIMEOUT, PollPolicy

logger = logging.getLogger(__name__)


class MachineState(enum.Enum):
    NONE = "None"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPED = "Stopped"
    ERROR = "Error"


_STATUS_TO_STATE = {
    INSTANCE_STATUS_PENDING: MachineState.STARTING,
    INSTANCE_STATUS_RUNNING: MachineState.RUNNING,
    INSTANCE_STATUS_STOPPED: MachineState.STOPPED,
    INSTANCE_STATUS_SUSPENDED: MachineState.ERROR,
    INSTANCE_STATUS_TERMINATED: MachineState.ERROR,
    INSTANCE_STATUS_CEASED: MachineState.ERROR,
}


@dataclass
class DriverState:
    """Everything the host tool persists for one machine."""

    machine_name: str = ""
    store_path: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    zone: str = DEFAULT_ZONE
    image: str = DEFAULT_IMAGE
    cpu: int = DEFAULT_CPU
    memory: int = DEFAULT_MEMORY
    login_keypair: str = ""
    # Set when create registered login_keypair itself; remove deletes it.
    owns_keypair: bool = False
    network_id: str = DEFAULT_VXNET
    ssh_key_path: str = ""
    ssh_user: str = DEFAULT_SSH_USER
    ssh_port: int = DEFAULT_SSH_PORT
    op_timeout: int = DEFAULT_OP_TIMEOUT
    eip_bandwidth: int = DEFAULT_EIP_BANDWIDTH
    instance_id: str = ""
    ip_address: str = ""
    eip: ElasticIP | None = None
    security_group: SecurityGroup | None = None

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["eip"] = {"id": self.eip.id, "address": self.eip.address} if self.eip else None
        data["security_group"] = (
            {"id": self.security_group.id, "name": self.security_group.name} if self.security_group else None
        )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "DriverState":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if kwargs.get("eip"):
            kwargs["eip"] = ElasticIP(id=kwargs["eip"]["id"], address=kwargs["eip"].get("address", ""))
        if kwargs.get("security_group"):
            sg = kwargs["security_group"]
            kwargs["security_group"] = SecurityGroup(id=sg["id"], name=sg.get("name", ""))
        return cls(**kwargs)


class Driver:
    """Lifecycle operations for one QingCloud machine.

    Args:
        state: persisted machine record; mutated as provisioning produces ids.
        client: QingCloudClient to use instead of one built from the state.
        check_os: run the SSH-based OS environment check after create.
        dry_run: log API requests instead of sending them (create only).
    """

    def __init__(self, state, client=None, defaults=None, policy=None, check_os=True, dry_run=False):
        self.state = state
        self._client = client
        self.defaults = defaults or ProvisioningDefaults(
            default_network=DEFAULT_VXNET, eip_bandwidth=state.eip_bandwidth
        )
        self.policy = policy or PollPolicy(op_timeout=state.op_timeout)
        self.check_os = check_os
        self.dry_run = dry_run
        self._orchestrator = None
        # One mutation at a time per machine.
        self._lock = asyncio.Lock()

    def driver_name(self):
        return DRIVER_NAME

    def get_client(self):
        if self._client is None:
            if not self.dry_run and not (self.state.access_key_id and self.state.secret_access_key):
                raise DriverError("QingCloud access key id and secret access key are required")
            self._client = QingCloudClient(
                self.state.access_key_id,
                self.state.secret_access_key,
                self.state.zone,
                dry_run=self.dry_run,
            )
        return self._client

    @property
    def orchestrator(self):
        if self._orchestrator is None:
            self._orchestrator = InstanceOrchestrator(self.get_client(), self.defaults, self.policy)
        return self._orchestrator

    def _require_instance(self):
        if not self.state.instance_id:
            raise DriverError(f"Machine '{self.state.machine_name}' has no instance id recorded")
        return self.state.instance_id

    # ── Create ────────────────────────────────────────────────────

    async def pre_create_check(self):
        """Validate flags before anything is created."""
        if self.state.login_keypair:
            if not self.state.ssh_key_path:
                raise DriverError("--qingcloud-login-keypair must be used together with --qingcloud-ssh-keypath")
            if self.dry_run:
                logger.info(f"[dry-run] Would check that key pair [{self.state.login_keypair}] exists")
            else:
                await self.get_client().describe_key_pair(self.state.login_keypair)
        if not self.state.network_id:
            raise DriverError("--qingcloud-vxnet-id is required")

    async def _create_ssh_key(self):
        """Make sure a local SSH key exists and register it as a QingCloud key pair."""
        key_path = self.state.ssh_key_path or os.path.join(self.state.store_path, "id_rsa")
        if self.dry_run:
            logger.info(f"[dry-run] Would register SSH key {key_path} as key pair '{self.state.machine_name}'")
            self.state.ssh_key_path = key_path
            self.state.login_keypair = "dry-run-keypair"
            return

        if not os.path.exists(os.path.expanduser(key_path)):
            logger.info(f"Creating SSH key {key_path}...")
            await generate_ssh_key(key_path)
        else:
            logger.debug(f"Using SSH key {key_path}")
        self.state.ssh_key_path = key_path

        public_key = read_public_key(key_path)
        logger.debug(f"Creating key pair: {self.state.machine_name}")
        self.state.login_keypair = await self.get_client().create_key_pair(self.state.machine_name, public_key)
        self.state.owns_keypair = True
        logger.info(f"Registered key pair [{self.state.login_keypair}].")

    def _record(self, instance, eip=None, security_group=None):
        self.state.instance_id = instance.id
        if eip:
            self.state.eip = eip
        if security_group:
            self.state.security_group = security_group
        address = instance.address or instance.private_ip
        if address:
            self.state.ip_address = address

    async def create(self):
        """Create the instance and record everything it produced in the state.

        Partial results are recorded before any error is re-raised, so
        remove() can clean them up.
        """
        async with self._lock:
            spec = InstanceSpec(
                cpu=self.state.cpu,
                memory_mb=self.state.memory,
                image_id=self.state.image,
                login_keypair_id=self.state.login_keypair,
                network_id=self.state.network_id,
                instance_name=self.state.machine_name,
                instance_class=self.defaults.instance_class_for(self.state.zone),
            )
            if not self.state.login_keypair:
                # Reject a bad spec before the key pair is registered.
                replace(spec, login_keypair_id="<to be registered>").validate()
                await self._create_ssh_key()
                spec = replace(spec, login_keypair_id=self.state.login_keypair)

            orchestrator = self.orchestrator
            try:
                instance = await orchestrator.provision(spec)
            except PartialProvisioningError as e:
                self._record(e.instance, e.elastic_ip, e.security_group)
                raise
            except QCMachineError:
                if orchestrator.instance_id:
                    self.state.instance_id = orchestrator.instance_id
                raise

            if self.dry_run:
                return
            self._record(instance, instance.elastic_ip, instance.security_group)
            logger.info(f"Created instance [{instance.id}] IP address: [{self.state.ip_address}]")

            if self.check_os:
                await self._check_os_env()

    async def _check_os_env(self):
        """Wait for SSH and check the OS. Failures are logged, never raised."""
        ip = self.state.ip_address
        key = os.path.expanduser(self.state.ssh_key_path)
        logger.info(f"Check OS env on instance [{self.state.instance_id}]")
        ok = await wait_for_ssh(ip, self.state.ssh_user, self.state.ssh_port, key, timeout=self.state.op_timeout)
        if ok:
            address = f"{self.state.ssh_user}@{ip}"
            ok = await check_os_env(address, key, self.state.ssh_port, op_timeout=self.state.op_timeout)
        if not ok:
            logger.warning(f"OS environment check on instance [{self.state.instance_id}] did not pass")

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self):
        async with self._lock:
            await self.orchestrator.start(self._require_instance())

    async def stop(self):
        """Stop gracefully."""
        async with self._lock:
            await self.orchestrator.stop(self._require_instance(), force=False)

    async def kill(self):
        """Stop forcefully."""
        async with self._lock:
            await self.orchestrator.stop(self._require_instance(), force=True)

    async def restart(self):
        async with self._lock:
            await self.orchestrator.restart(self._require_instance())

    async def remove(self):
        """Terminate the instance and release what was bound to it.

        A key pair registered by create() is deleted last; failing to delete
        it is logged, not raised.
        """
        async with self._lock:
            if self.state.instance_id:
                await self.orchestrator.remove(
                    self.state.instance_id,
                    eip_id=self.state.eip.id if self.state.eip else None,
                    security_group_id=self.state.security_group.id if self.state.security_group else None,
                )
            elif not self.state.owns_keypair:
                logger.warning(f"Machine '{self.state.machine_name}' has no instance, nothing to remove")
                return

            if self.state.owns_keypair and self.state.login_keypair:
                try:
                    await self.get_client().delete_key_pair(self.state.login_keypair)
                    logger.info(f"Deleted key pair [{self.state.login_keypair}].")
                except QCMachineError as e:
                    logger.error(f"Delete key pair [{self.state.login_keypair}] failed: {e}")

    # ── Inspection ────────────────────────────────────────────────

    async def get_state(self):
        """Map the instance's provider status to a MachineState. Read-only."""
        if not self.state.instance_id:
            return MachineState.NONE
        instance = await self.get_client().describe_instance(self.state.instance_id)
        return _STATUS_TO_STATE.get(instance.status, MachineState.ERROR)

    def get_ip(self):
        if not self.state.ip_address:
            raise DriverError("IP address is not set")
        return self.state.ip_address

    def get_ssh_hostname(self):
        return self.get_ip()

    def get_url(self):
        """Docker host URL, e.g. tcp://1.2.3.4:2376, or "" before an address is known."""
        if not self.state.ip_address:
            return ""
        return f"tcp://{self.state.ip_address}:{DOCKER_PORT}"
