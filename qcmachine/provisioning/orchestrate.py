"""Instance orchestration: provision, start/stop/restart and teardown.

Each step issues one mutation, waits for its job, then waits for the
resource to converge. Steps run one at a time; no two mutations are ever
outstanding for the same instance.
"""

import enum
import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping

from qcmachine.provisioning.errors import PartialProvisioningError, QCMachineError
from qcmachine.provisioning.types import (
    INSTANCE_STATUS_PENDING,
    INSTANCE_STATUS_RUNNING,
    INSTANCE_STATUS_STOPPED,
    INSTANCE_STATUS_TERMINATED,
    ElasticIP,
    InstanceDescriptor,
    SecurityGroup,
    SecurityGroupRule,
)
from qcmachine.provisioning.waiters import DEFAULT_POLL_POLICY, wait_for_job, wait_for_network, wait_for_status

logger = logging.getLogger(__name__)

DEFAULT_VXNET = "vxnet-0"
DEFAULT_EIP_BANDWIDTH = 4  # Mbps
DOCKER_PORT = 2376

DEFAULT_SECURITY_GROUP_RULES = (
    SecurityGroupRule(priority=1, protocol="tcp", action="accept", val1="22"),
    SecurityGroupRule(priority=2, protocol="tcp", action="accept", val1=str(DOCKER_PORT)),
)

# Zone -> instance class. Empty by default: zones not listed leave the choice
# to the provider, and RunInstances is sent without an instance_class.
DEFAULT_INSTANCE_CLASSES = MappingProxyType({})


@dataclass(frozen=True)
class ProvisioningDefaults:
    """Read-only tables the orchestrator consults while provisioning."""

    default_network: str = DEFAULT_VXNET
    eip_bandwidth: int = DEFAULT_EIP_BANDWIDTH
    security_group_rules: tuple[SecurityGroupRule, ...] = DEFAULT_SECURITY_GROUP_RULES
    instance_classes: Mapping[str, int] = field(default_factory=lambda: DEFAULT_INSTANCE_CLASSES)

    def instance_class_for(self, zone):
        return self.instance_classes.get(zone)


class ProvisioningStage(enum.Enum):
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    AWAITING_JOB = "awaiting job"
    AWAITING_STATUS = "awaiting running status"
    AWAITING_NETWORK = "awaiting network"
    AWAITING_EIP = "awaiting elastic ip"
    AWAITING_EIP_JOB = "awaiting elastic ip job"
    AWAITING_SECURITY_GROUP = "awaiting security group"
    READY = "ready"
    ERROR = "error"


class InstanceOrchestrator:
    """Drives one instance through its lifecycle against a QingCloudClient.

    ``stage`` and ``instance_id`` record how far the last provision() got, so
    a caller can still find an instance whose later steps failed.
    """

    def __init__(self, client, defaults=None, policy=None):
        self.client = client
        self.defaults = defaults or ProvisioningDefaults()
        self.policy = policy or DEFAULT_POLL_POLICY
        self.stage = None
        self.instance_id = None

    def _enter(self, stage):
        logger.debug(f"Provisioning stage: {stage.value}")
        self.stage = stage

    # ── Provisioning ──────────────────────────────────────────────

    async def provision(self, spec):
        """Create an instance and wait until it is usable.

        Returns:
            InstanceDescriptor with ``address`` set to the elastic IP when one
            was bound, otherwise to the private IP.

        Raises:
            ValidationError: the spec was rejected; no RPC was issued.
            PartialProvisioningError: the instance exists but binding the
                elastic IP or security group failed.
        """
        try:
            return await self._provision(spec)
        except QCMachineError:
            self._enter(ProvisioningStage.ERROR)
            raise

    async def _provision(self, spec):
        self._enter(ProvisioningStage.VALIDATING)
        spec.validate()

        self._enter(ProvisioningStage.SUBMITTING)
        logger.info(
            f"Creating QingCloud instance '{spec.instance_name}' (cpu={spec.cpu}, memory={spec.memory_mb}MB)..."
        )
        job_id, instance_id = await self.client.run_instance(spec)

        if self.client.dry_run:
            logger.info("[dry-run] Would wait for the job, running status and a private IP.")
            if spec.network_id == self.defaults.default_network:
                logger.info("[dry-run] Would allocate and associate an elastic IP and apply a security group.")
            self._enter(ProvisioningStage.READY)
            return InstanceDescriptor(id="dry-run-instance", status=INSTANCE_STATUS_PENDING, name=spec.instance_name)

        self.instance_id = instance_id
        logger.info(f"Instance submitted (id={instance_id}, job={job_id}).")

        self._enter(ProvisioningStage.AWAITING_JOB)
        await wait_for_job(self.client, job_id, self.policy)

        self._enter(ProvisioningStage.AWAITING_STATUS)
        await wait_for_status(self.client, instance_id, INSTANCE_STATUS_RUNNING, self.policy)

        self._enter(ProvisioningStage.AWAITING_NETWORK)
        instance = await wait_for_network(self.client, instance_id, self.policy)
        instance = replace(instance, address=instance.private_ip)
        logger.info(f"Instance [{instance_id}] is running with private IP {instance.private_ip}.")

        if spec.network_id == self.defaults.default_network:
            instance = await self._bind_public_access(instance, spec.instance_name)

        self._enter(ProvisioningStage.READY)
        logger.info(f"Instance [{instance_id}] is ready at {instance.address}.")
        return instance

    async def _bind_public_access(self, instance, name):
        """Allocate and associate an EIP, then apply a fresh security group.

        Any failure is re-raised as PartialProvisioningError carrying whatever
        was allocated so far. Nothing is rolled back.
        """
        eip_id = group_id = None
        try:
            self._enter(ProvisioningStage.AWAITING_EIP)
            eip_id = await self.client.allocate_eip(self.defaults.eip_bandwidth, name=name)
            logger.info(f"Allocated EIP [{eip_id}], associating with instance [{instance.id}]...")
            job_id = await self.client.associate_eip(eip_id, instance.id)

            self._enter(ProvisioningStage.AWAITING_EIP_JOB)
            await wait_for_job(self.client, job_id, self.policy)
            eip = await self.client.describe_eip(eip_id)
            instance = replace(instance, elastic_ip=eip, address=eip.address or instance.private_ip)
            logger.info(f"Bound EIP [{eip.address}] to instance [{instance.id}]")

            self._enter(ProvisioningStage.AWAITING_SECURITY_GROUP)
            rules = self.defaults.security_group_rules
            group_id = await self.client.create_security_group(name)
            await self.client.add_security_group_rules(group_id, rules)
            job_id = await self.client.apply_security_group(group_id, instance.id)
            await wait_for_job(self.client, job_id, self.policy)
            group = SecurityGroup(id=group_id, name=name, rules=tuple(rules))
            logger.info(f"Bound security group [{group_id}] to instance [{instance.id}]")
        except QCMachineError as e:
            raise PartialProvisioningError(
                instance,
                self.stage.value,
                elastic_ip=instance.elastic_ip or (ElasticIP(id=eip_id) if eip_id else None),
                security_group=SecurityGroup(id=group_id, name=name) if group_id else None,
            ) from e
        return replace(instance, security_group=group)

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self, instance_id):
        logger.info(f"Starting instance [{instance_id}]...")
        job_id = await self.client.start_instance(instance_id)
        await wait_for_job(self.client, job_id, self.policy)
        return await wait_for_status(self.client, instance_id, INSTANCE_STATUS_RUNNING, self.policy)

    async def stop(self, instance_id, force=False):
        logger.info(f"Stopping instance [{instance_id}]{' (forced)' if force else ''}...")
        job_id = await self.client.stop_instance(instance_id, force=force)
        await wait_for_job(self.client, job_id, self.policy)
        return await wait_for_status(self.client, instance_id, INSTANCE_STATUS_STOPPED, self.policy)

    async def restart(self, instance_id):
        """Restart and wait for running status. Network readiness is not re-checked."""
        logger.info(f"Restarting instance [{instance_id}]...")
        job_id = await self.client.restart_instance(instance_id)
        await wait_for_job(self.client, job_id, self.policy)
        return await wait_for_status(self.client, instance_id, INSTANCE_STATUS_RUNNING, self.policy)

    async def terminate(self, instance_id):
        logger.info(f"Terminating instance [{instance_id}]...")
        job_id = await self.client.terminate_instance(instance_id)
        await wait_for_job(self.client, job_id, self.policy)
        return await wait_for_status(self.client, instance_id, INSTANCE_STATUS_TERMINATED, self.policy)

    async def remove(self, instance_id, eip_id=None, security_group_id=None):
        """Terminate the instance, then release its EIP and security group.

        Only termination can fail the call; cleanup errors are logged.
        """
        await self.terminate(instance_id)
        logger.info(f"Instance [{instance_id}] terminated.")

        if eip_id:
            try:
                job_id = await self.client.release_eip(eip_id)
                if job_id:
                    await wait_for_job(self.client, job_id, self.policy)
                logger.info(f"Released EIP [{eip_id}].")
            except QCMachineError as e:
                logger.error(f"Release EIP [{eip_id}] failed: {e}")

        if security_group_id:
            try:
                await self.client.delete_security_group(security_group_id)
                logger.info(f"Deleted security group [{security_group_id}].")
            except QCMachineError as e:
                logger.error(f"Delete security group [{security_group_id}] failed: {e}")
