"""Resource client: one typed method per QingCloud API action.

Every method issues exactly one request and returns the immediate response.
Waiting for jobs and resources lives in waiters.py.
"""

import logging

from qcmachine.provisioning.api import DEFAULT_API_URL, api_request
from qcmachine.provisioning.errors import APIError, NotFoundError
from qcmachine.provisioning.types import (
    ElasticIP,
    InstanceDescriptor,
    Job,
    KeyPair,
    NetworkAttachment,
    SecurityGroup,
)

logger = logging.getLogger(__name__)

LOGIN_MODE_KEYPAIR = "keypair"
EIP_BILLING_MODE = "bandwidth"


# ── Response parsing ──────────────────────────────────────────────


def _parse_eip(data):
    if not data or not data.get("eip_id"):
        return None
    return ElasticIP(
        id=data["eip_id"],
        address=data.get("eip_addr", ""),
        bandwidth=data.get("bandwidth"),
    )


def _parse_security_group(data):
    if not data or not data.get("security_group_id"):
        return None
    return SecurityGroup(id=data["security_group_id"], name=data.get("security_group_name", ""))


def _parse_instance(data):
    networks = tuple(
        NetworkAttachment(network_id=v.get("vxnet_id", ""), private_ip=v.get("private_ip") or "")
        for v in data.get("vxnets") or []
    )
    return InstanceDescriptor(
        id=data["instance_id"],
        status=data.get("status", ""),
        transition_status=data.get("transition_status") or "",
        networks=networks,
        elastic_ip=_parse_eip(data.get("eip")),
        security_group=_parse_security_group(data.get("security_group")),
        name=data.get("instance_name", ""),
    )


def _first(response, set_key, action, resource_id):
    items = response.get(set_key) or []
    if not items:
        raise NotFoundError(action, f"{resource_id} does not exist")
    return items[0]


def _job_id(response, action):
    job_id = response.get("job_id")
    if not job_id:
        raise APIError(action, "response carries no job_id")
    return job_id


class QingCloudClient:
    """Zone-scoped QingCloud API client.

    Args:
        transport: optional httpx transport, used by tests to stub the API.
    """

    def __init__(self, access_key_id, secret_access_key, zone, api_url=DEFAULT_API_URL, dry_run=False, transport=None):
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.zone = zone
        self.api_url = api_url
        self.dry_run = dry_run
        self.transport = transport

    async def _call(self, action, params):
        return await api_request(
            action,
            params,
            self.access_key_id,
            self.secret_access_key,
            self.zone,
            api_url=self.api_url,
            dry_run=self.dry_run,
            transport=self.transport,
        )

    # ── Instances ─────────────────────────────────────────────────

    async def run_instance(self, spec):
        """Submit RunInstances for one instance.

        Returns:
            (job_id, instance_id) tuple, or ``(None, None)`` in dry-run mode.
        """
        action = "RunInstances"
        result = await self._call(
            action,
            {
                "image_id": spec.image_id,
                "cpu": spec.cpu,
                "memory": spec.memory_mb,
                "count": 1,
                "instance_name": spec.instance_name,
                "instance_class": spec.instance_class,
                "login_mode": LOGIN_MODE_KEYPAIR,
                "login_keypair": spec.login_keypair_id,
                "vxnets": [spec.network_id] if spec.network_id else None,
            },
        )
        if result is None:
            return None, None
        instances = result.get("instances") or []
        if not instances:
            raise APIError(action, "response carries no instance id")
        return _job_id(result, action), instances[0]

    async def describe_instance(self, instance_id):
        action = "DescribeInstances"
        result = await self._call(action, {"instances": [instance_id], "verbose": 1})
        return _parse_instance(_first(result, "instance_set", action, instance_id))

    async def start_instance(self, instance_id):
        result = await self._call("StartInstances", {"instances": [instance_id]})
        return _job_id(result, "StartInstances")

    async def stop_instance(self, instance_id, force=False):
        result = await self._call("StopInstances", {"instances": [instance_id], "force": 1 if force else 0})
        return _job_id(result, "StopInstances")

    async def restart_instance(self, instance_id):
        result = await self._call("RestartInstances", {"instances": [instance_id]})
        return _job_id(result, "RestartInstances")

    async def terminate_instance(self, instance_id):
        result = await self._call("TerminateInstances", {"instances": [instance_id]})
        return _job_id(result, "TerminateInstances")

    # ── Jobs ──────────────────────────────────────────────────────

    async def describe_job(self, job_id):
        action = "DescribeJobs"
        result = await self._call(action, {"jobs": [job_id]})
        data = _first(result, "job_set", action, job_id)
        return Job(id=data.get("job_id", job_id), status=data.get("status", ""), action=data.get("job_action", ""))

    # ── Elastic IPs ───────────────────────────────────────────────

    async def allocate_eip(self, bandwidth, name=None):
        action = "AllocateEips"
        result = await self._call(
            action,
            {"bandwidth": bandwidth, "billing_mode": EIP_BILLING_MODE, "count": 1, "need_icp": 0, "eip_name": name},
        )
        eips = result.get("eips") or []
        if not eips:
            raise APIError(action, "response carries no eip id")
        return eips[0]

    async def describe_eip(self, eip_id):
        action = "DescribeEips"
        result = await self._call(action, {"eips": [eip_id]})
        return _parse_eip(_first(result, "eip_set", action, eip_id))

    async def associate_eip(self, eip_id, instance_id):
        result = await self._call("AssociateEip", {"eip": eip_id, "instance": instance_id})
        return _job_id(result, "AssociateEip")

    async def release_eip(self, eip_id):
        """Release an EIP. Returns the job id, or None if the API answered synchronously."""
        result = await self._call("ReleaseEips", {"eips": [eip_id]})
        return result.get("job_id")

    # ── Security groups ───────────────────────────────────────────

    async def create_security_group(self, name):
        action = "CreateSecurityGroup"
        result = await self._call(action, {"security_group_name": name})
        groups = result.get("security_groups") or []
        if not groups:
            raise APIError(action, "response carries no security group id")
        return groups[0]

    async def add_security_group_rules(self, security_group_id, rules):
        """Add rules to a security group. Returns the new rule ids."""
        result = await self._call(
            "AddSecurityGroupRules",
            {
                "security_group": security_group_id,
                "rules": [
                    {
                        "priority": r.priority,
                        "protocol": r.protocol,
                        "action": r.action,
                        "val1": r.val1 or None,
                        "val2": r.val2 or None,
                        "val3": r.val3 or None,
                    }
                    for r in rules
                ],
            },
        )
        return list(result.get("security_group_rules") or [])

    async def apply_security_group(self, security_group_id, instance_id):
        result = await self._call(
            "ApplySecurityGroup", {"security_group": security_group_id, "instances": [instance_id]}
        )
        return _job_id(result, "ApplySecurityGroup")

    async def describe_security_group(self, security_group_id):
        action = "DescribeSecurityGroups"
        result = await self._call(action, {"security_groups": [security_group_id]})
        return _parse_security_group(_first(result, "security_group_set", action, security_group_id))

    async def delete_security_group(self, security_group_id):
        await self._call("DeleteSecurityGroups", {"security_groups": [security_group_id]})

    # ── Key pairs ─────────────────────────────────────────────────

    async def create_key_pair(self, name, public_key):
        action = "CreateKeyPair"
        result = await self._call(action, {"keypair_name": name, "mode": "user", "public_key": public_key})
        if result is None:
            return None
        keypair_id = result.get("keypair_id")
        if not keypair_id:
            raise APIError(action, "response carries no keypair_id")
        return keypair_id

    async def describe_key_pair(self, keypair_id):
        action = "DescribeKeyPairs"
        result = await self._call(action, {"keypairs": [keypair_id]})
        data = _first(result, "keypair_set", action, keypair_id)
        return KeyPair(id=data["keypair_id"], name=data.get("keypair_name", ""), public_key=data.get("pub_key", ""))

    async def delete_key_pair(self, keypair_id):
        await self._call("DeleteKeyPairs", {"keypairs": [keypair_id]})
