"""QingCloud provisioning: API client, convergence waiters, orchestration, SSH helpers."""

from qcmachine.provisioning.client import QingCloudClient
from qcmachine.provisioning.errors import (
    APIError,
    DriverError,
    JobFailedError,
    NotFoundError,
    PartialProvisioningError,
    QCMachineError,
    TransientAPIError,
    ValidationError,
    WaitTimeoutError,
)
from qcmachine.provisioning.orchestrate import InstanceOrchestrator, ProvisioningDefaults, ProvisioningStage
from qcmachine.provisioning.types import (
    ElasticIP,
    InstanceDescriptor,
    InstanceSpec,
    Job,
    KeyPair,
    NetworkAttachment,
    SecurityGroup,
    SecurityGroupRule,
)
from qcmachine.provisioning.waiters import PollPolicy, wait_for_job, wait_for_network, wait_for_status

__all__ = [
    "QingCloudClient",
    "InstanceOrchestrator",
    "ProvisioningDefaults",
    "ProvisioningStage",
    "PollPolicy",
    "wait_for_job",
    "wait_for_status",
    "wait_for_network",
    "InstanceSpec",
    "InstanceDescriptor",
    "NetworkAttachment",
    "ElasticIP",
    "SecurityGroup",
    "SecurityGroupRule",
    "KeyPair",
    "Job",
    "QCMachineError",
    "ValidationError",
    "DriverError",
    "APIError",
    "NotFoundError",
    "TransientAPIError",
    "JobFailedError",
    "WaitTimeoutError",
    "PartialProvisioningError",
]
