"""Shared data types for QingCloud resources."""

from dataclasses import dataclass, field

from qcmachine.provisioning.errors import ValidationError

INSTANCE_STATUS_PENDING = "pending"
INSTANCE_STATUS_RUNNING = "running"
INSTANCE_STATUS_STOPPED = "stopped"
INSTANCE_STATUS_SUSPENDED = "suspended"
INSTANCE_STATUS_TERMINATED = "terminated"
INSTANCE_STATUS_CEASED = "ceased"

JOB_STATUS_PENDING = "pending"
JOB_STATUS_WORKING = "working"
JOB_STATUS_SUCCESSFUL = "successful"
JOB_STATUS_FAILED = "failed"
JOB_STATUS_UNKNOWN = "unknown"


@dataclass
class InstanceSpec:
    """Everything RunInstances needs to create one instance."""

    cpu: int
    memory_mb: int
    image_id: str
    login_keypair_id: str
    network_id: str
    instance_name: str
    instance_class: int | None = None

    def validate(self) -> None:
        """Raise ValidationError describing every problem with the spec."""
        problems = []
        if self.cpu < 1:
            problems.append(f"cpu must be >= 1 (got {self.cpu})")
        if self.memory_mb < 1:
            problems.append(f"memory must be >= 1 MB (got {self.memory_mb})")
        if not self.image_id:
            problems.append("image id is required")
        if not self.login_keypair_id:
            problems.append("login key pair id is required")
        if not self.instance_name:
            problems.append("instance name is required")
        if problems:
            raise ValidationError("Invalid instance spec: " + "; ".join(problems))


@dataclass(frozen=True)
class NetworkAttachment:
    network_id: str
    private_ip: str = ""


@dataclass(frozen=True)
class ElasticIP:
    id: str
    address: str = ""
    bandwidth: int | None = None


@dataclass(frozen=True)
class SecurityGroupRule:
    """One firewall rule; val1..val3 carry the port or range spec."""

    priority: int
    protocol: str
    action: str = "accept"
    val1: str = ""
    val2: str = ""
    val3: str = ""


@dataclass(frozen=True)
class SecurityGroup:
    id: str
    name: str = ""
    rules: tuple[SecurityGroupRule, ...] = ()


@dataclass(frozen=True)
class KeyPair:
    id: str
    name: str = ""
    public_key: str = ""


@dataclass(frozen=True)
class Job:
    id: str
    status: str
    action: str = ""


@dataclass(frozen=True)
class InstanceDescriptor:
    """Snapshot of an instance as reported by one DescribeInstances call."""

    id: str
    status: str
    transition_status: str = ""
    networks: tuple[NetworkAttachment, ...] = field(default_factory=tuple)
    elastic_ip: ElasticIP | None = None
    security_group: SecurityGroup | None = None
    name: str = ""
    address: str = ""

    @property
    def private_ip(self) -> str:
        """First assigned private IP, or an empty string."""
        for network in self.networks:
            if network.private_ip:
                return network.private_ip
        return ""

    @property
    def in_transition(self) -> bool:
        return bool(self.transition_status)
