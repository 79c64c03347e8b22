"""Exception hierarchy for QingCloud provisioning.

Everything raised by the client, the waiters and the orchestrator derives from
QCMachineError, so callers can catch the whole family with one clause.
"""


class QCMachineError(Exception):
    """Base exception for all qcmachine errors."""


class ValidationError(QCMachineError):
    """Raised when an instance spec is rejected before any RPC is issued."""


class DriverError(QCMachineError):
    """Raised when a driver precondition is not met."""


class APIError(QCMachineError):
    """Raised when the QingCloud API rejects a request."""

    def __init__(self, action, message, code=None):
        self.action = action
        self.code = code
        self.message = message
        detail = f" (ret_code={code})" if code is not None else ""
        super().__init__(f"{action} failed{detail}: {message}")


class NotFoundError(APIError):
    """Raised when a describe call enumerates zero matching resources."""


class TransientAPIError(APIError):
    """Raised for network or server-side failures that may succeed on retry."""


class JobFailedError(QCMachineError):
    """Raised when the provider reports an asynchronous job as failed."""

    def __init__(self, job_id, action=""):
        self.job_id = job_id
        self.action = action
        what = f" ({action})" if action else ""
        super().__init__(f"Job [{job_id}]{what} failed")


class WaitTimeoutError(QCMachineError):
    """Raised when a poll budget is exhausted without convergence."""

    def __init__(self, resource, target, last_state, attempts):
        self.resource = resource
        self.target = target
        self.last_state = last_state
        self.attempts = attempts
        super().__init__(
            f"Timeout waiting for {resource} to reach '{target}' after {attempts} attempts (last: '{last_state}')"
        )


class PartialProvisioningError(QCMachineError):
    """Raised when the instance exists but an optional binding failed.

    The created instance and whatever was already allocated are attached so
    the caller can record them and tear them down later.
    """

    def __init__(self, instance, stage, elastic_ip=None, security_group=None):
        self.instance = instance
        self.stage = stage
        self.elastic_ip = elastic_ip
        self.security_group = security_group
        super().__init__(f"Instance [{instance.id}] was created but {stage} failed")
