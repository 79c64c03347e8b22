"""Polling waiters: jobs, instance status and network readiness.

All waiters share one policy: a fixed sleep between polls and at most
``ceil(op_timeout / interval)`` polls. Exhausting the budget raises
WaitTimeoutError with the last observed state.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from qcmachine.provisioning.errors import JobFailedError, NotFoundError, TransientAPIError, WaitTimeoutError
from qcmachine.provisioning.types import (
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_SUCCESSFUL,
    JOB_STATUS_WORKING,
)

logger = logging.getLogger(__name__)

DEFAULT_OP_TIMEOUT = 180
POLL_INTERVAL = 5
MAX_CONSECUTIVE_ERRORS = 3


@dataclass(frozen=True)
class PollPolicy:
    """Interval and budget shared by every waiter.

    ``sleep`` is awaited between polls; tests swap it for a no-op.
    """

    op_timeout: int = DEFAULT_OP_TIMEOUT
    interval: int = POLL_INTERVAL
    max_consecutive_errors: int = MAX_CONSECUTIVE_ERRORS
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False, compare=False)

    @property
    def attempts(self) -> int:
        return max(1, math.ceil(self.op_timeout / self.interval))

    async def pause(self, attempt):
        """Sleep before the next poll, unless *attempt* was the last one."""
        if attempt < self.attempts:
            await self.sleep(self.interval)


DEFAULT_POLL_POLICY = PollPolicy()


async def wait_for_job(client, job_id, policy=DEFAULT_POLL_POLICY):
    """Poll a job until it succeeds.

    Raises:
        JobFailedError: the provider reported the job as failed.
        NotFoundError: the job is missing from the describe response.
        WaitTimeoutError: the job is still running when the budget runs out.
    """
    logger.debug(f"Waiting for job [{job_id}] to finish")
    status = None
    for attempt in range(1, policy.attempts + 1):
        job = await client.describe_job(job_id)
        status = job.status
        if status == JOB_STATUS_SUCCESSFUL:
            logger.debug(f"Job [{job_id}] finished")
            return job
        if status == JOB_STATUS_FAILED:
            raise JobFailedError(job_id, job.action)
        if status not in (JOB_STATUS_PENDING, JOB_STATUS_WORKING):
            logger.warning(f"Job [{job_id}] reported unrecognized status '{status}', still waiting")
        await policy.pause(attempt)
    raise WaitTimeoutError(f"job [{job_id}]", JOB_STATUS_SUCCESSFUL, status, policy.attempts)


async def _poll_instance(client, instance_id, converged, target, policy):
    """Describe *instance_id* until ``converged(instance)`` holds.

    Describe failures are tolerated until more than
    ``policy.max_consecutive_errors`` happen in a row; a good describe resets
    the count.
    """
    consecutive_errors = 0
    last_state = None
    for attempt in range(1, policy.attempts + 1):
        try:
            instance = await client.describe_instance(instance_id)
        except (TransientAPIError, NotFoundError) as e:
            consecutive_errors += 1
            if consecutive_errors > policy.max_consecutive_errors:
                logger.error(f"Describe of instance [{instance_id}] failed {consecutive_errors} times in a row")
                raise
            logger.warning(
                f"Describe of instance [{instance_id}] failed "
                f"({consecutive_errors}/{policy.max_consecutive_errors}): {e}"
            )
        else:
            consecutive_errors = 0
            last_state = instance.status
            if instance.in_transition:
                last_state = f"{instance.status}/{instance.transition_status}"
            if converged(instance):
                return instance
        await policy.pause(attempt)
    raise WaitTimeoutError(f"instance [{instance_id}]", target, last_state, policy.attempts)


async def wait_for_status(client, instance_id, target_status, policy=DEFAULT_POLL_POLICY):
    """Poll until the instance reports *target_status* with no transition in flight."""
    logger.debug(f"Waiting for instance [{instance_id}] status [{target_status}]")

    def _converged(instance):
        return instance.status == target_status and not instance.in_transition

    instance = await _poll_instance(client, instance_id, _converged, target_status, policy)
    logger.debug(f"Instance [{instance_id}] status is [{instance.status}]")
    return instance


async def wait_for_network(client, instance_id, policy=DEFAULT_POLL_POLICY):
    """Poll until the instance has at least one private IP assigned."""
    logger.debug(f"Waiting for IP address to be assigned to instance [{instance_id}]")

    def _converged(instance):
        return bool(instance.private_ip)

    instance = await _poll_instance(client, instance_id, _converged, "private ip assigned", policy)
    logger.debug(f"Instance [{instance_id}] got IP address [{instance.private_ip}]")
    return instance
