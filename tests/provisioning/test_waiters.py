"""Unit tests for qcmachine.provisioning.waiters: job, status and network polling."""

import pytest

from qcmachine.provisioning.errors import APIError, JobFailedError, NotFoundError, TransientAPIError, WaitTimeoutError
from qcmachine.provisioning.waiters import PollPolicy, wait_for_job, wait_for_network, wait_for_status


async def _noop(_seconds):
    pass


# ── PollPolicy ──────────────────────────────────────────────────


def test_attempts_rounds_up():
    assert PollPolicy(op_timeout=25, interval=5).attempts == 5
    assert PollPolicy(op_timeout=26, interval=5).attempts == 6
    assert PollPolicy(op_timeout=1, interval=5).attempts == 1


async def test_no_sleep_after_last_attempt(make_client, make_job):
    sleeps = []

    async def _sleep(seconds):
        sleeps.append(seconds)

    policy = PollPolicy(op_timeout=15, interval=5, sleep=_sleep)
    client = make_client({"describe_job": [make_job("working")]})
    with pytest.raises(WaitTimeoutError):
        await wait_for_job(client, "j-1", policy)
    assert client.count("describe_job") == 3
    assert sleeps == [5, 5]


# ── wait_for_job ────────────────────────────────────────────────


async def test_job_succeeds_after_three_polls(policy, make_client, make_job):
    client = make_client({"describe_job": [make_job("pending"), make_job("working"), make_job("successful")]})
    job = await wait_for_job(client, "j-1", policy)
    assert job.status == "successful"
    assert client.count("describe_job") == 3


async def test_job_failed_raises_on_second_poll(policy, make_client, make_job):
    client = make_client({"describe_job": [make_job("pending"), make_job("failed")]})
    with pytest.raises(JobFailedError) as exc_info:
        await wait_for_job(client, "j-1", policy)
    assert exc_info.value.job_id == "j-1"
    assert client.count("describe_job") == 2


async def test_job_unknown_status_keeps_polling(policy, make_client, make_job, caplog):
    client = make_client({"describe_job": [make_job("unknown"), make_job("successful")]})
    with caplog.at_level("WARNING"):
        await wait_for_job(client, "j-1", policy)
    assert client.count("describe_job") == 2
    assert "unrecognized status 'unknown'" in caplog.text


async def test_job_describe_error_propagates(policy, make_client):
    client = make_client({"describe_job": [TransientAPIError("DescribeJobs", "busy")]})
    with pytest.raises(TransientAPIError):
        await wait_for_job(client, "j-1", policy)
    assert client.count("describe_job") == 1


async def test_job_timeout(policy, make_client, make_job):
    client = make_client({"describe_job": [make_job("working")]})
    with pytest.raises(WaitTimeoutError) as exc_info:
        await wait_for_job(client, "j-1", policy)
    assert exc_info.value.attempts == 5
    assert exc_info.value.last_state == "working"
    assert client.count("describe_job") == 5


# ── wait_for_status ─────────────────────────────────────────────


async def test_status_four_consecutive_errors_fail(policy, make_client, make_instance):
    err = TransientAPIError("DescribeInstances", "busy", code=5100)
    client = make_client({"describe_instance": [err, err, err, err, make_instance("running")]})
    with pytest.raises(TransientAPIError):
        await wait_for_status(client, "i-1", "running", policy)
    assert client.count("describe_instance") == 4


async def test_status_three_errors_then_valid_keeps_polling(policy, make_client, make_instance):
    err = TransientAPIError("DescribeInstances", "busy", code=5100)
    client = make_client({"describe_instance": [err, err, err, make_instance("running")]})
    instance = await wait_for_status(client, "i-1", "running", policy)
    assert instance.status == "running"
    assert client.count("describe_instance") == 4


async def test_status_error_count_resets_after_valid_response(make_client, make_instance):
    err = NotFoundError("DescribeInstances", "i-1 does not exist")
    policy = PollPolicy(op_timeout=50, interval=5, sleep=_noop)
    client = make_client(
        {
            "describe_instance": [
                err, err, err, make_instance("pending"),
                err, err, err, make_instance("running"),
            ]
        }
    )
    instance = await wait_for_status(client, "i-1", "running", policy)
    assert instance.status == "running"
    assert client.count("describe_instance") == 8


async def test_status_transition_marker_blocks_convergence(policy, make_client, make_instance):
    client = make_client(
        {"describe_instance": [make_instance("running", transition="starting"), make_instance("running")]}
    )
    instance = await wait_for_status(client, "i-1", "running", policy)
    assert not instance.in_transition
    assert client.count("describe_instance") == 2


async def test_status_timeout_after_five_attempts(policy, make_client, make_instance):
    client = make_client({"describe_instance": [make_instance("pending", transition="creating")]})
    with pytest.raises(WaitTimeoutError) as exc_info:
        await wait_for_status(client, "i-1", "running", policy)
    assert client.count("describe_instance") == 5
    assert exc_info.value.target == "running"
    assert exc_info.value.last_state == "pending/creating"


async def test_status_other_api_error_propagates(policy, make_client):
    client = make_client({"describe_instance": [APIError("DescribeInstances", "denied", code=1400)]})
    with pytest.raises(APIError):
        await wait_for_status(client, "i-1", "running", policy)
    assert client.count("describe_instance") == 1


# ── wait_for_network ────────────────────────────────────────────


async def test_network_waits_for_private_ip(policy, make_client, make_instance):
    client = make_client({"describe_instance": [make_instance("running"), make_instance("running", ip="10.0.0.5")]})
    instance = await wait_for_network(client, "i-1", policy)
    assert instance.private_ip == "10.0.0.5"
    assert client.count("describe_instance") == 2


async def test_network_four_consecutive_errors_fail(policy, make_client, make_instance):
    err = TransientAPIError("DescribeInstances", "busy", code=5100)
    not_found = NotFoundError("DescribeInstances", "i-1 does not exist")
    client = make_client({"describe_instance": [err, not_found, err, not_found, make_instance("running", ip="10.0.0.5")]})
    with pytest.raises(NotFoundError):
        await wait_for_network(client, "i-1", policy)
    assert client.count("describe_instance") == 4


async def test_network_three_errors_then_valid_keeps_polling(policy, make_client, make_instance):
    err = NotFoundError("DescribeInstances", "i-1 does not exist")
    client = make_client({"describe_instance": [err, err, err, make_instance("running", ip="10.0.0.5")]})
    instance = await wait_for_network(client, "i-1", policy)
    assert instance.private_ip == "10.0.0.5"
    assert client.count("describe_instance") == 4


async def test_network_timeout(policy, make_client, make_instance):
    client = make_client({"describe_instance": [make_instance("running")]})
    with pytest.raises(WaitTimeoutError):
        await wait_for_network(client, "i-1", policy)
    assert client.count("describe_instance") == 5
