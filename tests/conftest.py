"""Shared pytest fixtures for all test modules."""

import os
import subprocess
import sys

import pytest

from qcmachine.provisioning.types import InstanceDescriptor, Job, NetworkAttachment
from qcmachine.provisioning.waiters import PollPolicy

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the qcmachine CLI as a subprocess."""

    def _run(*args, env=None):
        result = subprocess.run(
            [sys.executable, "-m", "qcmachine.qcmachine", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            env={**os.environ, **(env or {})},
        )
        return result.returncode, result.stdout, result.stderr

    return _run


# ── Fake resource client ────────────────────────────────────────────


class FakeClient:
    """Scripted stand-in for QingCloudClient.

    ``script`` maps a client method name to the results of successive calls.
    The last result repeats once the list is used up. Exception instances are
    raised instead of returned. Every call is recorded in ``calls``.
    """

    def __init__(self, script=None, dry_run=False):
        self.script = {name: list(results) for name, results in (script or {}).items()}
        self.calls = []
        self.dry_run = dry_run

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        async def _method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            results = self.script.get(name)
            if not results:
                raise AssertionError(f"unexpected call: {name}{args}")
            result = results.pop(0) if len(results) > 1 else results[0]
            if isinstance(result, Exception):
                raise result
            return result

        return _method

    @property
    def methods(self):
        return [name for name, _, _ in self.calls]

    def count(self, name):
        return self.methods.count(name)


@pytest.fixture
def make_client():
    """Return a factory for scripted FakeClient instances."""

    def _make(script=None, dry_run=False):
        return FakeClient(script, dry_run=dry_run)

    return _make


@pytest.fixture
def make_instance():
    """Return a factory for InstanceDescriptor snapshots; *ip* adds one private network."""

    def _make(status="running", transition="", ip="", instance_id="i-test", **kwargs):
        networks = (NetworkAttachment(network_id="vxnet-0", private_ip=ip),) if ip else ()
        return InstanceDescriptor(
            id=instance_id, status=status, transition_status=transition, networks=networks, **kwargs
        )

    return _make


@pytest.fixture
def make_job():
    """Return a factory for Job snapshots."""

    def _make(status, job_id="j-test"):
        return Job(id=job_id, status=status)

    return _make


async def _no_sleep(_seconds):
    pass


@pytest.fixture
def policy():
    """Poll policy with a 5-attempt budget that never actually sleeps."""
    return PollPolicy(op_timeout=25, interval=5, sleep=_no_sleep)
