"""SSH key generation and readiness polling."""

import asyncio
import logging
import os

from qcmachine.provisioning.errors import DriverError
from qcmachine.provisioning.shell import run_shell_cmd
from qcmachine.provisioning.ssh_transport import ssh_base_args

logger = logging.getLogger(__name__)


async def generate_ssh_key(path):
    """Create an RSA key pair at *path* (private) and *path*.pub (public)."""
    path = os.path.expanduser(path)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    logger.debug(f"Generating SSH key at {path}")
    rc, _, stderr = await run_shell_cmd(["ssh-keygen", "-t", "rsa", "-b", "2048", "-N", "", "-q", "-f", path])
    if rc != 0:
        raise DriverError(f"ssh-keygen failed: {stderr.strip()}")
    return path


def read_public_key(private_key_path):
    """Return the contents of the .pub file next to *private_key_path*."""
    pub_path = os.path.expanduser(private_key_path) + ".pub"
    try:
        with open(pub_path) as f:
            return f.read().strip()
    except OSError as e:
        raise DriverError(f"Cannot read SSH public key {pub_path}: {e}") from e


async def wait_for_ssh(host, username, ssh_port, ssh_key_path, timeout=120, interval=5):
    """Poll SSH connectivity until success or timeout.

    Returns:
        True if SSH connected, False on timeout.
    """
    address = f"{username}@{host}" if username else host
    elapsed = 0
    while elapsed < timeout:
        args = ssh_base_args(address, ssh_key_path, ssh_port, connect_timeout=5)
        args.append("true")
        rc, _, _ = await run_shell_cmd(args, timeout=30)
        if rc == 0:
            return True
        await asyncio.sleep(interval)
        elapsed += interval

    logger.error(f"Timeout after {timeout}s waiting for SSH connectivity to {address}:{ssh_port}")
    return False
