"""Post-create OS checks run over SSH: outbound network and package manager."""

import asyncio
import logging

from qcmachine.provisioning.ssh_transport import make_run_cmd
from qcmachine.provisioning.waiters import DEFAULT_OP_TIMEOUT

logger = logging.getLogger(__name__)

PING_TARGET = "get.docker.com"
PING_INTERVAL = 10
APT_INTERVAL = 20

# Run after a failed apt-get update: free the dpkg/apt locks and finish any
# interrupted dpkg run.
APT_REPAIR_COMMANDS = (
    "fuser -kw /var/lib/dpkg/lock",
    "fuser -kw /var/lib/apt/lists/lock",
    "dpkg --configure -a",
    "apt-get clean",
)


async def _retry(run_cmd, command, attempts, interval, repair=()):
    for attempt in range(1, attempts + 1):
        rc, _, _ = await run_cmd(command)
        if rc == 0:
            return True
        logger.debug(f"'{command}' failed (attempt {attempt}/{attempts})")
        for fix in repair:
            await run_cmd(fix)
        if attempt < attempts:
            await asyncio.sleep(interval)
    return False


async def check_os_env(address, ssh_key, ssh_port=22, op_timeout=DEFAULT_OP_TIMEOUT, run_cmd=None):
    """Make sure the instance can reach the internet and apt is usable.

    Steps:
    1. ping get.docker.com until it answers
    2. apt-get update until it succeeds, repairing dpkg state between tries

    Returns:
        True if both checks passed, False otherwise.
    """
    run_cmd = run_cmd or make_run_cmd(address, ssh_key, ssh_port)

    logger.info(f"Checking OS environment on {address}...")
    ping = f"ping -q -c 3 -W 10 {PING_TARGET}"
    if not await _retry(run_cmd, ping, max(1, op_timeout // PING_INTERVAL), PING_INTERVAL):
        logger.error(f"Ping {PING_TARGET} from {address} failed")
        return False

    apt_attempts = max(1, op_timeout // APT_INTERVAL)
    if not await _retry(run_cmd, "apt-get update", apt_attempts, APT_INTERVAL, APT_REPAIR_COMMANDS):
        logger.error(f"apt-get update on {address} failed")
        return False
    return True
