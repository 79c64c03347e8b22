"""SSH transport: argument building and one-shot remote commands."""

import logging

from qcmachine.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)


def ssh_base_args(server, ssh_key, ssh_port, connect_timeout=None):
    """Build base SSH arguments ending with the target address."""
    args = [
        "ssh",
        "-o", "StrictHostKeyChecking=no",
        "-o", "UserKnownHostsFile=/dev/null",
        "-o", "BatchMode=yes",
        "-o", "LogLevel=ERROR",
    ]
    if connect_timeout:
        args += ["-o", f"ConnectTimeout={connect_timeout}"]
    if ssh_key:
        args += ["-i", ssh_key]
    if ssh_port and ssh_port != 22:
        args += ["-p", str(ssh_port)]
    args.append(server)
    return args


def make_run_cmd(server, ssh_key, ssh_port):
    """Create a run_cmd callable that executes one command over SSH."""

    async def run_cmd(command, timeout=600):
        args = ssh_base_args(server, ssh_key, ssh_port, connect_timeout=10)
        args.append(command)
        rc, stdout, stderr = await run_shell_cmd(args, timeout=timeout)
        if rc != 0 and stderr:
            logger.debug(f"SSH error ({server}): {stderr.strip()}")
        return rc, stdout, stderr

    return run_cmd
