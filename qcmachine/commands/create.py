"""create handler: flags, pre-create check, provisioning."""

import asyncio
import logging
import sys

from qcmachine.commands.common import add_machine_args, storage_path
from qcmachine.config import DEFAULT_CPU, DEFAULT_IMAGE, DEFAULT_MEMORY, DEFAULT_ZONE, resolve_option
from qcmachine.driver import Driver, DriverState
from qcmachine.provisioning.errors import QCMachineError
from qcmachine.provisioning.orchestrate import DEFAULT_EIP_BANDWIDTH, DEFAULT_VXNET
from qcmachine.provisioning.waiters import DEFAULT_OP_TIMEOUT
from qcmachine.redact import register_secret
from qcmachine.store import machine_dir, machine_exists, save_state

logger = logging.getLogger(__name__)


def build_state(args):
    """Resolve create flags (flag > env var > default) into a fresh DriverState."""
    return DriverState(
        machine_name=args.name,
        store_path=machine_dir(storage_path(args), args.name),
        access_key_id=resolve_option(args.access_key_id, "access_key_id", ""),
        secret_access_key=resolve_option(args.secret_access_key, "secret_access_key", ""),
        zone=resolve_option(args.zone, "zone", DEFAULT_ZONE),
        image=resolve_option(args.image, "image", DEFAULT_IMAGE),
        cpu=args.cpu,
        memory=args.memory,
        login_keypair=resolve_option(args.login_keypair, "login_keypair", ""),
        network_id=resolve_option(args.vxnet_id, "vxnet_id", DEFAULT_VXNET),
        ssh_key_path=resolve_option(args.ssh_key_path, "ssh_key_path", ""),
        op_timeout=args.op_timeout,
        eip_bandwidth=args.eip_bandwidth,
    )


def handle_create(args):
    """CLI handler for 'create'."""
    state = build_state(args)
    register_secret(state.access_key_id)
    register_secret(state.secret_access_key)

    if not args.dry_run:
        if not (state.access_key_id and state.secret_access_key):
            logger.error(
                "Error: QingCloud credentials required. Use --qingcloud-access-key-id/--qingcloud-secret-access-key "
                "or set QINGCLOUD_ACCESS_KEY_ID/QINGCLOUD_SECRET_ACCESS_KEY."
            )
            sys.exit(1)
        if machine_exists(storage_path(args), args.name):
            logger.error(f"Error: machine '{args.name}' already exists.")
            sys.exit(1)

    driver = Driver(state, check_os=not args.skip_os_check, dry_run=args.dry_run)
    try:
        asyncio.run(_create(driver))
    except QCMachineError as e:
        logger.error(f"Error: {e}")
        if state.instance_id or state.owns_keypair:
            logger.error(f"Some resources were created; run 'qcmachine rm {args.name}' to remove them.")
        sys.exit(1)
    finally:
        # Whatever was created must stay reachable by rm.
        if not args.dry_run and (state.instance_id or state.owns_keypair):
            save_state(storage_path(args), state)

    if not args.dry_run:
        logger.info(f"Machine '{args.name}' is ready: {driver.get_url()}")


async def _create(driver):
    await driver.pre_create_check()
    await driver.create()


def register_create_command(subparsers):
    """Register 'create' with the QingCloud driver flags."""
    parser = subparsers.add_parser("create", help="Create a QingCloud machine")
    add_machine_args(parser)
    parser.add_argument(
        "--qingcloud-access-key-id", dest="access_key_id", default=None,
        help="QingCloud access key id (fallback: QINGCLOUD_ACCESS_KEY_ID env var)",
    )
    parser.add_argument(
        "--qingcloud-secret-access-key", dest="secret_access_key", default=None,
        help="QingCloud secret access key (fallback: QINGCLOUD_SECRET_ACCESS_KEY env var)",
    )
    parser.add_argument(
        "--qingcloud-zone", dest="zone", default=None,
        help=f"QingCloud zone (fallback: QINGCLOUD_ZONE, default: {DEFAULT_ZONE})",
    )
    parser.add_argument(
        "--qingcloud-image", dest="image", default=None,
        help=f"Instance image id (fallback: QINGCLOUD_IMAGE, default: {DEFAULT_IMAGE})",
    )
    parser.add_argument(
        "--qingcloud-vxnet-id", dest="vxnet_id", default=None,
        help=f"VxNet id (fallback: QINGCLOUD_VXNET_ID, default: {DEFAULT_VXNET})",
    )
    parser.add_argument(
        "--qingcloud-login-keypair", dest="login_keypair", default=None,
        help="Existing login key pair id (fallback: QINGCLOUD_LOGIN_KEYPAIR)",
    )
    parser.add_argument(
        "--qingcloud-ssh-keypath", dest="ssh_key_path", default=None,
        help="SSH private key for the instance (fallback: QINGCLOUD_SSH_KEYPATH, default: <store>/id_rsa)",
    )
    parser.add_argument(
        "--qingcloud-cpu", dest="cpu", type=int, default=DEFAULT_CPU, help=f"CPU count (default: {DEFAULT_CPU})"
    )
    parser.add_argument(
        "--qingcloud-memory", dest="memory", type=int, default=DEFAULT_MEMORY,
        help=f"Memory size in MB (default: {DEFAULT_MEMORY})",
    )
    parser.add_argument(
        "--qingcloud-op-timeout", dest="op_timeout", type=int, default=DEFAULT_OP_TIMEOUT,
        help=f"Seconds to wait for each job or status change (default: {DEFAULT_OP_TIMEOUT})",
    )
    parser.add_argument(
        "--qingcloud-eip-bandwidth", dest="eip_bandwidth", type=int, default=DEFAULT_EIP_BANDWIDTH,
        help=f"Elastic IP bandwidth in Mbps (default: {DEFAULT_EIP_BANDWIDTH})",
    )
    parser.add_argument("--skip-os-check", action="store_true", help="Skip the SSH/apt check after create")
    parser.add_argument("--dry-run", action="store_true", help="Print requests without executing")
    parser.set_defaults(func=handle_create)
