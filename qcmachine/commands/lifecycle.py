"""start / stop / kill / restart / rm handlers."""

import logging

from qcmachine.commands.common import add_machine_args, run_driver_action, storage_path
from qcmachine.store import remove_machine

logger = logging.getLogger(__name__)


def handle_start(args):
    run_driver_action(args, lambda d: d.start())
    logger.info(f"Machine '{args.name}' started.")


def handle_stop(args):
    run_driver_action(args, lambda d: d.stop())
    logger.info(f"Machine '{args.name}' stopped.")


def handle_kill(args):
    run_driver_action(args, lambda d: d.kill())
    logger.info(f"Machine '{args.name}' killed.")


def handle_restart(args):
    run_driver_action(args, lambda d: d.restart())
    logger.info(f"Machine '{args.name}' restarted.")


def handle_rm(args):
    run_driver_action(args, lambda d: d.remove())
    remove_machine(storage_path(args), args.name)
    logger.info(f"Machine '{args.name}' removed.")


def register_lifecycle_commands(subparsers):
    """Register start, stop, kill, restart and rm."""
    for name, handler, help_text in [
        ("start", handle_start, "Start a machine and wait until it is running"),
        ("stop", handle_stop, "Stop a machine gracefully"),
        ("kill", handle_kill, "Stop a machine forcefully"),
        ("restart", handle_restart, "Restart a machine and wait until it is running"),
        ("rm", handle_rm, "Terminate a machine and release its EIP and security group"),
    ]:
        parser = subparsers.add_parser(name, help=help_text)
        add_machine_args(parser)
        parser.set_defaults(func=handler)
