"""Helpers shared by the machine subcommands."""

import asyncio
import logging
import sys

from qcmachine.config import DEFAULT_STORAGE_PATH, resolve_option
from qcmachine.driver import Driver
from qcmachine.provisioning.errors import QCMachineError
from qcmachine.redact import register_secret
from qcmachine.store import load_state, save_state

logger = logging.getLogger(__name__)


def add_machine_args(parser):
    """Arguments every machine subcommand takes."""
    parser.add_argument("name", help="Machine name")
    parser.add_argument(
        "--storage-path",
        default=None,
        help=f"Machine store directory (fallback: QCMACHINE_STORAGE_PATH, default: {DEFAULT_STORAGE_PATH})",
    )


def storage_path(args):
    return resolve_option(args.storage_path, "storage_path", DEFAULT_STORAGE_PATH)


def load_driver(args):
    """Build a Driver from the stored state of ``args.name``.

    Exits with status 1 if the machine does not exist.
    """
    try:
        state = load_state(storage_path(args), args.name)
    except QCMachineError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    register_secret(state.access_key_id)
    register_secret(state.secret_access_key)
    return Driver(state)


def run_driver_action(args, action, save=True):
    """Run ``await action(driver)``, persist the state, exit 1 on failure."""
    driver = load_driver(args)
    try:
        result = asyncio.run(action(driver))
    except QCMachineError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    finally:
        if save:
            save_state(storage_path(args), driver.state)
    return result
