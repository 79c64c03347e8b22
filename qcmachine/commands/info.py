"""status / url / ip handlers: read-only, nothing is saved."""

import logging
import sys

from qcmachine.commands.common import add_machine_args, load_driver, run_driver_action
from qcmachine.provisioning.errors import DriverError

logger = logging.getLogger(__name__)


async def _get_state(driver):
    return await driver.get_state()


def handle_status(args):
    state = run_driver_action(args, _get_state, save=False)
    logger.info(state.value)


def handle_url(args):
    logger.info(load_driver(args).get_url())


def handle_ip(args):
    try:
        logger.info(load_driver(args).get_ip())
    except DriverError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


def register_inspect_commands(subparsers):
    """Register status, url and ip."""
    for name, handler, help_text in [
        ("status", handle_status, "Show the machine state (Starting, Running, Stopped, Error, None)"),
        ("url", handle_url, "Show the Docker host URL"),
        ("ip", handle_ip, "Show the machine IP address"),
    ]:
        parser = subparsers.add_parser(name, help=help_text)
        add_machine_args(parser)
        parser.set_defaults(func=handler)
