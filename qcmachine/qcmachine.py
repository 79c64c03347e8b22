#!/usr/bin/env python3
"""QingCloud machine driver: CLI entrypoint."""

import argparse

from qcmachine.commands.create import register_create_command
from qcmachine.commands.info import register_inspect_commands
from qcmachine.commands.lifecycle import register_lifecycle_commands
from qcmachine.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Create and manage QingCloud Docker hosts")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every API call and poll")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_create_command(subparsers)
    register_lifecycle_commands(subparsers)
    register_inspect_commands(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
