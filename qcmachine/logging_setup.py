"""CLI logging setup: plain %(message)s format on stdout."""

import logging
import sys

from qcmachine.redact import SecretRedactingFilter


def setup_cli_logging(verbose=False):
    """Configure the root logger for CLI commands.

    Output reads like print(). ``verbose`` adds DEBUG records, which include
    every poll the waiters make.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    # Filters on a logger don't see records propagated from child loggers.
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)
    # httpx logs every request URL, and ours carry the access key id.
    logging.getLogger("httpx").setLevel(logging.WARNING)
