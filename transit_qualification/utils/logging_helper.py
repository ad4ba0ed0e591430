"""A basic logging helper shared by the qualification tools."""

import logging
import sys


def setup_logging(level=logging.INFO, fmt="%(levelname)s: %(message)s"):
    """Configures stdout logging for a qualification run.

    Calling this more than once replaces the handlers installed by the
    previous call, so the runner can be invoked repeatedly in one session.
    """
    logging.basicConfig(
        level=level,
        format=fmt,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
