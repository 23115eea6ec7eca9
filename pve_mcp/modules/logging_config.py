"""Logging setup for the Proxmox MCP server.

``server.main`` calls ``configure_logging()`` once before loading the
configuration, so config and vault problems are already reported through
it.  Every record goes to stderr because the stdio transport owns stdout.
Set ``LOG_LEVEL=DEBUG`` to see each dispatched method and HTTP request.
"""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging() -> None:
    """Install the stderr handler at the ``LOG_LEVEL`` level (default INFO).

    Unknown level names fall back to INFO.  The httpx logger is kept at
    WARNING or above, otherwise it logs one line per Proxmox API call.
    """
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
