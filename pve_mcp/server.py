"""Proxmox VE MCP server entry point.

Exposes cluster inventory and control (nodes, VMs/containers, storage,
cluster health, in-guest command execution) as MCP tools over stdio or
HTTP.

    pve-mcp                       # stdio, for desktop MCP clients
    pve-mcp --transport http      # POST / and /mcp, GET /health

Connection settings come from the environment (or a ``.env`` file, or a
credential vault); see ``modules/config.py``.
"""

import argparse
import logging
import sys

from pve_mcp.dispatcher import Dispatcher
from pve_mcp.modules.config import ConfigError, PermissionGate, load_config, load_environment
from pve_mcp.modules.logging_config import configure_logging
from pve_mcp.modules.proxmox.client import ProxmoxClient
from pve_mcp.modules.proxmox.fanout import FanOutAggregator
from pve_mcp.tools import ToolContext, build_catalogue

logger = logging.getLogger(__name__)


def build_dispatcher(config, client) -> Dispatcher:
    """Wire the catalogue, permission gate and fan-out around ``client``."""
    context = ToolContext(
        client=client,
        gate=PermissionGate(config.allow_elevated),
        aggregator=FanOutAggregator(
            max_workers=config.max_concurrency,
            target_timeout=config.request_timeout,
        ),
    )
    return Dispatcher(build_catalogue(), context)


def _parse_args(argv):
    parser = argparse.ArgumentParser(prog="pve-mcp", description="Proxmox VE MCP server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="how requests are delivered (default: stdio)",
    )
    parser.add_argument("--host", help="HTTP bind address (default: HTTP_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="HTTP port (default: PORT or 3000)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)

    load_environment()
    configure_logging()

    try:
        config = load_config()
    except ConfigError as e:
        logger.error("Cannot start: %s", e)
        return 1

    logger.info(
        "Proxmox host %s (user %s, elevated mode %s)",
        config.endpoint, config.user, "enabled" if config.allow_elevated else "disabled",
    )

    with ProxmoxClient(config) as client:
        dispatcher = build_dispatcher(config, client)
        if args.transport == "http":
            from pve_mcp.transport.http import create_app, run_http

            run_http(
                create_app(dispatcher, config),
                host=args.host or config.http_host,
                port=args.port or config.http_port,
            )
        else:
            from pve_mcp.transport.stdio import serve_stdio

            serve_stdio(dispatcher)
    return 0


if __name__ == "__main__":
    sys.exit(main())
