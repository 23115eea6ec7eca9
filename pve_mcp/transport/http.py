"""JSON-RPC over HTTP.

``POST /`` and ``POST /mcp`` take a request envelope as the body and return
the response envelope as JSON.  ``GET /health`` is an unauthenticated
liveness check.
"""

import logging

from mcp.types import INTERNAL_ERROR, PARSE_ERROR
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from pve_mcp.dispatcher import SERVER_NAME, decode_envelope, encode_envelope, failure

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request, call_next):
        logger.debug("%s %s from %s", request.method, request.url.path, request.client)
        response = await call_next(request)
        logger.debug("%s %s -> %d", request.method, request.url.path, response.status_code)
        return response


def _envelope_response(envelope: dict, status_code: int = 200) -> Response:
    try:
        content = encode_envelope(envelope)
    except ValueError as e:
        logger.exception("Response could not be encoded")
        content = encode_envelope(failure(None, INTERNAL_ERROR, "Internal error", str(e)))
        status_code = 500
    return Response(content, status_code=status_code, media_type="application/json")


def create_app(dispatcher, config) -> Starlette:
    """Build the Starlette application around ``dispatcher``."""

    async def handle_rpc(request: Request) -> Response:
        body = await request.body()
        try:
            envelope = decode_envelope(body)
        except ValueError as e:
            logger.warning("Unparseable request body: %s", e)
            return _envelope_response(failure(None, PARSE_ERROR, "Parse error", str(e)), 400)

        # The dispatcher blocks on hypervisor I/O, keep it off the event loop.
        response = await run_in_threadpool(dispatcher.handle, envelope)
        if response is None:
            return Response(status_code=202)
        return _envelope_response(response)

    async def health(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "healthy",
                "server": SERVER_NAME,
                "proxmox": config.endpoint,
                "elevated": config.allow_elevated,
                "tools": len(dispatcher.catalogue),
            }
        )

    routes = [
        Route("/", endpoint=handle_rpc, methods=["POST"]),
        Route("/mcp", endpoint=handle_rpc, methods=["POST"]),
        Route("/health", endpoint=health, methods=["GET"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
        ),
        Middleware(RequestLoggingMiddleware),
    ]
    return Starlette(routes=routes, middleware=middleware)


def run_http(app, host: str, port: int) -> None:
    """Serve ``app`` with uvicorn (blocks)."""
    import uvicorn

    logger.info("Starting HTTP server on %s:%d", host, port)
    logger.info("MCP endpoint: http://%s:%d/  health check: http://%s:%d/health", host, port, host, port)
    uvicorn.run(app, host=host, port=port, log_level="info")
