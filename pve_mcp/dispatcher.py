"""JSON-RPC method router for the MCP tool protocol.

Errors come in two tiers:

- protocol failures (unparseable or malformed envelope, unknown top-level
  method, malformed ``tools/call`` params) produce an ``error`` member;
- everything tool-shaped (unknown tool, bad arguments, permission refusal,
  hypervisor errors) produces a normal ``result`` whose text explains the
  problem.

Clients tell the tiers apart by which member is present, so tool problems
must never leak into ``error``.
"""

import json
import logging
import math
from typing import Any, Optional

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    ErrorData,
    TextContent,
)

from pve_mcp.modules.proxmox.formatting import render, render_elevation_notice
from pve_mcp.tools import ToolArgumentError, ToolCatalogue, ToolContext

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "proxmox-mcp-server"
SERVER_VERSION = "1.0.0"


class InvalidParams(ValueError):
    pass


# Marks a request that carried no "id" member; its response carries none either.
NO_ID = object()


def _envelope(request_id, member: str, value) -> dict:
    envelope = {"jsonrpc": JSONRPC_VERSION}
    if request_id is not NO_ID:
        envelope["id"] = request_id
    envelope[member] = value
    return envelope


def success(request_id, result) -> dict:
    return _envelope(request_id, "result", result)


def failure(request_id, code: int, message: str, data: Any = None) -> dict:
    error = ErrorData(code=code, message=message, data=data).model_dump(exclude_none=True)
    return _envelope(request_id, "error", error)


def text_result(text: str) -> dict:
    return {"content": [TextContent(type="text", text=text).model_dump(exclude_none=True)]}


def _finite_float(text):
    value = float(text)
    if math.isinf(value):
        raise ValueError(f"Number out of range: {text}")
    return value


def _reject_constant(name):
    raise ValueError(f"Invalid JSON constant: {name}")


def decode_envelope(raw):
    """Parse a serialized request.

    Only strict JSON is accepted: NaN, Infinity and out-of-range numbers
    could never be echoed back.  ``raw`` may be str or bytes.

    Raises:
        ValueError: the payload is not valid JSON, including undecodable
            bytes and nesting too deep to parse.
    """
    try:
        return json.loads(raw, parse_float=_finite_float, parse_constant=_reject_constant)
    except RecursionError:
        raise ValueError("JSON nesting too deep")


def encode_envelope(envelope: dict) -> str:
    """Serialize a response the same way on every transport."""
    return json.dumps(envelope, ensure_ascii=False, allow_nan=False, separators=(",", ":"))


class Dispatcher:
    """
    Route one request envelope to its handler and wrap the outcome.

    ``handle`` returns the response envelope, or None for notifications
    (which get no response).  It never raises.
    """

    def __init__(self, catalogue: ToolCatalogue, context: ToolContext):
        self.catalogue = catalogue
        self.context = context
        self._methods = {
            "initialize": self._initialize,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    def handle_raw(self, raw) -> Optional[dict]:
        """Parse a serialized envelope and handle it."""
        try:
            envelope = decode_envelope(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Unparseable request: %s", e)
            return failure(None, PARSE_ERROR, "Parse error", str(e))
        return self.handle(envelope)

    def handle(self, envelope) -> Optional[dict]:
        if not isinstance(envelope, dict):
            return failure(None, INVALID_REQUEST, "Invalid Request", "Request must be a JSON object")

        request_id = envelope.get("id", NO_ID)
        method = envelope.get("method")
        marker = envelope.get("jsonrpc", JSONRPC_VERSION)

        if marker != JSONRPC_VERSION:
            return failure(
                request_id, INVALID_REQUEST, "Invalid Request", f"Unsupported jsonrpc version: {marker}"
            )
        if not isinstance(method, str):
            return failure(request_id, INVALID_REQUEST, "Invalid Request", "Missing method")

        if "id" not in envelope and method.startswith("notifications/"):
            logger.debug("Notification %s", method)
            return None

        handler = self._methods.get(method)
        if handler is None:
            logger.info("Unknown method: %s", method)
            return failure(request_id, METHOD_NOT_FOUND, "Method not found", f"Unknown method: {method}")

        logger.debug("Handling %s (id=%r)", method, envelope.get("id"))
        try:
            return success(request_id, handler(envelope.get("params")))
        except InvalidParams as e:
            return failure(request_id, INVALID_PARAMS, "Invalid params", str(e))
        except Exception as e:
            logger.exception("Internal error handling %s", method)
            return failure(request_id, INTERNAL_ERROR, "Internal error", str(e))

    def _initialize(self, params) -> dict:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        }

    def _list_tools(self, params) -> dict:
        # Gated tools are listed too: only their execution is gated.
        return {"tools": self.catalogue.list_tools()}

    def _call_tool(self, params) -> dict:
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise InvalidParams("params must be an object")

        name = params.get("name")
        if not isinstance(name, str):
            raise InvalidParams("params.name must be a string")

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise InvalidParams("params.arguments must be an object")

        tool = self.catalogue.get(name)
        if tool is None:
            logger.info("Unknown tool: %s", name)
            return text_result(f"Error: Unknown tool: {name}")

        try:
            args = tool.validate(arguments)
        except ToolArgumentError as e:
            return text_result(f"Error: {e}")

        if not self.context.gate.allows(tool):
            logger.info("Refused %s: elevated permissions required", name)
            return text_result(render_elevation_notice(tool, arguments))

        try:
            data = tool.handler(self.context, args)
            text = render(name, data)
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            text = f"Error: {e}"
        return text_result(text)
