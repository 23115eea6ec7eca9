"""Line-delimited JSON-RPC over stdin/stdout.

One request per line in, one response per line out.  Requests are
handled in arrival order, so responses come back in the same order and
carry the request ``id`` for pairing.  A bad line only ever costs its own
response; the loop runs until stdin closes.
"""

import logging
import sys

from mcp.types import INTERNAL_ERROR

from pve_mcp.dispatcher import encode_envelope, failure

logger = logging.getLogger(__name__)


def _respond(dispatcher, line):
    """Handle one line and return the encoded response, or None."""
    try:
        response = dispatcher.handle_raw(line)
        if response is None:
            return None
        return encode_envelope(response)
    except Exception as e:
        logger.exception("Unhandled error on stdio request")
        return encode_envelope(failure(None, INTERNAL_ERROR, "Internal error", str(e)))


def serve_stdio(dispatcher, stdin=None, stdout=None) -> int:
    """Serve until EOF on stdin.  Returns the number of requests handled.

    stdin is read as bytes by default so that undecodable input reaches the
    JSON decoder and is answered with a parse error.
    """
    stdin = stdin if stdin is not None else sys.stdin.buffer
    stdout = stdout if stdout is not None else sys.stdout

    logger.info("Proxmox MCP server running on stdio")
    handled = 0
    for line in stdin:
        line = line.strip()
        if not line:
            continue
        handled += 1
        encoded = _respond(dispatcher, line)
        if encoded is None:
            continue
        stdout.write(encoded + "\n")
        stdout.flush()

    logger.info("stdin closed after %d request(s), shutting down", handled)
    return handled
