"""
Test helpers shared by the pve_mcp test modules.

Provides:
- FakeClient: in-memory stand-in for ProxmoxClient
- offline(): the error a node raises when it cannot be reached
"""

from pve_mcp.modules.proxmox.client import ProxmoxApiError


class FakeClient:
    """
    In-memory stand-in for ProxmoxClient.

    ``routes`` maps (method, path) to a payload, an exception instance to
    raise, or a callable taking the request body.  Unknown routes raise a
    404 ProxmoxApiError.  Every call is appended to ``calls``.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def request(self, path, method="GET", body=None):
        self.calls.append((method, path, body))
        if (method, path) not in self.routes:
            raise ProxmoxApiError(f"Proxmox API error: 404 - no route for {method} {path}", 404)
        answer = self.routes[(method, path)]
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(body)
        return answer

    def get(self, path):
        return self.request(path)

    def post(self, path, body=None):
        return self.request(path, method="POST", body=body)


def offline(node):
    return ProxmoxApiError(f"Failed to connect to Proxmox: node {node} unreachable")
