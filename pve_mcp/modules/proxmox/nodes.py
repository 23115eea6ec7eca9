import logging

from pve_mcp.modules.proxmox.client import ProxmoxApiError, api_path
from pve_mcp.modules.proxmox.fanout import Target, TargetKind

logger = logging.getLogger(__name__)


class Nodes:

    def __init__(self, client):
        self.client = client

    def get(self):
        """List cluster nodes, ordered by node name."""
        nodes = self.client.get("/nodes")
        if not isinstance(nodes, list):
            raise ProxmoxApiError("Unexpected payload for /nodes: expected a list")
        return sorted(nodes, key=lambda n: str(n.get("node", "")))

    def names(self):
        return [n["node"] for n in self.get() if n.get("node")]

    def targets(self, kind: TargetKind = TargetKind.NODE, node: str = None):
        """
        Build fan-out targets of one kind.

        With ``node`` set only that node is addressed and the node list is
        not fetched at all.
        """
        names = [node] if node else self.names()
        return [Target(node=name, kind=kind) for name in names]

    def get_status(self, node: str) -> dict:
        """Detailed host metrics for one node (uptime, load, memory, root disk)."""
        status = self.client.get(api_path("nodes", node, "status"))
        if not isinstance(status, dict):
            raise ProxmoxApiError(f"Unexpected payload for node {node} status")
        return status
