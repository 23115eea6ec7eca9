import logging

from pve_mcp.modules.proxmox.client import ProxmoxApiError, api_path
from pve_mcp.modules.proxmox.nodes import Nodes

logger = logging.getLogger(__name__)


class Storage:

    def __init__(self, client, aggregator):
        self.client = client
        self.aggregator = aggregator

    def _fetch(self, target):
        pools = self.client.get(api_path("nodes", target.node, "storage"))
        if not isinstance(pools, list):
            raise ProxmoxApiError(f"Unexpected payload for {target} storage: expected a list")
        return [dict(pool, node=target.node) for pool in pools]

    def list(self, node: str = None):
        """
        List storage pools per node.

        Shared storage shows up once per node that mounts it, so entries are
        keyed on (node, storage) and sorted by storage name, then node.

        Returns (pools, fanout).
        """
        targets = Nodes(self.client).targets(node=node)
        result = self.aggregator.query(targets, self._fetch)

        seen = set()
        pools = []
        for pool in result.merged():
            key = (pool["node"], str(pool.get("storage", "")))
            if key in seen:
                continue
            seen.add(key)
            pools.append(pool)

        pools.sort(key=lambda p: (str(p.get("storage", "")), p["node"]))
        return pools, result
