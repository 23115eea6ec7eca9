import logging

from pve_mcp.modules.proxmox.client import ProxmoxApiError
from pve_mcp.modules.proxmox.nodes import Nodes

logger = logging.getLogger(__name__)


class ClusterStatus:

    def __init__(self, client):
        self.client = client

    def get(self, elevated: bool = False) -> dict:
        """
        Summarize cluster health from the node list.

        Node counts and per-node state are always returned.  With elevated
        access the summary also carries CPU/memory totals over the online
        nodes and, when /cluster/status answers, the cluster name and quorum.

        Response fields:
        - nodes:     node dicts sorted by name
        - online:    number of nodes reporting status "online"
        - total:     number of nodes
        - healthy:   True when every node is online
        - elevated:  whether the extended fields were collected
        - cluster:   {"name", "quorate", "version"} or None
        - resources: {"cpu_total", "cpu_used", "mem_total", "mem_used"} or None
        """
        nodes = Nodes(self.client).get()
        online = [n for n in nodes if n.get("status") == "online"]

        summary = {
            "nodes": nodes,
            "online": len(online),
            "total": len(nodes),
            "healthy": len(online) == len(nodes),
            "elevated": elevated,
            "cluster": None,
            "resources": None,
        }
        if not elevated:
            return summary

        summary["cluster"] = self._cluster_info()
        summary["resources"] = {
            "cpu_total": sum(n.get("maxcpu") or 0 for n in online),
            "cpu_used": sum((n.get("cpu") or 0) * (n.get("maxcpu") or 0) for n in online),
            "mem_total": sum(n.get("maxmem") or 0 for n in online),
            "mem_used": sum(n.get("mem") or 0 for n in online),
        }
        return summary

    def _cluster_info(self):
        # Standalone nodes and tokens without Sys.Audit have no cluster entry.
        try:
            entries = self.client.get("/cluster/status")
        except ProxmoxApiError as e:
            logger.info("Cluster status unavailable: %s", e)
            return None

        for entry in entries or []:
            if isinstance(entry, dict) and entry.get("type") == "cluster":
                return {
                    "name": entry.get("name"),
                    "quorate": bool(entry.get("quorate")),
                    "version": entry.get("version"),
                }
        return None
