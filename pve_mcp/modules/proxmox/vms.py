import logging

from pve_mcp.modules.proxmox.client import ProxmoxApiError, api_path
from pve_mcp.modules.proxmox.fanout import FanOutResult, Target, TargetKind
from pve_mcp.modules.proxmox.nodes import Nodes

logger = logging.getLogger(__name__)

GUEST_KINDS = (TargetKind.QEMU, TargetKind.LXC)


def _vmid_key(vm: dict):
    try:
        return (0, int(vm.get("vmid")), "")
    except (TypeError, ValueError):
        return (1, 0, str(vm.get("vmid")))


def guest_status(client, node: str, vmid: str, vm_type: str = "qemu") -> dict:
    """Current runtime status of a single guest."""
    status = client.get(api_path("nodes", node, vm_type, vmid, "status", "current"))
    if not isinstance(status, dict):
        raise ProxmoxApiError(f"Unexpected payload for {vm_type} {vmid} status")
    return status


class Vms:
    """QEMU virtual machines and LXC containers across the cluster."""

    def __init__(self, client, aggregator):
        self.client = client
        self.aggregator = aggregator

    def _fetch(self, target):
        guests = self.client.get(api_path("nodes", target.node, target.kind.value))
        if not isinstance(guests, list):
            raise ProxmoxApiError(f"Unexpected payload for {target}: expected a list")
        return [dict(vm, node=target.node, type=target.kind.value) for vm in guests]

    def list(self, node: str = None, vm_type: str = "all"):
        """
        List guests on one node or on every node.

        Each guest kind is its own fan-out over the node set; the results
        are folded together afterwards, so a node that answers for VMs but
        not for containers still contributes its VMs.

        Returns (guests, fanout): guests are deduplicated on
        (node, type, vmid) and sorted by vmid; fanout is the combined
        per-target outcome of all the kind-specific fan-outs.
        """
        kinds = [k for k in GUEST_KINDS if vm_type in (None, "all", k.value)]
        names = [node] if node else Nodes(self.client).names()

        combined = FanOutResult()
        for kind in kinds:
            targets = [Target(node=name, kind=kind) for name in names]
            combined.extend(self.aggregator.query(targets, self._fetch))

        seen = set()
        guests = []
        for vm in combined.merged():
            key = (vm["node"], vm["type"], str(vm.get("vmid")))
            if key in seen:
                continue
            seen.add(key)
            guests.append(vm)

        guests.sort(key=lambda vm: (_vmid_key(vm), vm["node"], vm["type"]))
        return guests, combined

    def get_status(self, node: str, vmid: str, vm_type: str = "qemu") -> dict:
        return guest_status(self.client, node, vmid, vm_type)
