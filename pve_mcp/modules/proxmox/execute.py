import logging

from pve_mcp.modules.proxmox.client import ProxmoxApiError, api_path
from pve_mcp.modules.proxmox.vms import guest_status

logger = logging.getLogger(__name__)


class GuestExec:
    """
    Run a shell command inside a guest.

    The two guest kinds are handled differently:

    - qemu: the command is handed to the QEMU guest agent and runs
      asynchronously inside the VM.  Only the submission is confirmed; the
      agent returns a PID and nothing here waits for the command to finish.
    - lxc:  the command runs through the host's exec facility and its output
      is returned inline.

    ``run`` never raises for guest-side problems.  It returns an outcome dict
    with ``ok`` False and an ``error`` message instead, always echoing the
    command so the failure can be traced back to what was asked.
    """

    def __init__(self, client):
        self.client = client

    def run(self, node: str, vmid: str, command: str, vm_type: str = "qemu") -> dict:
        outcome = {
            "node": node,
            "vmid": vmid,
            "type": vm_type,
            "command": command,
            "ok": False,
        }

        try:
            status = guest_status(self.client, node, vmid, vm_type)
        except ProxmoxApiError as e:
            return dict(outcome, error=str(e))

        state = status.get("status", "unknown")
        if state != "running":
            return dict(outcome, error=f"{vm_type.upper()} {vmid} is not running (status: {state})")

        try:
            if vm_type == "qemu":
                return self._submit_to_agent(outcome)
            return self._exec_in_container(outcome)
        except ProxmoxApiError as e:
            logger.warning("Command on %s %s/%s failed: %s", vm_type, node, vmid, e)
            return dict(outcome, error=str(e))

    def _submit_to_agent(self, outcome: dict) -> dict:
        path = api_path("nodes", outcome["node"], "qemu", outcome["vmid"], "agent", "exec")
        result = self.client.post(path, {"command": outcome["command"]})
        pid = result.get("pid") if isinstance(result, dict) else None
        logger.info("Submitted command to guest agent on VM %s (pid=%s)", outcome["vmid"], pid)
        return dict(outcome, ok=True, mode="submitted", pid=pid)

    def _exec_in_container(self, outcome: dict) -> dict:
        path = api_path("nodes", outcome["node"], "lxc", outcome["vmid"], "exec")
        result = self.client.post(path, {"command": outcome["command"]})
        if isinstance(result, dict):
            output = result.get("out-data") or result.get("output")
        else:
            output = result
        return dict(outcome, ok=True, mode="completed", output=str(output) if output else None)
