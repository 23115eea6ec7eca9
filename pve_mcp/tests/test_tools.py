"""
Tool handler tests.

Every tool is called through the dispatcher against a FakeClient that
serves a two-node cluster (pve1, pve2), so these exercise validation,
the permission gate, fan-out and rendering together.
"""

import pytest

from pve_mcp.modules.proxmox.client import ProxmoxApiError
from pve_mcp.modules.proxmox.execute import GuestExec
from pve_mcp.tools import ToolArgumentError, ToolName, build_catalogue
from helpers import offline


# ---------------------------------------------------------------------------
# Catalogue and argument validation
# ---------------------------------------------------------------------------

class TestCatalogue:

    def test_every_tool_name_registered(self):
        catalogue = build_catalogue()
        assert catalogue.names() == [n.value for n in ToolName]
        assert len(catalogue) == 7

    def test_descriptor_shape(self):
        tools = {t["name"]: t for t in build_catalogue().list_tools()}
        vm_status = tools["proxmox_get_vm_status"]
        assert vm_status["inputSchema"]["required"] == ["node", "vmid"]
        assert vm_status["inputSchema"]["properties"]["type"]["enum"] == ["qemu", "lxc"]
        assert vm_status["description"].startswith("Get detailed status information for a specific VM.")
        assert tools["proxmox_execute_vm_command"]["annotations"]["destructiveHint"] is True
        assert tools["proxmox_get_nodes"]["annotations"]["readOnlyHint"] is True

    def test_schema_cannot_be_mutated(self):
        tool = build_catalogue().get("proxmox_get_vms")
        listed = tool.to_mcp()
        listed["inputSchema"]["properties"].clear()
        assert "node" in tool.to_mcp()["inputSchema"]["properties"]


class TestValidation:

    def setup_method(self):
        self.catalogue = build_catalogue()

    def test_defaults_applied(self):
        args = self.catalogue.get("proxmox_get_vms").validate({})
        assert args == {"node": None, "type": "all"}

    def test_integer_vmid_normalised(self):
        args = self.catalogue.get("proxmox_get_vm_status").validate({"node": "pve1", "vmid": 100})
        assert args == {"node": "pve1", "vmid": "100", "type": "qemu"}

    def test_missing_required(self):
        with pytest.raises(ToolArgumentError, match="Missing required argument: vmid"):
            self.catalogue.get("proxmox_get_vm_status").validate({"node": "pve1"})

    def test_enum_enforced(self):
        with pytest.raises(ToolArgumentError, match="Invalid value for 'type'"):
            self.catalogue.get("proxmox_get_vms").validate({"type": "docker"})

    def test_wrong_primitive_type(self):
        with pytest.raises(ToolArgumentError, match="must be a string"):
            self.catalogue.get("proxmox_get_node_status").validate({"node": ["pve1"]})

    def test_bool_is_not_a_string(self):
        with pytest.raises(ToolArgumentError):
            self.catalogue.get("proxmox_get_node_status").validate({"node": True})

    def test_undeclared_arguments_dropped(self):
        args = self.catalogue.get("proxmox_get_storage").validate({"node": "pve1", "extra": 1})
        assert args == {"node": "pve1"}


# ---------------------------------------------------------------------------
# Listing tools
# ---------------------------------------------------------------------------

class TestGetNodes:

    def test_lists_nodes_sorted(self, make_client, make_dispatcher, call_tool, cluster_routes):
        text = call_tool(make_dispatcher(make_client(cluster_routes)), "proxmox_get_nodes")
        assert text.startswith("🖥️  **Proxmox Cluster Nodes**")
        assert text.index("**pve1**") < text.index("**pve2**")
        assert "Uptime: 1d 1h 1m" in text
        assert "CPU: 10.0%" in text
        assert "Memory: 2 GB / 8 GB (25.0%)" in text
        assert "Load: 1.25" in text

    def test_idempotent(self, make_client, make_dispatcher, call_tool, cluster_routes):
        dispatcher = make_dispatcher(make_client(cluster_routes))
        assert call_tool(dispatcher, "proxmox_get_nodes") == call_tool(dispatcher, "proxmox_get_nodes")

    def test_api_failure_is_content_error(self, make_client, make_dispatcher, call_tool):
        client = make_client({("GET", "/nodes"): ProxmoxApiError("Proxmox API error: 500 - boom")})
        text = call_tool(make_dispatcher(client), "proxmox_get_nodes")
        assert text == "Error: Proxmox API error: 500 - boom"


class TestGetVms:

    def test_all_guests_sorted_by_vmid(self, make_client, make_dispatcher, call_tool, cluster_routes):
        text = call_tool(make_dispatcher(make_client(cluster_routes)), "proxmox_get_vms")
        order = [text.index(f"(ID: {vmid})") for vmid in ("100", "101", "103", "250")]
        assert order == sorted(order)

    def test_same_vmid_on_two_nodes_kept_apart(self, make_client, make_dispatcher, call_tool,
                                               cluster_routes):
        """VM 100 on pve1 and VM 100 on pve2 are different guests."""
        text = call_tool(make_dispatcher(make_client(cluster_routes)), "proxmox_get_vms",
                         {"type": "qemu"})
        assert text.count("(ID: 100)") == 2
        assert "**web**" in text and "**db**" in text
        assert "**dns**" not in text

    def test_unreachable_node_omitted(self, make_client, make_dispatcher, call_tool, cluster_routes):
        """Containers from the reachable node only, sorted, no trace of the other node."""
        cluster_routes[("GET", "/nodes/pve2/lxc")] = offline("pve2")
        cluster_routes[("GET", "/nodes/pve2/qemu")] = offline("pve2")
        text = call_tool(make_dispatcher(make_client(cluster_routes)), "proxmox_get_vms",
                         {"type": "lxc"})

        assert text.index("(ID: 101)") < text.index("(ID: 103)")
        assert "pve2" not in text
        assert "Error" not in text

    def test_partial_node_answer_kept(self, make_client, make_dispatcher, call_tool, cluster_routes):
        """A node answering for VMs but not containers still contributes its VMs."""
        cluster_routes[("GET", "/nodes/pve2/lxc")] = offline("pve2")
        text = call_tool(make_dispatcher(make_client(cluster_routes)), "proxmox_get_vms")
        assert "**build**" in text
        assert "**dns**" in text

    def test_node_filter_skips_node_listing(self, make_client, make_dispatcher, call_tool,
                                            cluster_routes):
        client = make_client(cluster_routes)
        text = call_tool(make_dispatcher(client), "proxmox_get_vms", {"node": "pve2"})
        assert ("GET", "/nodes", None) not in client.calls
        assert "**db**" in text
        assert "**web**" not in text

    def test_every_node_failing_is_reported(self, make_client, make_dispatcher, call_tool,
                                            cluster_routes):
        for node in ("pve1", "pve2"):
            for kind in ("qemu", "lxc"):
                cluster_routes[("GET", f"/nodes/{node}/{kind}")] = offline(node)
        text = call_tool(make_dispatcher(make_client(cluster_routes)), "proxmox_get_vms")
        assert text.startswith("Error: Failed to list virtual machines: no node answered")

    def test_empty_cluster(self, make_client, make_dispatcher, call_tool):
        text = call_tool(make_dispatcher(make_client({("GET", "/nodes"): []})), "proxmox_get_vms")
        assert "No virtual machines found." in text


class TestGetStorage:

    def test_deduplicated_per_node_and_sorted(self, make_client, make_dispatcher, call_tool,
                                               cluster_routes):
        text = call_tool(make_dispatcher(make_client(cluster_routes)), "proxmox_get_storage")
        assert text.count("**ceph**") == 2
        assert text.count("**local**") == 2
        assert text.index("**ceph**") < text.index("**local**")
        assert "Usage: 1 TB / 4 TB (25.0%)" in text
        assert "Status: Disabled" in text

    def test_single_node(self, make_client, make_dispatcher, call_tool, cluster_routes):
        text = call_tool(make_dispatcher(make_client(cluster_routes)), "proxmox_get_storage",
                         {"node": "pve1"})
        assert "Node: pve2" not in text
        assert "Node: pve1" in text

    def test_unreachable_single_node(self, make_client, make_dispatcher, call_tool, cluster_routes):
        cluster_routes[("GET", "/nodes/pve1/storage")] = offline("pve1")
        text = call_tool(make_dispatcher(make_client(cluster_routes)), "proxmox_get_storage",
                         {"node": "pve1"})
        assert text.startswith("Error: Failed to list storage")


class TestGetVmStatus:

    def test_running_vm(self, make_client, make_dispatcher, call_tool):
        client = make_client({
            ("GET", "/nodes/pve1/qemu/100/status/current"): {
                "name": "web", "status": "running", "uptime": 120, "cpu": 0.5,
                "mem": 1024 ** 3, "maxmem": 4 * 1024 ** 3, "diskread": 2048, "netout": 0,
            },
        })
        text = call_tool(make_dispatcher(client), "proxmox_get_vm_status",
                         {"node": "pve1", "vmid": 100})
        assert "**web** (ID: 100)" in text
        assert "**Memory**: 1 GB / 4 GB (25.0%)" in text
        assert "**Disk Read**: 2 KB" in text
        assert "**Network Out**: N/A" in text

    def test_container_path(self, make_client, make_dispatcher, call_tool):
        client = make_client({("GET", "/nodes/pve1/lxc/101/status/current"): {"status": "stopped"}})
        text = call_tool(make_dispatcher(client), "proxmox_get_vm_status",
                         {"node": "pve1", "vmid": "101", "type": "lxc"})
        assert "**VM-101** (ID: 101)" in text
        assert "**Type**: LXC" in text
        assert "Uptime" not in text


# ---------------------------------------------------------------------------
# Elevated tools
# ---------------------------------------------------------------------------

class TestNodeStatus:

    def test_refused_without_elevation(self, make_client, make_dispatcher, call_tool):
        client = make_client()
        text = call_tool(make_dispatcher(client), "proxmox_get_node_status", {"node": "pve1"})
        assert "Node Status Requires Elevated Permissions" in text
        assert '"node": "pve1"' in text
        assert client.calls == []

    def test_elevated(self, make_client, make_dispatcher, call_tool):
        client = make_client({
            ("GET", "/nodes/pve1/status"): {
                "uptime": 3700, "loadavg": ["0.1", "0.2", "0.3"], "cpu": 0.02,
                "memory": {"used": 1024 ** 3, "total": 2 * 1024 ** 3},
                "rootfs": {"used": 5 * 1024 ** 3, "total": 20 * 1024 ** 3},
            },
        })
        text = call_tool(make_dispatcher(client, elevated=True), "proxmox_get_node_status",
                         {"node": "pve1"})
        assert "**Node pve1 Status**" in text
        assert "🟢 Online" in text
        assert "**Load Average**: 0.1, 0.2, 0.3" in text
        assert "**Root Disk**: 5 GB / 20 GB (25.0%)" in text


class TestExecuteCommand:

    ARGS = {"node": "n1", "vmid": "100", "command": "uptime"}

    def test_refused_without_elevation(self, make_client, make_dispatcher, call_tool):
        """No request reaches the API and the command is echoed back."""
        client = make_client()
        text = call_tool(make_dispatcher(client), "proxmox_execute_vm_command", self.ARGS)
        assert "VM Command Execution Requires Elevated Permissions" in text
        assert "PROXMOX_ALLOW_ELEVATED=true" in text
        assert "uptime" in text
        assert client.calls == []

    def test_qemu_submits_to_guest_agent(self, make_client, make_dispatcher, call_tool):
        client = make_client({
            ("GET", "/nodes/n1/qemu/100/status/current"): {"status": "running"},
            ("POST", "/nodes/n1/qemu/100/agent/exec"): {"pid": 4242},
        })
        text = call_tool(make_dispatcher(client, elevated=True), "proxmox_execute_vm_command",
                         self.ARGS)
        assert "Command submitted to guest agent" in text
        assert "**PID**: 4242" in text
        assert ("POST", "/nodes/n1/qemu/100/agent/exec", {"command": "uptime"}) in client.calls

    def test_lxc_returns_output_inline(self, make_client, make_dispatcher, call_tool):
        client = make_client({
            ("GET", "/nodes/n1/lxc/100/status/current"): {"status": "running"},
            ("POST", "/nodes/n1/lxc/100/exec"): " 10:00:00 up 3 days,  load average: 0.00",
        })
        text = call_tool(make_dispatcher(client, elevated=True), "proxmox_execute_vm_command",
                         dict(self.ARGS, type="lxc"))
        assert "Command executed on LXC 100" in text
        assert "load average: 0.00" in text

    def test_guest_not_running(self, make_client, make_dispatcher, call_tool):
        client = make_client({("GET", "/nodes/n1/qemu/100/status/current"): {"status": "stopped"}})
        text = call_tool(make_dispatcher(client, elevated=True), "proxmox_execute_vm_command",
                         self.ARGS)
        assert "Failed to execute command on VM 100" in text
        assert "is not running (status: stopped)" in text
        assert "`uptime`" in text
        assert not any(method == "POST" for method, _, _ in client.calls)

    def test_guest_agent_missing(self, make_client, make_dispatcher, call_tool):
        client = make_client({
            ("GET", "/nodes/n1/qemu/100/status/current"): {"status": "running"},
            ("POST", "/nodes/n1/qemu/100/agent/exec"): ProxmoxApiError(
                "Proxmox API error: 500 - QEMU guest agent is not running"),
        })
        text = call_tool(make_dispatcher(client, elevated=True), "proxmox_execute_vm_command",
                         self.ARGS)
        assert "Failed to execute command on VM 100" in text
        assert "QEMU guest agent is not running" in text
        assert "`uptime`" in text
        assert "guest agent installed" in text

    def test_exec_makes_one_status_read_then_one_submit(self, make_client):
        client = make_client({
            ("GET", "/nodes/n1/qemu/100/status/current"): {"status": "running"},
            ("POST", "/nodes/n1/qemu/100/agent/exec"): {"pid": 7},
        })
        outcome = GuestExec(client).run("n1", "100", "uptime")
        assert outcome["ok"] is True
        assert outcome["pid"] == 7
        assert client.calls == [
            ("GET", "/nodes/n1/qemu/100/status/current", None),
            ("POST", "/nodes/n1/qemu/100/agent/exec", {"command": "uptime"}),
        ]


class TestClusterStatus:

    def test_degraded_without_elevation(self, make_client, make_dispatcher, call_tool,
                                        cluster_routes):
        client = make_client(cluster_routes)
        text = call_tool(make_dispatcher(client), "proxmox_get_cluster_status")
        assert "**Nodes**: 2/2 online" in text
        assert "🟢 Healthy" in text
        assert "Limited Information" in text
        assert "Resource Usage" not in text
        assert ("GET", "/cluster/status", None) not in client.calls

    def test_elevated_totals_and_quorum(self, make_client, make_dispatcher, call_tool,
                                        cluster_routes):
        cluster_routes[("GET", "/cluster/status")] = [
            {"type": "cluster", "name": "lab", "quorate": 1, "version": 4},
            {"type": "node", "name": "pve1", "online": 1},
        ]
        text = call_tool(make_dispatcher(make_client(cluster_routes), elevated=True),
                         "proxmox_get_cluster_status")
        assert "**Cluster**: lab (quorate: yes)" in text
        assert "**Resource Usage**" in text
        assert "CPU: 20.0% (2.4/12 cores)" in text
        assert "Memory: 25.0% (6 GB/24 GB)" in text
        assert "Limited Information" not in text

    def test_cluster_endpoint_failure_tolerated(self, make_client, make_dispatcher, call_tool,
                                                cluster_routes):
        text = call_tool(make_dispatcher(make_client(cluster_routes), elevated=True),
                         "proxmox_get_cluster_status")
        assert "**Cluster**:" not in text
        assert "**Resource Usage**" in text

    def test_offline_node_warns(self, make_client, make_dispatcher, call_tool, cluster_routes):
        cluster_routes[("GET", "/nodes")][0]["status"] = "offline"
        text = call_tool(make_dispatcher(make_client(cluster_routes)), "proxmox_get_cluster_status")
        assert "🟡 Warning" in text
        assert "**Nodes**: 1/2 online" in text
        assert "🔴 pve2 - offline" in text

    def test_node_listing_failure(self, make_client, make_dispatcher, call_tool):
        client = make_client({("GET", "/nodes"): ProxmoxApiError("Failed to connect to Proxmox: refused")})
        text = call_tool(make_dispatcher(client), "proxmox_get_cluster_status")
        assert text.startswith("❌ **Failed to get cluster status**")
        assert "refused" in text
