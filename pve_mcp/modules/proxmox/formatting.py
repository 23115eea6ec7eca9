"""Text rendering of tool results.

``render(tool_name, data)`` turns the structured data a tool handler
returns into the markdown text placed in the response content.  Nothing
here touches the network or the configuration.
"""

import json

ONLINE = "🟢"
OFFLINE = "🔴"
PAUSED = "🟡"
VM_ICON = "🖥️"
CT_ICON = "📦"

_SIZES = ["B", "KB", "MB", "GB", "TB", "PB"]


def format_bytes(value) -> str:
    """Format a byte count with base-1024 units, e.g. 1536 -> "1.5 KB"."""
    if not value:
        return "0 B"
    size = float(value)
    for unit in _SIZES:
        if abs(size) < 1024 or unit == _SIZES[-1]:
            return f"{size:.2f}".rstrip("0").rstrip(".") + f" {unit}"
        size /= 1024


def format_uptime(seconds) -> str:
    """Format an uptime in seconds as "2d 3h 4m", "3h 4m" or "4m"."""
    if not seconds:
        return "N/A"
    seconds = int(seconds)
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_percent(fraction) -> str:
    return f"{fraction * 100:.1f}%"


def _usage(used, total) -> str:
    if not used or not total:
        return "N/A"
    return f"{format_bytes(used)} / {format_bytes(total)} ({format_percent(used / total)})"


def _guest_state_icon(status) -> str:
    if status == "running":
        return ONLINE
    if status == "stopped":
        return OFFLINE
    return PAUSED


def _guest_icon(vm_type) -> str:
    return VM_ICON if vm_type == "qemu" else CT_ICON


def render_nodes(nodes) -> str:
    output = "🖥️  **Proxmox Cluster Nodes**\n\n"
    if not nodes:
        return output + "No nodes found.\n"

    for node in nodes:
        status = ONLINE if node.get("status") == "online" else OFFLINE
        cpu = format_percent(node["cpu"]) if node.get("cpu") is not None else "N/A"
        loadavg = node.get("loadavg") or []
        load = f"{float(loadavg[0]):.2f}" if loadavg else "N/A"

        output += f"{status} **{node.get('node')}**\n"
        output += f"   • Status: {node.get('status', 'unknown')}\n"
        output += f"   • Uptime: {format_uptime(node.get('uptime'))}\n"
        output += f"   • CPU: {cpu}\n"
        output += f"   • Memory: {_usage(node.get('mem'), node.get('maxmem'))}\n"
        output += f"   • Load: {load}\n\n"
    return output


def render_node_status(data) -> str:
    node = data["node"]
    status = data["status"]
    memory = status.get("memory") or {}
    rootfs = status.get("rootfs") or {}
    loadavg = status.get("loadavg")

    output = f"🖥️  **Node {node} Status**\n\n"
    output += f"• **Status**: {ONLINE + ' Online' if status.get('uptime') else OFFLINE + ' Offline'}\n"
    output += f"• **Uptime**: {format_uptime(status.get('uptime'))}\n"
    output += f"• **Load Average**: {', '.join(str(v) for v in loadavg) if loadavg else 'N/A'}\n"
    output += (
        f"• **CPU Usage**: "
        f"{format_percent(status['cpu']) if status.get('cpu') is not None else 'N/A'}\n"
    )
    output += f"• **Memory**: {_usage(memory.get('used'), memory.get('total'))}\n"
    output += f"• **Root Disk**: {_usage(rootfs.get('used'), rootfs.get('total'))}\n"
    return output


def render_vms(vms) -> str:
    output = "💻 **Virtual Machines**\n\n"
    if not vms:
        return output + "No virtual machines found.\n"

    for vm in vms:
        name = vm.get("name") or f"VM-{vm.get('vmid')}"
        output += (
            f"{_guest_state_icon(vm.get('status'))} {_guest_icon(vm['type'])} "
            f"**{name}** (ID: {vm.get('vmid')})\n"
        )
        output += f"   • Node: {vm['node']}\n"
        output += f"   • Status: {vm.get('status', 'unknown')}\n"
        output += f"   • Type: {vm['type'].upper()}\n"
        if vm.get("status") == "running":
            cpu = format_percent(vm["cpu"]) if vm.get("cpu") is not None else "N/A"
            memory = (
                f"{format_bytes(vm['mem'])} / {format_bytes(vm['maxmem'])}"
                if vm.get("mem") and vm.get("maxmem") else "N/A"
            )
            output += f"   • Uptime: {format_uptime(vm.get('uptime'))}\n"
            output += f"   • CPU: {cpu}\n"
            output += f"   • Memory: {memory}\n"
        output += "\n"
    return output


def render_vm_status(data) -> str:
    vmid = data["vmid"]
    vm_type = data["type"]
    status = data["status"]
    state = status.get("status", "unknown")

    output = (
        f"{_guest_state_icon(state)} {_guest_icon(vm_type)} "
        f"**{status.get('name') or f'VM-{vmid}'}** (ID: {vmid})\n\n"
    )
    output += f"• **Node**: {data['node']}\n"
    output += f"• **Status**: {state}\n"
    output += f"• **Type**: {vm_type.upper()}\n"

    if state == "running":
        cpu = format_percent(status["cpu"]) if status.get("cpu") is not None else "N/A"
        output += f"• **Uptime**: {format_uptime(status.get('uptime'))}\n"
        output += f"• **CPU Usage**: {cpu}\n"
        output += f"• **Memory**: {_usage(status.get('mem'), status.get('maxmem'))}\n"
        for label, key in (
            ("Disk Read", "diskread"),
            ("Disk Write", "diskwrite"),
            ("Network In", "netin"),
            ("Network Out", "netout"),
        ):
            value = format_bytes(status[key]) if status.get(key) else "N/A"
            output += f"• **{label}**: {value}\n"
    return output


def render_execution(outcome) -> str:
    vmid = outcome["vmid"]
    command = outcome["command"]

    if not outcome.get("ok"):
        label = "VM" if outcome["type"] == "qemu" else "LXC"
        output = f"❌ **Failed to execute command on {label} {vmid}**\n\n"
        output += f"**Command**: `{command}`\n"
        output += f"Error: {outcome.get('error')}\n"
        if outcome["type"] == "qemu":
            output += "\n*Note: Make sure the VM has guest agent installed and running*"
        return output

    if outcome["type"] == "qemu":
        output = f"💻 **Command submitted to VM {vmid}**\n\n"
        output += f"**Command**: `{command}`\n"
        output += "**Result**: Command submitted to guest agent\n"
        output += f"**PID**: {outcome.get('pid') or 'N/A'}\n\n"
        output += "*Note: Use guest agent status to check command completion*"
        return output

    output = f"📦 **Command executed on LXC {vmid}**\n\n"
    output += f"**Command**: `{command}`\n"
    output += f"**Output**:\n```\n{outcome.get('output') or 'Command executed successfully'}\n```"
    return output


def render_storage(pools) -> str:
    output = "💾 **Storage Pools**\n\n"
    if not pools:
        return output + "No storage found.\n"

    for pool in pools:
        enabled = pool.get("enabled", pool.get("active"))
        output += f"{ONLINE if enabled else OFFLINE} **{pool.get('storage')}**\n"
        output += f"   • Node: {pool['node']}\n"
        output += f"   • Type: {pool.get('type') or 'N/A'}\n"
        output += f"   • Content: {pool.get('content') or 'N/A'}\n"
        if pool.get("total") and pool.get("used"):
            output += f"   • Usage: {_usage(pool['used'], pool['total'])}\n"
        output += f"   • Status: {'Enabled' if enabled else 'Disabled'}\n\n"
    return output


def render_cluster_status(summary) -> str:
    if summary.get("error"):
        return f"❌ **Failed to get cluster status**\n\nError: {summary['error']}"

    output = "🏗️  **Proxmox Cluster Status**\n\n"
    cluster = summary.get("cluster")
    if cluster:
        quorum = "yes" if cluster.get("quorate") else "no"
        output += f"**Cluster**: {cluster.get('name')} (quorate: {quorum})\n"

    health = f"{ONLINE} Healthy" if summary["healthy"] else f"{PAUSED} Warning"
    output += f"**Cluster Health**: {health}\n"
    output += f"**Nodes**: {summary['online']}/{summary['total']} online\n\n"

    resources = summary.get("resources")
    if resources:
        cpu_total = resources["cpu_total"]
        mem_total = resources["mem_total"]
        cpu_pct = format_percent(resources["cpu_used"] / cpu_total) if cpu_total else "N/A"
        mem_pct = format_percent(resources["mem_used"] / mem_total) if mem_total else "N/A"
        output += "**Resource Usage**:\n"
        output += f"• CPU: {cpu_pct} ({resources['cpu_used']:.1f}/{cpu_total} cores)\n"
        output += (
            f"• Memory: {mem_pct} "
            f"({format_bytes(resources['mem_used'])}/{format_bytes(mem_total)})\n\n"
        )
    elif not summary.get("elevated"):
        output += "⚠️  **Limited Information**: Resource usage requires elevated permissions\n\n"

    output += "**Node Details**:\n"
    for node in summary["nodes"]:
        status = ONLINE if node.get("status") == "online" else OFFLINE
        output += f"{status} {node.get('node')} - {node.get('status', 'unknown')}\n"
    return output


def render_elevation_notice(tool, arguments) -> str:
    """Explain why a gated tool did not run, echoing what was asked for."""
    notice = tool.notice
    output = f"⚠️  **{notice.title} Requires Elevated Permissions**\n\n"
    output += (
        f"To {notice.purpose}, set `PROXMOX_ALLOW_ELEVATED=true` in your .env file "
        f"and ensure your API token has {notice.privilege}.\n\n"
    )
    output += f"**Current permissions**: {notice.current}\n"
    output += f"**Requested tool**: `{tool.name}`\n"
    output += f"**Requested arguments**: `{json.dumps(arguments, sort_keys=True)}`\n"
    if arguments.get("command"):
        output += f"**Requested command**: `{arguments['command']}`\n"
    return output


_RENDERERS = {
    "proxmox_get_nodes": render_nodes,
    "proxmox_get_node_status": render_node_status,
    "proxmox_get_vms": render_vms,
    "proxmox_get_vm_status": render_vm_status,
    "proxmox_execute_vm_command": render_execution,
    "proxmox_get_storage": render_storage,
    "proxmox_get_cluster_status": render_cluster_status,
}


def render(tool_name: str, data) -> str:
    """Render a tool's result; plain strings pass through unchanged."""
    if isinstance(data, str):
        return data
    renderer = _RENDERERS.get(tool_name)
    if renderer is None:
        return json.dumps(data, indent=2, sort_keys=True, default=str)
    return renderer(data)
