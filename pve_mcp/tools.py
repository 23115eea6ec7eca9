"""Tool catalogue for the Proxmox MCP server.

Each tool is a plain function registered with ``@tool(...)``.  The
registration carries the input schema and the elevation requirement; the
function's docstring becomes the description reported by ``tools/list``.
``build_catalogue()`` freezes the registrations into the ``ToolCatalogue``
that serves both ``tools/list`` and ``tools/call``.

Handlers take ``(ctx, args)`` where ``args`` has already been validated
against the schema (defaults applied), and return data for
``formatting.render``.
"""

import enum
import inspect
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional

from mcp.types import Tool, ToolAnnotations

from pve_mcp.modules.config import PermissionGate
from pve_mcp.modules.proxmox.client import ProxmoxApiError, ProxmoxError
from pve_mcp.modules.proxmox.cluster_status import ClusterStatus
from pve_mcp.modules.proxmox.execute import GuestExec
from pve_mcp.modules.proxmox.fanout import FanOutAggregator, FanOutResult
from pve_mcp.modules.proxmox.nodes import Nodes
from pve_mcp.modules.proxmox.storage import Storage
from pve_mcp.modules.proxmox.vms import Vms

logger = logging.getLogger(__name__)


class ToolName(str, enum.Enum):
    GET_NODES = "proxmox_get_nodes"
    GET_NODE_STATUS = "proxmox_get_node_status"
    GET_VMS = "proxmox_get_vms"
    GET_VM_STATUS = "proxmox_get_vm_status"
    EXECUTE_VM_COMMAND = "proxmox_execute_vm_command"
    GET_STORAGE = "proxmox_get_storage"
    GET_CLUSTER_STATUS = "proxmox_get_cluster_status"


class ToolArgumentError(ValueError):
    """Arguments do not satisfy the tool's input schema."""


class ToolError(ProxmoxError):
    """A tool could not produce a result; reported inside the response text."""


@dataclass(frozen=True)
class ElevationNotice:
    title: str
    purpose: str
    privilege: str
    current: str


@dataclass(frozen=True)
class ToolContext:
    """Collaborators handed to every tool handler."""

    client: Any
    gate: PermissionGate
    aggregator: FanOutAggregator


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: MappingProxyType
    handler: Callable[[ToolContext, Dict[str, Any]], Any]
    requires_elevation: bool = False
    read_only: bool = True
    notice: Optional[ElevationNotice] = None

    def validate(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Check arguments against the schema and return them normalised.

        Every declared property is present in the result (None when absent
        and without a default).  Undeclared arguments are dropped.  String
        properties also accept integers, e.g. ``vmid: 100``.

        Raises:
            ToolArgumentError: a required field is missing, or a value has
                the wrong type or is outside its enum.
        """
        properties = self.input_schema.get("properties", {})
        for field in self.input_schema.get("required", ()):
            if arguments.get(field) in (None, ""):
                raise ToolArgumentError(f"Missing required argument: {field}")

        result = {}
        for field, spec in properties.items():
            value = arguments.get(field)
            if value in (None, ""):
                result[field] = spec.get("default")
                continue

            if spec.get("type") == "string":
                if isinstance(value, int) and not isinstance(value, bool):
                    value = str(value)
                elif not isinstance(value, str):
                    raise ToolArgumentError(
                        f"Argument '{field}' must be a string, got {type(value).__name__}"
                    )

            allowed = spec.get("enum")
            if allowed and value not in allowed:
                raise ToolArgumentError(
                    f"Invalid value for '{field}': {value!r} (expected one of: {', '.join(allowed)})"
                )
            result[field] = value
        return result

    def to_mcp(self) -> dict:
        """Descriptor as reported by tools/list."""
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=_thaw(self.input_schema),
            annotations=ToolAnnotations(
                readOnlyHint=self.read_only,
                destructiveHint=not self.read_only,
            ),
        ).model_dump(by_alias=True, exclude_none=True)


def _freeze(schema):
    if isinstance(schema, dict):
        return MappingProxyType({k: _freeze(v) for k, v in schema.items()})
    if isinstance(schema, list):
        return tuple(_freeze(v) for v in schema)
    return schema


def _thaw(schema):
    if isinstance(schema, MappingProxyType):
        return {k: _thaw(v) for k, v in schema.items()}
    if isinstance(schema, tuple):
        return [_thaw(v) for v in schema]
    return schema


class ToolCatalogue:
    """Immutable name -> ToolDescriptor registry, built once at startup."""

    def __init__(self, descriptors: List[ToolDescriptor]):
        tools = {}
        for descriptor in descriptors:
            if descriptor.name in tools:
                raise ValueError(f"Duplicate tool name: {descriptor.name}")
            tools[descriptor.name] = descriptor
        self._tools = MappingProxyType(tools)

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def list_tools(self) -> List[dict]:
        return [d.to_mcp() for d in self._tools.values()]

    def __contains__(self, name):
        return name in self._tools

    def __len__(self):
        return len(self._tools)

    def __iter__(self):
        return iter(self._tools.values())


_REGISTRY: List[ToolDescriptor] = []


def tool(
    name: ToolName,
    properties: dict = None,
    required: tuple = (),
    requires_elevation: bool = False,
    read_only: bool = True,
    notice: ElevationNotice = None,
):
    """Register a handler in the catalogue under ``name``."""
    if requires_elevation and notice is None:
        raise ValueError(f"{name.value} requires elevation but has no notice")

    schema = {"type": "object", "properties": properties or {}, "required": list(required)}

    def decorator(func):
        _REGISTRY.append(
            ToolDescriptor(
                name=name.value,
                description=inspect.cleandoc(func.__doc__ or ""),
                input_schema=_freeze(schema),
                handler=func,
                requires_elevation=requires_elevation,
                read_only=read_only,
                notice=notice,
            )
        )
        return func

    return decorator


def build_catalogue() -> ToolCatalogue:
    """Freeze the registered tools, checking every ToolName has a handler."""
    registered = [d.name for d in _REGISTRY]
    expected = [n.value for n in ToolName]
    missing = sorted(set(expected) - set(registered))
    if missing:
        raise RuntimeError(f"Tools without a handler: {', '.join(missing)}")
    by_name = {d.name: d for d in _REGISTRY}
    return ToolCatalogue([by_name[n] for n in expected])


def _raise_if_all_failed(operation: str, fanout: FanOutResult) -> None:
    """A partially answered fan-out is a result; one where nobody answered is not."""
    if fanout.all_failed:
        details = "; ".join(f"{f.target}: {f.error}" for f in fanout.failed)
        raise ToolError(f"Failed to {operation}: no node answered ({details})")


# ---------------------------------------------------------------------------
# Shared schema fragments
# ---------------------------------------------------------------------------

_NODE_FILTER = {"type": "string", "description": "Optional: filter by specific node"}
_NODE = {"type": "string", "description": "Node name where VM is located"}
_VMID = {"type": "string", "description": "VM ID number"}
_GUEST_TYPE = {
    "type": "string",
    "enum": ["qemu", "lxc"],
    "description": "VM type",
    "default": "qemu",
}


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@tool(ToolName.GET_NODES)
def proxmox_get_nodes(ctx: ToolContext, args: dict):
    """
    List all Proxmox cluster nodes with their status and resources.

    Response includes, per node: online state, uptime, CPU usage,
    memory usage and 1-minute load average.  Nodes are ordered by name.

    Use this tool when the user asks:
    - Which nodes are in the cluster?
    - Is node X online?
    - How loaded are the hypervisors?
    """
    return Nodes(ctx.client).get()


@tool(
    ToolName.GET_NODE_STATUS,
    properties={
        "node": {"type": "string", "description": "Node name (e.g., pve1, proxmox-node2)"},
    },
    required=("node",),
    requires_elevation=True,
    notice=ElevationNotice(
        title="Node Status",
        purpose="view detailed node status",
        privilege="Sys.Audit permissions",
        current="Basic (node listing only)",
    ),
)
def proxmox_get_node_status(ctx: ToolContext, args: dict):
    """
    Get detailed status information for a specific Proxmox node.

    Reports uptime, load average, CPU usage, memory and root disk usage.
    Requires elevated permissions (PROXMOX_ALLOW_ELEVATED=true).
    """
    node = args["node"]
    return {"node": node, "status": Nodes(ctx.client).get_status(node)}


@tool(
    ToolName.GET_VMS,
    properties={
        "node": _NODE_FILTER,
        "type": {
            "type": "string",
            "enum": ["qemu", "lxc", "all"],
            "description": "VM type filter",
            "default": "all",
        },
    },
)
def proxmox_get_vms(ctx: ToolContext, args: dict):
    """
    List all virtual machines across the cluster with their status.

    Covers QEMU virtual machines and LXC containers, optionally filtered by
    node and by type.  Guests are ordered by VM ID.  Nodes that do not
    answer are left out of the listing.
    """
    guests, fanout = Vms(ctx.client, ctx.aggregator).list(node=args["node"], vm_type=args["type"])
    _raise_if_all_failed("list virtual machines", fanout)
    return guests


@tool(
    ToolName.GET_VM_STATUS,
    properties={"node": _NODE, "vmid": _VMID, "type": _GUEST_TYPE},
    required=("node", "vmid"),
)
def proxmox_get_vm_status(ctx: ToolContext, args: dict):
    """
    Get detailed status information for a specific VM.

    For running guests this includes uptime, CPU and memory usage, disk
    and network I/O counters.
    """
    status = Vms(ctx.client, ctx.aggregator).get_status(args["node"], args["vmid"], args["type"])
    return {"node": args["node"], "vmid": args["vmid"], "type": args["type"], "status": status}


@tool(
    ToolName.EXECUTE_VM_COMMAND,
    properties={
        "node": _NODE,
        "vmid": _VMID,
        "command": {"type": "string", "description": "Shell command to execute"},
        "type": _GUEST_TYPE,
    },
    required=("node", "vmid", "command"),
    requires_elevation=True,
    read_only=False,
    notice=ElevationNotice(
        title="VM Command Execution",
        purpose="execute commands on VMs",
        privilege="appropriate VM permissions",
        current="Basic (VM listing only)",
    ),
)
def proxmox_execute_vm_command(ctx: ToolContext, args: dict):
    """
    Execute a shell command on a virtual machine via Proxmox API.

    QEMU VMs: the command is submitted to the QEMU guest agent and runs in
    the background; the response carries the agent's PID, not the output.
    LXC containers: the command runs to completion and its output is
    returned.

    Requires elevated permissions (PROXMOX_ALLOW_ELEVATED=true).
    """
    return GuestExec(ctx.client).run(args["node"], args["vmid"], args["command"], args["type"])


@tool(ToolName.GET_STORAGE, properties={"node": _NODE_FILTER})
def proxmox_get_storage(ctx: ToolContext, args: dict):
    """
    List all storage pools and their usage across the cluster.

    Shared storage appears once per node that mounts it.  Nodes that do not
    answer are left out of the listing.
    """
    pools, fanout = Storage(ctx.client, ctx.aggregator).list(node=args["node"])
    _raise_if_all_failed("list storage", fanout)
    return pools


@tool(ToolName.GET_CLUSTER_STATUS)
def proxmox_get_cluster_status(ctx: ToolContext, args: dict):
    """
    Get overall cluster status including nodes and resource usage.

    Without elevated permissions only node counts and per-node state are
    reported; resource totals and quorum information need
    PROXMOX_ALLOW_ELEVATED=true.
    """
    try:
        return ClusterStatus(ctx.client).get(elevated=ctx.gate.elevated)
    except ProxmoxApiError as e:
        return {"error": str(e)}
