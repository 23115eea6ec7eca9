import sys
from pathlib import Path

import pytest

# Ensure the project root is on sys.path so "pve_mcp.*" imports work
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pve_mcp.modules.config import ServerConfig
from pve_mcp.server import build_dispatcher

from helpers import FakeClient


# ---------------------------------------------------------------------------
# Cluster fixtures
# ---------------------------------------------------------------------------

NODES = [
    {"node": "pve2", "status": "online", "cpu": 0.25, "maxcpu": 8,
     "mem": 4 * 1024 ** 3, "maxmem": 16 * 1024 ** 3, "uptime": 7200, "loadavg": ["0.50", "0.40", "0.30"]},
    {"node": "pve1", "status": "online", "cpu": 0.10, "maxcpu": 4,
     "mem": 2 * 1024 ** 3, "maxmem": 8 * 1024 ** 3, "uptime": 90061, "loadavg": ["1.25", "1.00", "0.75"]},
]


@pytest.fixture
def cluster_routes():
    """A healthy two-node cluster with a few guests and storage pools."""
    return {
        ("GET", "/nodes"): [dict(n) for n in NODES],
        ("GET", "/nodes/pve1/qemu"): [
            {"vmid": 100, "name": "web", "status": "running", "cpu": 0.05,
             "mem": 512 * 1024 ** 2, "maxmem": 2 * 1024 ** 3, "uptime": 3600},
        ],
        ("GET", "/nodes/pve1/lxc"): [
            {"vmid": "103", "name": "dns", "status": "running", "uptime": 60},
            {"vmid": "101", "name": "proxy", "status": "stopped"},
        ],
        ("GET", "/nodes/pve2/qemu"): [
            {"vmid": 100, "name": "db", "status": "stopped"},
            {"vmid": 250, "name": "build", "status": "paused"},
        ],
        ("GET", "/nodes/pve2/lxc"): [],
        ("GET", "/nodes/pve1/storage"): [
            {"storage": "local", "type": "dir", "content": "iso,backup", "enabled": 1,
             "used": 10 * 1024 ** 3, "total": 100 * 1024 ** 3},
            {"storage": "ceph", "type": "rbd", "content": "images", "enabled": 1,
             "used": 1024 ** 4, "total": 4 * 1024 ** 4},
        ],
        ("GET", "/nodes/pve2/storage"): [
            {"storage": "ceph", "type": "rbd", "content": "images", "enabled": 1,
             "used": 1024 ** 4, "total": 4 * 1024 ** 4},
            {"storage": "local", "type": "dir", "content": "iso", "enabled": 0},
        ],
    }


@pytest.fixture
def make_client():
    def _make(routes=None):
        return FakeClient(routes)
    return _make


@pytest.fixture
def make_config():
    def _make(elevated=False, **overrides):
        return ServerConfig(
            host="pve.test",
            token_value="secret",
            allow_elevated=elevated,
            **overrides,
        )
    return _make


@pytest.fixture
def make_dispatcher(make_config):
    """Build a dispatcher around a FakeClient."""
    def _make(client, elevated=False):
        return build_dispatcher(make_config(elevated=elevated), client)
    return _make


@pytest.fixture
def call_tool():
    """
    Send a tools/call through a dispatcher and return the response text.

    Usage in tests:
        text = call_tool(dispatcher, "proxmox_get_nodes")
    """
    def _call(dispatcher, name, arguments=None, request_id=1):
        response = dispatcher.handle({
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments or {}},
        })
        assert "error" not in response, f"{name}: unexpected protocol error {response}"
        content = response["result"]["content"]
        assert len(content) == 1 and content[0]["type"] == "text"
        return content[0]["text"]
    return _call
