"""Process-wide configuration, read once at startup.

``load_config()`` resolves connection settings from a credential vault
(when ``VAULT_FILE`` is set) and the environment, validates them, and
returns a frozen ``ServerConfig``.  Nothing reads ambient process state
after that; the config object is handed to the client and the dispatcher.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from pve_mcp.modules.proxmox.client import ProxmoxError

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes", "on")


class ConfigError(ProxmoxError):
    """Startup configuration is missing or invalid."""


@dataclass(frozen=True)
class ServerConfig:
    host: str
    token_value: str
    port: int = 8006
    user: str = "root@pam"
    token_name: str = "mcpserver"
    allow_elevated: bool = False
    verify_ssl: bool = False
    request_timeout: float = 10.0
    max_concurrency: int = 4
    http_host: str = "0.0.0.0"
    http_port: int = 3000

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"


class PermissionGate:
    """Read-only elevation flag consulted before running privileged tools."""

    def __init__(self, elevated: bool):
        self._elevated = bool(elevated)

    @property
    def elevated(self) -> bool:
        return self._elevated

    def allows(self, tool) -> bool:
        return self._elevated or not tool.requires_elevation


def load_environment(env_file: str = None) -> None:
    """Load a ``.env`` file into os.environ without overriding existing values."""
    path = env_file or find_dotenv(usecwd=True)
    if path:
        load_dotenv(path, override=False)
        logger.debug("Loaded environment from %s", path)


def _flag(value, default=False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _number(name: str, value, cast, default):
    if value is None or value == "":
        return default
    try:
        result = cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if result <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return result


def _vault_credentials(environ: Mapping[str, str]) -> Optional[dict]:
    vault_file = environ.get("VAULT_FILE")
    if not vault_file:
        return None

    from pve_mcp.modules.ansible.vault_manager import VaultManager

    try:
        vm = VaultManager(vault_file, password=environ.get("VAULT_PASSWORD"))
        creds = vm.get_credentials(environ.get("PROXMOX_CLUSTER") or None)
    except Exception as exc:
        logger.warning("Failed to load vault credentials: %s, falling back to env vars", exc)
        return None
    if creds is None:
        logger.warning("No matching cluster in vault %s, falling back to env vars", vault_file)
    return creds


def load_config(environ: Mapping[str, str] = None) -> ServerConfig:
    """Build the immutable server configuration.

    Raises:
        ConfigError: if the Proxmox host or API token value is missing, or a
            numeric setting cannot be parsed.
    """
    if environ is None:
        environ = os.environ

    creds = _vault_credentials(environ) or {}

    def setting(vault_key, env_key):
        value = creds.get(vault_key)
        if value is None or value == "":
            value = environ.get(env_key)
        return value

    host = setting("host", "PROXMOX_HOST")
    token_value = setting("token_value", "PROXMOX_TOKEN_VALUE")

    missing = [
        name for name, value in (("PROXMOX_HOST", host), ("PROXMOX_TOKEN_VALUE", token_value))
        if not value
    ]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    # Vault entries may carry a scheme, the API URL is built from the bare host.
    host = re.sub(r'^https?://', '', str(host)).rstrip("/")

    return ServerConfig(
        host=host,
        token_value=str(token_value),
        port=_number("PROXMOX_PORT", setting("port", "PROXMOX_PORT"), int, 8006),
        user=setting("user", "PROXMOX_USER") or "root@pam",
        token_name=setting("token_name", "PROXMOX_TOKEN_NAME") or "mcpserver",
        allow_elevated=_flag(setting("allow_elevated", "PROXMOX_ALLOW_ELEVATED")),
        verify_ssl=_flag(setting("verify_ssl", "PROXMOX_VERIFY_SSL")),
        request_timeout=_number("PROXMOX_TIMEOUT", environ.get("PROXMOX_TIMEOUT"), float, 10.0),
        max_concurrency=_number(
            "PROXMOX_MAX_CONCURRENCY", environ.get("PROXMOX_MAX_CONCURRENCY"), int, 4
        ),
        http_host=environ.get("HTTP_HOST") or "0.0.0.0",
        http_port=_number("PORT", environ.get("PORT"), int, 3000),
    )
