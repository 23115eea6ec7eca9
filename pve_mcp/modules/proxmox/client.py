import logging
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)


class ProxmoxError(Exception):
    """Base class for errors raised while talking to a Proxmox VE cluster."""


class ProxmoxApiError(ProxmoxError):
    """A single API request failed (transport, HTTP status or payload)."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


def api_path(*segments) -> str:
    """Join path segments into an API path, escaping each one.

    api_path("nodes", "pve1", "qemu", 100, "status", "current")
    -> "/nodes/pve1/qemu/100/status/current"
    """
    return "/" + "/".join(quote(str(s), safe="") for s in segments)


class ProxmoxClient:
    """Thin REST caller for the Proxmox VE ``/api2/json`` API.

    One instance is shared by every request and every fan-out worker;
    ``httpx.Client`` is safe for concurrent use and nothing on this object
    changes after construction.
    """

    def __init__(self, config, transport: httpx.BaseTransport = None):
        self.config = config
        self.base_url = f"https://{config.host}:{config.port}/api2/json"

        headers = {
            "Authorization": (
                f"PVEAPIToken={config.user}!{config.token_name}={config.token_value}"
            ),
            "Content-Type": "application/json",
        }
        limits = httpx.Limits(
            max_connections=max(config.max_concurrency, 1),
            max_keepalive_connections=max(config.max_concurrency, 1),
        )

        self._http = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            verify=config.verify_ssl,
            timeout=config.request_timeout,
            limits=limits,
            transport=transport,
        )
        logger.debug("Proxmox client for %s (verify_ssl=%s)", self.base_url, config.verify_ssl)

    def request(self, path: str, method: str = "GET", body: dict = None):
        """Issue one request and return the ``data`` member of the payload."""
        url = f"{self.base_url}{path}"
        try:
            resp = self._http.request(method, path, json=body)
        except httpx.HTTPError as e:
            logger.debug("%s %s failed: %s", method, url, e)
            raise ProxmoxApiError(f"Failed to connect to Proxmox: {e}") from e

        if not resp.is_success:
            raise ProxmoxApiError(
                f"Proxmox API error: {resp.status_code} - {resp.text}",
                status_code=resp.status_code,
            )

        if not resp.text.strip():
            raise ProxmoxApiError("Empty response from Proxmox API", status_code=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            raise ProxmoxApiError(f"Failed to parse Proxmox API response: {e}") from e

        if not isinstance(payload, dict):
            raise ProxmoxApiError("Failed to parse Proxmox API response: expected a JSON object")
        return payload.get("data")

    def get(self, path: str):
        return self.request(path)

    def post(self, path: str, body: dict = None):
        return self.request(path, method="POST", body=body)

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
