import logging
import os
from pathlib import Path

import yaml
from ansible.parsing.vault import VaultLib, VaultSecret

logger = logging.getLogger(__name__)


class VaultManager:
    """
    Reads Proxmox connection credentials from an Ansible Vault YAML file.

    The file holds a ``clusters`` mapping, one entry per Proxmox cluster:

        clusters:
          lab:
            host: pve1.lab.local
            port: 8006
            user: root@pam
            token_name: mcpserver
            token_value: 3f1c...
            verify_ssl: false
            allow_elevated: false

    Env vars:
      VAULT_FILE     - path to the vault YAML
      VAULT_PASSWORD - vault encryption password (required for encrypted vaults)
    """

    def __init__(self, vault_file, password: str = None):
        self.vault_file = Path(vault_file)
        self._password = password if password is not None else os.environ.get("VAULT_PASSWORD")
        self._clusters: dict = {}
        self._load_vault()

    def _get_vault_password(self) -> bytes:
        """Return the vault password.

        Raises:
            ValueError: If the vault is encrypted and no password is configured.
        """
        if self._password:
            return self._password.encode()
        raise ValueError(
            "Vault is encrypted but VAULT_PASSWORD environment variable is not set. "
            "Set VAULT_PASSWORD to decrypt the vault."
        )

    def _load_vault(self):
        """Load cluster credentials from the vault file.

        Supports both Ansible Vault-encrypted files and plaintext YAML.
        If the file starts with the '$ANSIBLE_VAULT' header it is decrypted
        using the configured password. Otherwise it is loaded directly as
        plain YAML, in which case no password is required.
        """
        raw = self.vault_file.read_bytes()

        if raw.startswith(b'$ANSIBLE_VAULT'):
            vault = VaultLib(secrets=[("default", VaultSecret(self._get_vault_password()))])
            data = yaml.safe_load(vault.decrypt(raw))
        else:
            data = yaml.safe_load(raw)

        if not isinstance(data, dict):
            raise ValueError(f"Vault file {self.vault_file} does not contain a YAML mapping")
        self._clusters = data.get("clusters") or {}
        logger.debug("Loaded %d cluster(s) from %s", len(self._clusters), self.vault_file)

    def list_clusters(self) -> list:
        """Return the cluster names in file order."""
        return list(self._clusters)

    def get_credentials(self, name: str = None) -> dict | None:
        """Return the credentials dict for ``name`` (default: first cluster), or None."""
        if not self._clusters:
            return None
        if name is None:
            name = next(iter(self._clusters))
        creds = self._clusters.get(name)
        return dict(creds) if creds else None
