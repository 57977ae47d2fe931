"""Per-tenant external API credentials.

Two backends are provided: a static map read from configuration and a
HashiCorp Vault KV v2 store authenticated with AppRole.
"""

import time
from typing import Protocol

import hvac
from hvac.exceptions import InvalidPath
from hvac.exceptions import VaultError as HvacVaultError

from workspace_import.client.exceptions import (
    CredentialError,
    VaultAuthenticationError,
    VaultError,
)
from workspace_import.config import CredentialsConfig, VaultConfig
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)

TOKEN_FIELD = "personal_access_token"


class CredentialStore(Protocol):
    def get_token(self, tenant_id: str, provider: str) -> str:
        """Return the tenant's API token.

        Raises:
            CredentialError: If the tenant has not connected the provider
        """
        ...

    def store_token(self, tenant_id: str, provider: str, token: str) -> None: ...

    def delete_token(self, tenant_id: str, provider: str) -> None: ...


class StaticCredentialStore:
    """In-memory tokens, seeded from configuration."""

    def __init__(self, tokens: dict[str, str] | None = None):
        self._tokens: dict[tuple[str, str], str] = {}
        self._default_tokens = dict(tokens or {})

    def get_token(self, tenant_id: str, provider: str) -> str:
        token = self._tokens.get((tenant_id, provider)) or self._default_tokens.get(tenant_id)
        if not token:
            raise CredentialError(
                f"{provider} is not connected for tenant {tenant_id}. "
                "Add a personal access token first."
            )
        return token

    def store_token(self, tenant_id: str, provider: str, token: str) -> None:
        self._tokens[(tenant_id, provider)] = token

    def delete_token(self, tenant_id: str, provider: str) -> None:
        self._tokens.pop((tenant_id, provider), None)
        self._default_tokens.pop(tenant_id, None)


class VaultCredentialStore:
    """Tokens kept in Vault KV v2 at ``<path_prefix>/<tenant_id>/<provider>``.

    Logs in with AppRole and re-authenticates when the token lease is about
    to expire.
    """

    def __init__(self, config: VaultConfig, client: hvac.Client | None = None):
        self.config = config
        self.client = client or hvac.Client(url=config.url, namespace=config.namespace)
        self._token_expires_at: float = 0

    def _authenticate(self) -> None:
        try:
            auth_response = self.client.auth.approle.login(
                role_id=self.config.role_id,
                secret_id=self.config.secret_id,
            )
        except HvacVaultError as e:
            logger.error("vault_authentication_failed", error=str(e))
            raise VaultAuthenticationError(f"Vault authentication failed: {str(e)}") from e

        self.client.token = auth_response["auth"]["client_token"]
        lease_duration = auth_response["auth"]["lease_duration"]
        self._token_expires_at = time.time() + lease_duration

        logger.info("vault_authentication_successful", lease_duration=lease_duration)

    def _ensure_authenticated(self) -> None:
        # Re-login within 5 minutes of expiry
        if time.time() >= (self._token_expires_at - 300):
            self._authenticate()

    def _secret_path(self, tenant_id: str, provider: str) -> str:
        return f"{self.config.path_prefix}/{tenant_id}/{provider}"

    def get_token(self, tenant_id: str, provider: str) -> str:
        self._ensure_authenticated()
        path = self._secret_path(tenant_id, provider)

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=self.config.mount_point,
                raise_on_deleted_version=True,
            )
        except InvalidPath as e:
            raise CredentialError(
                f"{provider} is not connected for tenant {tenant_id}. "
                "Add a personal access token first."
            ) from e
        except HvacVaultError as e:
            logger.error("vault_read_failed", path=path, error=str(e))
            raise VaultError(f"Failed to read secret: {str(e)}") from e

        token = response.get("data", {}).get("data", {}).get(TOKEN_FIELD)
        if not token:
            raise CredentialError(f"Stored {provider} credential for tenant {tenant_id} is empty")
        return token

    def store_token(self, tenant_id: str, provider: str, token: str) -> None:
        self._ensure_authenticated()
        path = self._secret_path(tenant_id, provider)

        try:
            self.client.secrets.kv.v2.create_or_update_secret(
                path=path,
                secret={TOKEN_FIELD: token},
                mount_point=self.config.mount_point,
            )
        except HvacVaultError as e:
            logger.error("vault_write_failed", path=path, error=str(e))
            raise VaultError(f"Failed to write secret: {str(e)}") from e

        logger.info("vault_secret_written", path=path)

    def delete_token(self, tenant_id: str, provider: str) -> None:
        self._ensure_authenticated()
        path = self._secret_path(tenant_id, provider)

        try:
            self.client.secrets.kv.v2.delete_metadata_and_all_versions(
                path=path, mount_point=self.config.mount_point
            )
        except HvacVaultError as e:
            logger.error("vault_delete_failed", path=path, error=str(e))
            raise VaultError(f"Failed to delete secret: {str(e)}") from e

        logger.info("vault_secret_deleted", path=path)


def create_credential_store(config: CredentialsConfig) -> CredentialStore:
    """Build the credential store selected by ``credentials.backend``."""
    if config.backend == "vault":
        assert config.vault is not None
        return VaultCredentialStore(config.vault)
    return StaticCredentialStore(config.tokens)
