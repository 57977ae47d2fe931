"""Custom exceptions for the workspace import bridge.

This module defines exception classes for the error conditions that can occur
while talking to an external project-management API, resolving external
entities, and persisting import state.
"""


class ImportBridgeError(Exception):
    """Base exception for all workspace import errors."""

    pass


class APIError(ImportBridgeError):
    """Base class for API-related errors."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
        """
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with status code and response."""
        msg = self.message
        if self.status_code:
            msg = f"[{self.status_code}] {msg}"
        if self.response:
            msg = f"{msg}: {self.response}"
        return msg


class SourceConnectionError(ImportBridgeError):
    """Raised when the external system cannot be reached with the tenant's credential.

    Distinct from transient failures: retrying will not help until the
    credential or connection settings are fixed.
    """

    pass


class AuthenticationError(APIError, SourceConnectionError):
    """Raised when authentication fails (401 Unauthorized)."""

    pass


class AuthorizationError(APIError):
    """Raised when authorization fails (403 Forbidden)."""

    pass


class NotFoundError(APIError):
    """Raised when a resource is not found (404 Not Found)."""

    pass


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded (429 Too Many Requests)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | None = None,
        retry_after: float | None = None,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
            retry_after: Seconds to wait before retrying (from Retry-After header)
        """
        super().__init__(message, status_code, response)
        self.retry_after = retry_after


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    pass


class NetworkError(ImportBridgeError):
    """Raised when network-related errors occur (timeouts, connection failures)."""

    pass


class SourceUnavailableError(ImportBridgeError):
    """Raised when the external system stays unavailable after all retries."""

    def __init__(self, message: str, attempts: int | None = None):
        self.attempts = attempts
        super().__init__(message)


class CredentialError(SourceConnectionError):
    """Raised when no usable credential is stored for a tenant."""

    pass


class VaultError(CredentialError):
    """Base class for Vault-related errors."""

    pass


class VaultAuthenticationError(VaultError):
    """Raised when Vault authentication fails."""

    pass


class ConfigurationError(ImportBridgeError):
    """Raised when configuration is invalid or missing."""

    pass


class StateError(ImportBridgeError):
    """Raised when state management errors occur."""

    pass


class PersistenceError(StateError):
    """Raised when a database write or read fails (constraint violations included)."""

    pass


class RunNotFoundError(StateError):
    """Raised when an import run does not exist or belongs to another tenant."""

    pass


class RunStateError(StateError):
    """Raised when an import run is mutated after reaching a terminal state."""

    pass


class RunConflictError(ImportBridgeError):
    """Raised when an import is already in flight for the same external workspace."""

    def __init__(self, tenant_id: str, external_workspace_id: str):
        self.tenant_id = tenant_id
        self.external_workspace_id = external_workspace_id
        super().__init__(
            f"An import for external workspace {external_workspace_id} "
            f"is already running for tenant {tenant_id}"
        )


class WorkspaceNotFoundError(ImportBridgeError):
    """Raised when the target workspace does not belong to the tenant."""

    pass


class ResolutionError(ImportBridgeError):
    """Raised when an external entity cannot be mapped onto internal state."""

    pass


class InvariantError(ImportBridgeError):
    """Raised when data violates an invariant the import relies on.

    These are never absorbed per entity: they abort the run.
    """

    pass


class MalformedPayloadError(InvariantError):
    """Raised when the external API returns a record that cannot be parsed."""

    pass


class RunCancelledError(ImportBridgeError):
    """Raised inside a run when the operator cancelled it."""

    pass
