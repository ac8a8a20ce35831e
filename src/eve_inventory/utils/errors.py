"""Custom exceptions for EVE Inventory.

This module provides structured error handling with specific exception types
for the authentication and synchronization failure modes. All exceptions
inherit from EveInventoryError.
"""
from typing import Optional, Any


class EveInventoryError(Exception):
    """Base exception for all eve-inventory errors.

    Attributes:
        message: Human-readable error description.
        identity_id: Optional character ID related to the error.
    """

    def __init__(self, message: str, identity_id: Optional[int] = None) -> None:
        self.message = message
        self.identity_id = identity_id
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the error message, optionally including the character ID."""
        if self.identity_id is not None:
            return f"{self.message} (character: {self.identity_id})"
        return self.message


class AuthenticationConfigError(EveInventoryError):
    """Raised when SSO is not configured (no client ID)."""
    pass


class CallbackTimeoutError(EveInventoryError):
    """Raised when no OAuth callback arrives within the allowed window."""
    pass


class CsrfMismatchError(EveInventoryError):
    """Raised when the callback state does not match the issued state."""
    pass


class ProviderDeniedError(EveInventoryError):
    """Raised when the user or the SSO provider rejected the authorization.

    Attributes:
        error: The OAuth error code returned by the provider.
        error_description: Optional provider description.
    """

    def __init__(self, error: str, error_description: Optional[str] = None) -> None:
        self.error = error
        self.error_description = error_description
        super().__init__(
            f"Authorization denied: {error} - {error_description or 'Unknown error'}"
        )


class TokenExchangeError(EveInventoryError):
    """Raised when the authorization code could not be exchanged for tokens."""
    pass


class TokenRefreshError(EveInventoryError):
    """Raised when a refresh token is rejected. The credential is invalidated."""
    pass


class SsoUnavailableError(EveInventoryError):
    """Raised when SSO could not be reached or failed on its side.

    The stored credential is kept; the same refresh token may work later.

    Attributes:
        status_code: HTTP status returned by SSO, or None for transport errors.
    """

    def __init__(
        self, message: str, status_code: Optional[int] = None, identity_id: Optional[int] = None
    ) -> None:
        self.status_code = status_code
        super().__init__(message, identity_id)


class UnauthenticatedError(EveInventoryError):
    """Raised when no stored credential exists for a character."""
    pass


class RateLimitedError(EveInventoryError):
    """Raised when ESI keeps rate limiting after all retries were spent.

    Attributes:
        retry_after: The last delay the provider asked for, in seconds.
    """

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        identity_id: Optional[int] = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, identity_id)


class ResolutionDegradedError(EveInventoryError):
    """Raised when a single location could not be resolved.

    Never escapes a resolution pass; the resolver substitutes a placeholder.
    """

    def __init__(self, location_id: int, reason: str) -> None:
        self.location_id = location_id
        super().__init__(f"Could not resolve location {location_id}: {reason}")


class EsiApiError(EveInventoryError):
    """Raised for any other non-success ESI response.

    Attributes:
        status_code: HTTP status returned by ESI.
    """

    def __init__(
        self, message: str, status_code: int, identity_id: Optional[int] = None
    ) -> None:
        self.status_code = status_code
        super().__init__(message, identity_id)


def _error_detail(response: Any) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("error") or payload.get("error_description") or payload)
    return str(payload)


def handle_http_error(response: Any, identity_id: Optional[int] = None) -> EveInventoryError:
    """Convert a failed httpx response to a specific exception.

    Args:
        response: The httpx.Response returned by ESI.
        identity_id: Optional character ID for context.

    Returns:
        An appropriate EveInventoryError subclass.
    """
    try:
        status = response.status_code
    except AttributeError:
        return EveInventoryError(f"API error: {str(response)}", identity_id)

    detail = _error_detail(response)
    if status == 401:
        return UnauthenticatedError(
            f"ESI rejected the access token: {detail}", identity_id
        )
    elif status in (420, 429):
        return RateLimitedError(
            f"ESI rate limit exceeded: {detail}", identity_id=identity_id
        )
    elif status == 403:
        return EsiApiError(
            f"Access denied. Check the granted scopes: {detail}", status, identity_id
        )
    elif status == 404:
        return EsiApiError(f"Not found: {detail}", status, identity_id)
    else:
        return EsiApiError(f"API error (HTTP {status}): {detail}", status, identity_id)


def format_error(action: str, error: Exception) -> str:
    """Format an error message consistently.

    Args:
        action: The action that failed (e.g., "Refresh assets").
        error: The exception that occurred.

    Returns:
        Formatted error string.
    """
    if isinstance(error, EveInventoryError):
        return f"{action} failed: {error.message}"
    return f"{action} failed: {str(error)}"
