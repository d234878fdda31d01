"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so code can inspect it without parsing
    # str(exception). Don't raise this directly, always use a specific subclass so callers can
    # catch precisely (the orchestrator relies on that to decide skip vs. propagate!).
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class NotFoundError(DomainException):
    """Raised when an entity is not found."""

    # Yo, we store entity_type and entity_id separately so error handlers can log them
    # structured. If "missing" is an expected outcome, return None instead (see
    # get_account_for) - exceptions are for the truly exceptional lookups.
    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class AccountNotFound(NotFoundError):
    """No linked platform account matches the lookup.

    HTTP Status: 404
    """

    def __init__(self, account_ref: Any) -> None:
        super().__init__("PlatformAccount", account_ref)


class AuthError(DomainException):
    """Caller is identified but not allowed to see or change the resource.

    Example: reading someone else's full listening history.

    HTTP Status: 403
    """

    pass


class AuthenticationError(DomainException):
    """Caller is not authenticated, or the provider refused an auth code.

    HTTP Status: 401
    """

    pass


class DecryptionError(DomainException):
    """A sealed credential could not be opened.

    Hey future me - this means the ENCRYPTION_KEY is missing, was rotated, or the stored
    ciphertext got corrupted. It is an operator problem, not a user problem, so it is
    NEVER swallowed on the on-demand path. Don't put the ciphertext in the message!

    HTTP Status: 500
    """

    pass


class ProviderUnreachable(DomainException):
    """The streaming provider could not be reached or answered with a server error.

    Transient: the next poll cycle simply tries again.

    HTTP Status: 503
    """

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class RefreshTokenInvalid(DomainException):
    """Token refresh failed and the user has to link the account again.

    Hey future me - thrown when the provider's refresh grant is rejected. Common causes:
    - User revoked app access in the Spotify settings
    - App credentials changed
    - The account was already flagged invalid by an earlier failed refresh

    When this is caught, the UI should show a "reconnect Spotify" banner. The scheduler
    skips the user gracefully (no crash loop!).

    HTTP Status: 409
    """

    def __init__(
        self,
        message: str = "Token refresh failed. Please link your Spotify account again.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code  # e.g., "invalid_grant"
        self.http_status = http_status  # e.g., 400, 401

    @property
    def requires_reauth(self) -> bool:
        """Check if error requires user re-authentication."""
        return self.error_code == "invalid_grant" or self.http_status in (400, 401, 403)


class AccessTokenRejected(DomainException):
    """The provider answered 401 for a user-scoped call.

    The access token looked valid locally but the provider disagreed (revoked,
    clock skew). The current cycle gives up; the next one refreshes.
    """

    pass


class MetadataFetchError(DomainException):
    """Track, artist or album details could not be fetched from the provider."""

    def __init__(self, entity_type: str, external_id: str, reason: str = "") -> None:
        message = f"Failed to fetch {entity_type} {external_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.entity_type = entity_type
        self.external_id = external_id


class BusinessRuleViolation(DomainException):
    """A business rule was violated.

    HTTP Status: 400

    Example:
        raise BusinessRuleViolation("Cannot follow yourself")
    """

    pass


class ValidationError(DomainException):
    """Input validation failed.

    HTTP Status: 422
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    HTTP Status: 503 (Service Unavailable)

    Example:
        raise ConfigurationError("Spotify credentials not configured")
    """

    pass


__all__ = [
    "AccessTokenRejected",
    "AccountNotFound",
    "AuthError",
    "AuthenticationError",
    "BusinessRuleViolation",
    "ConfigurationError",
    "DecryptionError",
    "DomainException",
    "MetadataFetchError",
    "NotFoundError",
    "ProviderUnreachable",
    "RefreshTokenInvalid",
    "ValidationError",
]
