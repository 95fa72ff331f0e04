"""Exception hierarchy for the SSO bridge.

Every failure the bridge can report at a request boundary derives from
``SSOError`` so the API layer can map it to either a JSON error body or an
error redirect without knowing the concrete type.

Error codes follow pattern: [CATEGORY][NUMBER]
- AUTH: OAuth flow errors (001-099)
- USR: Identity/user errors (100-199)
- SVC: Service registry errors (200-299)
- TOK: Issued token errors (300-399)
"""

from __future__ import annotations

from typing import Any


class SSOError(Exception):
    """Base exception for all SSO bridge errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with a user-facing message and metadata.

        Args:
            message: Human-readable error message (safe to show to end users)
            code: Unique error code (e.g., "AUTH003")
            status_code: HTTP status code used when rendered as JSON
            details: Optional additional context
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "details": self.details,
            }
        }


# ============================================================================
# OAUTH FLOW ERRORS (AUTH001-099)
# ============================================================================

class OAuthFlowError(SSOError):
    """Base class for login-flow errors."""


class UnknownProviderError(OAuthFlowError):
    """Provider name is not one the bridge knows how to talk to."""

    def __init__(self, provider: str):
        super().__init__(
            message=f"Unknown identity provider '{provider}'",
            code="AUTH001",
            status_code=400,
            details={"provider": provider},
        )


class ProviderDisabledError(OAuthFlowError):
    """Provider is known but not configured or switched off."""

    def __init__(self, provider: str, message: str | None = None):
        super().__init__(
            message=message or f"Identity provider '{provider}' is not enabled",
            code="AUTH002",
            status_code=403,
            details={"provider": provider},
        )


class StateMismatchError(OAuthFlowError):
    """Callback state does not match the value bound to the initiating request."""

    def __init__(self, reason: str = "mismatch"):
        super().__init__(
            message="Invalid state token. Possible CSRF attack or expired login attempt.",
            code="AUTH003",
            status_code=403,
            details={"reason": reason},
        )


class ProviderRejectedError(OAuthFlowError):
    """Provider denied the login or answered with an error."""

    def __init__(self, provider: str, reason: str):
        super().__init__(
            message=f"Sign-in with {provider} was not completed: {reason}",
            code="AUTH004",
            status_code=401,
            details={"provider": provider, "reason": reason},
        )


class ProfileIncompleteError(OAuthFlowError):
    """Provider profile carries neither an email nor a stable account id."""

    def __init__(self, provider: str):
        super().__init__(
            message=f"{provider} did not return enough profile information to sign you in",
            code="AUTH005",
            status_code=400,
            details={"provider": provider},
        )


class MissingEmailError(OAuthFlowError):
    """No email to key a new account on and no existing link."""

    def __init__(self, provider: str):
        super().__init__(
            message=f"Your {provider} account did not share an email address",
            code="AUTH006",
            status_code=400,
            details={"provider": provider},
        )


class ProviderUnreachableError(OAuthFlowError):
    """Timeout or network failure talking to the provider."""

    def __init__(self, provider: str):
        super().__init__(
            message=f"Could not reach {provider}. Please try again shortly.",
            code="AUTH007",
            status_code=502,
            details={"provider": provider},
        )


class RedirectNotAllowedError(OAuthFlowError):
    """Post-login redirect target is not on the allow-list."""

    def __init__(self, target: str):
        super().__init__(
            message="Redirect destination is not allowed",
            code="AUTH008",
            status_code=400,
            details={"redirect_to": target},
        )


# ============================================================================
# IDENTITY ERRORS (USR101-199)
# ============================================================================

class IdentityError(SSOError):
    """Base class for identity resolution errors."""


class LinkConfirmationRequiredError(IdentityError):
    """Email matches an account that cannot be merged without confirmation."""

    def __init__(self, email: str, provider: str):
        super().__init__(
            message=(
                "An account with this email already exists. "
                "Sign in with your original method to link this provider."
            ),
            code="USR101",
            status_code=409,
            details={"email": email, "provider": provider},
        )


class AccountLinkConflictError(IdentityError):
    """External identity is already linked to a different user."""

    def __init__(self, provider: str):
        super().__init__(
            message=f"This {provider} account is already linked to another user",
            code="USR102",
            status_code=409,
            details={"provider": provider},
        )


class UserNotFoundError(IdentityError):
    def __init__(self, user_id: str):
        super().__init__(
            message="User not found",
            code="USR103",
            status_code=404,
            details={"user_id": user_id},
        )


class IdentityConflictError(IdentityError):
    """Concurrent writers kept colliding after the local retry."""

    def __init__(self, email: str | None):
        super().__init__(
            message="Could not complete sign-in due to a conflicting update",
            code="USR104",
            status_code=500,
            details={"email": email},
        )


class EmailVerificationRequiredError(IdentityError):
    def __init__(self, service_id: str):
        super().__init__(
            message="Email verification required for this service",
            code="USR105",
            status_code=403,
            details={"service_id": service_id},
        )


# ============================================================================
# SERVICE REGISTRY ERRORS (SVC201-299)
# ============================================================================

class ServiceError(SSOError):
    """Base class for downstream service errors."""


class ServiceDisabledError(ServiceError):
    """Service is unknown or disabled."""

    def __init__(self, service_id: str):
        super().__init__(
            message="Service not found or disabled",
            code="SVC201",
            status_code=403,
            details={"service_id": service_id},
        )


class ServiceNotFoundError(ServiceError):
    def __init__(self, service_id: str):
        super().__init__(
            message=f"Service '{service_id}' not found",
            code="SVC202",
            status_code=404,
            details={"service_id": service_id},
        )


class ScopeNotAllowedError(ServiceError):
    def __init__(self, service_id: str, scopes: list[str]):
        super().__init__(
            message="Invalid scopes requested",
            code="SVC203",
            status_code=403,
            details={"service_id": service_id, "scopes": scopes},
        )


# ============================================================================
# ISSUED TOKEN ERRORS (TOK301-399)
# ============================================================================

class TokenError(SSOError):
    """Base class for issued-token errors."""


class TokenNotFoundError(TokenError):
    def __init__(self, token_id: str):
        super().__init__(
            message="Token not found",
            code="TOK301",
            status_code=404,
            details={"token_id": token_id},
        )


class ServiceMismatchError(TokenError):
    """Caller claims a different service than the one the token was issued for."""

    def __init__(self, token_id: str, service_id: str):
        super().__init__(
            message="Token was not issued for this service",
            code="TOK302",
            status_code=403,
            details={"token_id": token_id, "service_id": service_id},
        )


class InvalidServiceCredentialsError(TokenError):
    def __init__(self, service_id: str):
        super().__init__(
            message="Invalid service credentials",
            code="TOK303",
            status_code=401,
            details={"service_id": service_id},
        )


class TokenInactiveError(TokenError):
    """Revoked or expired tokens cannot be rotated."""

    def __init__(self, token_id: str):
        super().__init__(
            message="Token is no longer active",
            code="TOK304",
            status_code=409,
            details={"token_id": token_id},
        )


class InvalidTokenError(TokenError):
    def __init__(self, reason: str = "invalid"):
        super().__init__(
            message="Token is invalid or expired",
            code="TOK305",
            status_code=401,
            details={"reason": reason},
        )
