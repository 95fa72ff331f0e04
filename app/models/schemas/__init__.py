"""Pydantic schemas for API requests and responses.

Sub-modules:
- auth: Session, user and provider schemas
- services: Downstream service catalog
- tokens: Service token issue / revoke / rotate / exchange / introspect
"""
from .auth import (
    MessageOut,
    ProviderInfo,
    ProvidersOut,
    ServiceLoginOut,
    ServiceSummary,
    SessionOut,
    UserOut,
)
from .services import ServiceEntry, ServiceOut, ServicesOut
from .tokens import (
    ExchangeTokenRequest,
    IntrospectOut,
    IntrospectRequest,
    IssuedTokenOut,
    IssueTokenRequest,
    RevokeTokenOut,
    RevokeTokenRequest,
    RotateTokenRequest,
    TokenRecordOut,
)

__all__ = [
    # Auth
    "UserOut",
    "SessionOut",
    "ProviderInfo",
    "ProvidersOut",
    "ServiceSummary",
    "ServiceLoginOut",
    "MessageOut",
    # Services
    "ServiceEntry",
    "ServiceOut",
    "ServicesOut",
    # Tokens
    "IssueTokenRequest",
    "IssuedTokenOut",
    "RevokeTokenRequest",
    "RevokeTokenOut",
    "RotateTokenRequest",
    "ExchangeTokenRequest",
    "IntrospectRequest",
    "IntrospectOut",
    "TokenRecordOut",
]
