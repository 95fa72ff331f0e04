"""Microsoft Entra ID (Azure AD) OAuth 2.0 implementation using Microsoft Graph."""
from typing import Any

from app.services.identity_service import ExternalIdentity

from .base import OAuthProvider


class MicrosoftOAuthProvider(OAuthProvider):
    name = "microsoft"
    display_name = "Microsoft"

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, *, tenant_id: str = "common", **kwargs):
        super().__init__(client_id, client_secret, redirect_uri, **kwargs)
        self.tenant_id = tenant_id or "common"

    @property
    def authorization_url(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0/authorize"

    @property
    def token_url(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0/token"

    @property
    def user_info_url(self) -> str:
        return "https://graph.microsoft.com/v1.0/me"

    @property
    def scopes(self) -> list[str]:
        return ["openid", "profile", "email", "offline_access", "User.Read"]

    def extract_identity(self, user_info: dict[str, Any]) -> ExternalIdentity:
        # Work accounts often leave ``mail`` empty and sign in by UPN
        email = user_info.get("mail") or user_info.get("userPrincipalName")
        return self._identity(
            user_info.get("id"),
            email=email,
            name=user_info.get("displayName"),
            avatar_url=None,
            # Graph only returns addresses owned by the directory or the MSA
            email_verified=bool(email),
        )
