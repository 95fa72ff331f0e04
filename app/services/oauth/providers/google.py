"""Google OAuth 2.0 / OpenID Connect implementation."""
from typing import Any

from app.services.identity_service import ExternalIdentity

from .base import OAuthProvider


class GoogleOAuthProvider(OAuthProvider):
    name = "google"
    display_name = "Google"

    @property
    def authorization_url(self) -> str:
        return "https://accounts.google.com/o/oauth2/v2/auth"

    @property
    def token_url(self) -> str:
        return "https://oauth2.googleapis.com/token"

    @property
    def user_info_url(self) -> str:
        return "https://www.googleapis.com/oauth2/v2/userinfo"

    @property
    def scopes(self) -> list[str]:
        return ["openid", "profile", "email"]

    def extra_authorization_params(self) -> dict[str, str]:
        # Refresh tokens are only returned on an explicit offline consent
        return {"access_type": "offline", "prompt": "consent"}

    def extract_identity(self, user_info: dict[str, Any]) -> ExternalIdentity:
        """
        Expected fields:
        - id: Stable Google account id
        - email / verified_email: Address and Google's verification flag
        - name, picture
        """
        return self._identity(
            user_info.get("id") or user_info.get("sub"),
            email=user_info.get("email"),
            name=user_info.get("name"),
            avatar_url=user_info.get("picture"),
            email_verified=bool(user_info.get("verified_email", user_info.get("email_verified", False))),
        )
