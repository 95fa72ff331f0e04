"""Facebook Login (Graph API) implementation."""
from typing import Any

from app.services.identity_service import ExternalIdentity

from .base import OAuthProvider

_GRAPH_VERSION = "v19.0"


class FacebookOAuthProvider(OAuthProvider):
    name = "facebook"
    display_name = "Facebook"
    scope_separator = ","

    @property
    def authorization_url(self) -> str:
        return f"https://www.facebook.com/{_GRAPH_VERSION}/dialog/oauth"

    @property
    def token_url(self) -> str:
        return f"https://graph.facebook.com/{_GRAPH_VERSION}/oauth/access_token"

    @property
    def user_info_url(self) -> str:
        return f"https://graph.facebook.com/{_GRAPH_VERSION}/me?fields=id,name,email,picture.type(large)"

    @property
    def scopes(self) -> list[str]:
        return ["email", "public_profile"]

    def extract_identity(self, user_info: dict[str, Any]) -> ExternalIdentity:
        picture = user_info.get("picture") or {}
        avatar = picture.get("data", {}).get("url") if isinstance(picture, dict) else None
        email = user_info.get("email")
        return self._identity(
            user_info.get("id"),
            email=email,
            name=user_info.get("name"),
            avatar_url=avatar,
            # Graph only exposes confirmed addresses
            email_verified=bool(email),
        )
