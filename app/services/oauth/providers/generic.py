"""Generic OAuth 2.0 provider configured entirely by URLs and scopes."""
from typing import Any

from app.services.identity_service import ExternalIdentity

from .base import OAuthProvider


class GenericOAuth2Provider(OAuthProvider):
    """
    Provider with no built-in knowledge: endpoints, scopes and the profile
    field names are passed in when it is constructed.
    """

    name = "oauth2"
    display_name = "Single Sign-On"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        authorization_url: str,
        token_url: str,
        user_info_url: str,
        scopes: list[str] | None = None,
        id_field: str = "sub",
        **kwargs,
    ):
        super().__init__(client_id, client_secret, redirect_uri, **kwargs)
        self._authorization_url = authorization_url
        self._token_url = token_url
        self._user_info_url = user_info_url
        self._scopes = list(scopes or ["openid", "profile", "email"])
        self.id_field = id_field

    @property
    def authorization_url(self) -> str:
        return self._authorization_url

    @property
    def token_url(self) -> str:
        return self._token_url

    @property
    def user_info_url(self) -> str:
        return self._user_info_url

    @property
    def scopes(self) -> list[str]:
        return self._scopes

    def extract_identity(self, user_info: dict[str, Any]) -> ExternalIdentity:
        external_id = user_info.get(self.id_field) or user_info.get("sub") or user_info.get("id")
        return self._identity(
            external_id,
            email=user_info.get("email"),
            name=user_info.get("name") or user_info.get("preferred_username"),
            avatar_url=user_info.get("picture"),
            email_verified=bool(user_info.get("email_verified", False)),
        )
