"""Abstract base class for OAuth 2.0 providers.

Implements the authorization code flow against standard endpoints.
Subclasses supply endpoint URLs, default scopes and the mapping from the
provider's profile payload to an ``ExternalIdentity``.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx

from app import metrics
from app.core.config import settings
from app.core.exceptions import ProviderRejectedError, ProviderUnreachableError
from app.services.identity_service import ExternalIdentity, ProviderProfile

logger = logging.getLogger(__name__)


class OAuthProvider(ABC):
    """
    Capability shared by every identity provider adapter:
    ``get_authorization_url`` to start a login and ``exchange`` to turn the
    callback parameters into an ``ExternalIdentity``.
    """

    name: str = "oauth"
    display_name: str = "OAuth"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize OAuth provider.

        Args:
            client_id: OAuth client ID from provider
            client_secret: OAuth client secret from provider
            redirect_uri: Callback URL registered with the provider
            timeout: Upper bound in seconds for each provider HTTP call
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout if timeout is not None else settings.OAUTH_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    @abstractmethod
    def authorization_url(self) -> str:
        """Provider's authorization endpoint."""

    @property
    @abstractmethod
    def token_url(self) -> str:
        """Provider's token exchange endpoint."""

    @property
    @abstractmethod
    def user_info_url(self) -> str:
        """Provider's user info endpoint."""

    @property
    @abstractmethod
    def scopes(self) -> list[str]:
        """Scopes requested when the caller asks for none."""

    scope_separator = " "

    def extra_authorization_params(self) -> dict[str, str]:
        return {}

    def get_authorization_url(self, state: str, scopes: list[str] | None = None) -> str:
        """
        Generate authorization URL for the login redirect.

        Args:
            state: Anti-forgery token round-tripped by the provider
            scopes: Provider scopes overriding the defaults
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope_separator.join(scopes or self.scopes),
            "state": state,
            **self.extra_authorization_params(),
        }
        return f"{self.authorization_url}?{urlencode(params)}"

    async def exchange(self, callback_params: Mapping[str, str]) -> ExternalIdentity:
        """
        Turn callback parameters into an external identity.

        Raises:
            ProviderRejectedError: callback carries ``error``, lacks ``code``,
                or an endpoint answered with an HTTP error
            ProviderUnreachableError: timeout or network failure
        """
        error = callback_params.get("error")
        if error:
            reason = callback_params.get("error_description") or error
            raise ProviderRejectedError(self.name, reason)
        code = callback_params.get("code")
        if not code:
            raise ProviderRejectedError(self.name, "missing authorization code")

        started = time.perf_counter()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            token_response = await self._exchange_code(client, code)
            access_token = token_response.get("access_token")
            if not access_token:
                raise ProviderRejectedError(self.name, "no access token in token response")
            user_info = await self._fetch_user_info(client, access_token)
        metrics.oauth_provider_latency_observe(self.name, time.perf_counter() - started)

        identity = self.extract_identity(user_info)
        identity.profile.access_token = access_token
        identity.profile.refresh_token = token_response.get("refresh_token")
        identity.profile.token_type = str(token_response.get("token_type") or "bearer").lower()
        identity.profile.expires_in = _int_or_none(token_response.get("expires_in"))
        scope = token_response.get("scope")
        if scope:
            identity.profile.granted_scopes = scope.replace(",", " ").split() if isinstance(scope, str) else list(scope)
        return identity

    async def _exchange_code(self, client: httpx.AsyncClient, code: str) -> dict[str, Any]:
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }
        logger.info("Token exchange attempt | provider=%s client_id=%s", self.name, self.client_id)
        response = await self._send(client, "POST", self.token_url, data=data, headers={"Accept": "application/json"})
        return self._json(response)

    async def _fetch_user_info(self, client: httpx.AsyncClient, access_token: str) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        response = await self._send(client, "GET", self.user_info_url, headers=headers)
        return self._json(response)

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            logger.error(
                "Provider call failed | provider=%s url=%s status=%s",
                self.name,
                url,
                e.response.status_code,
            )
            raise ProviderRejectedError(self.name, f"provider answered {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("Provider unreachable | provider=%s url=%s error=%s", self.name, url, e)
            raise ProviderUnreachableError(self.name) from e

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderRejectedError(self.name, "malformed provider response") from e
        if not isinstance(payload, dict):
            raise ProviderRejectedError(self.name, "malformed provider response")
        return payload

    @abstractmethod
    def extract_identity(self, user_info: dict[str, Any]) -> ExternalIdentity:
        """Map the provider's profile payload to an ``ExternalIdentity``."""

    def _identity(self, external_id: Any, **profile: Any) -> ExternalIdentity:
        return ExternalIdentity(
            provider=self.name,
            external_id=str(external_id) if external_id not in (None, "") else "",
            profile=ProviderProfile(**profile),
        )


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
