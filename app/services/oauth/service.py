"""OAuth flow controller.

Coordinates one login attempt per request:
- ``initiate``: validate the request, bind a fresh ``state`` server-side and
  build the provider redirect
- ``handle_callback``: check the state, exchange the code through the
  provider adapter, resolve the canonical user, mint a service token when the
  login was started for a downstream service, and establish a session

The controller dispatches by provider name and never inspects
provider-specific payloads; adapters own that mapping.
"""
from __future__ import annotations

import enum
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Iterable, Mapping
from urllib.parse import urlparse

from sqlalchemy.orm import Session
from starlette.requests import Request

from app import metrics
from app.core.audit import log_audit_event, log_failure
from app.core.config import settings
from app.core.exceptions import (
    ProfileIncompleteError,
    ProviderDisabledError,
    RedirectNotAllowedError,
    ScopeNotAllowedError,
    ServiceDisabledError,
    SSOError,
    StateMismatchError,
    UnknownProviderError,
)
from app.models.models import IdentityProvider, User
from app.services.identity_service import ExternalIdentity, IdentityResolver, normalize_email
from app.services.service_registry import ServiceRegistry, get_service_registry
from app.services.session_service import SessionBridge, SessionIssue
from app.services.token_service import IssuedTokenGrant, TokenIssuanceService

from .providers import OAuthProvider
from .state_store import PendingLogin, StateStore, get_state_store

logger = logging.getLogger(__name__)

KNOWN_PROVIDERS = frozenset(p.value for p in IdentityProvider)


class FlowState(str, enum.Enum):
    UNSTARTED = "unstarted"
    REDIRECTING = "redirecting"
    AWAITING_CALLBACK = "awaiting_callback"
    VALIDATING = "validating"
    RESOLVED = "resolved"
    FAILED = "failed"


# A callback request resumes a flow persisted by the initiating request, so
# a fresh controller may enter AWAITING_CALLBACK directly.
_TRANSITIONS: dict[FlowState, frozenset[FlowState]] = {
    FlowState.UNSTARTED: frozenset({FlowState.REDIRECTING, FlowState.AWAITING_CALLBACK, FlowState.FAILED}),
    FlowState.REDIRECTING: frozenset({FlowState.AWAITING_CALLBACK, FlowState.FAILED}),
    FlowState.AWAITING_CALLBACK: frozenset({FlowState.VALIDATING, FlowState.FAILED}),
    FlowState.VALIDATING: frozenset({FlowState.RESOLVED, FlowState.FAILED}),
    FlowState.RESOLVED: frozenset(),
    FlowState.FAILED: frozenset(),
}


@dataclass
class AuthorizationRedirect:
    url: str
    state: str
    provider: str


@dataclass
class LoginOutcome:
    user: User
    identity: ExternalIdentity
    session: SessionIssue
    redirect_to: str | None = None
    service_id: str | None = None
    grant: IssuedTokenGrant | None = None


def _host_matches(host: str, allowed: str) -> bool:
    allowed = allowed.lower().strip().lstrip(".")
    return bool(allowed) and (host == allowed or host.endswith(f".{allowed}"))


def _hostname(url: str) -> str | None:
    try:
        return urlparse(url if "://" in url else f"https://{url}").hostname
    except ValueError:
        return None


class OAuthFlowController:
    def __init__(
        self,
        db: Session,
        providers: Mapping[str, OAuthProvider] | None = None,
        *,
        state_store: StateStore | None = None,
        registry: ServiceRegistry | None = None,
        resolver: IdentityResolver | None = None,
        sessions: SessionBridge | None = None,
        tokens: TokenIssuanceService | None = None,
    ):
        self.db = db
        self._providers: dict[str, OAuthProvider] = dict(providers or {})
        self.state_store = state_store if state_store is not None else get_state_store()
        self.registry = registry if registry is not None else get_service_registry()
        self.resolver = resolver or IdentityResolver(db)
        self.sessions = sessions or SessionBridge(db)
        self.tokens = tokens or TokenIssuanceService(db, registry=self.registry)
        self._state = FlowState.UNSTARTED

    # ------------------------------------------------------------ providers
    @property
    def state(self) -> FlowState:
        return self._state

    def register_provider(self, provider: OAuthProvider) -> None:
        self._providers[provider.name] = provider
        logger.debug("Registered OAuth provider: %s", provider.name)

    def available_providers(self) -> list[OAuthProvider]:
        return list(self._providers.values())

    def get_provider(self, name: str) -> OAuthProvider:
        key = (name or "").lower()
        if key not in KNOWN_PROVIDERS:
            raise UnknownProviderError(name)
        provider = self._providers.get(key)
        if provider is None:
            raise ProviderDisabledError(key)
        return provider

    # ----------------------------------------------------------- initiation
    def initiate(
        self,
        provider_name: str,
        redirect_to: str | None = None,
        service_id: str | None = None,
        scopes: Iterable[str] | None = None,
    ) -> AuthorizationRedirect:
        """Build the provider redirect and remember what the callback must honour.

        Raises:
            UnknownProviderError, ProviderDisabledError: provider cannot be used
            RedirectNotAllowedError: ``redirect_to`` is outside the allow-list, or is not
                the registered callback when logging in for a service
            ServiceDisabledError, ScopeNotAllowedError: bad downstream service request
        """
        self._advance(FlowState.REDIRECTING)
        try:
            provider = self.get_provider(provider_name)
            return self._start(provider, redirect_to, service_id, scopes)
        except SSOError as exc:
            self._fail(provider_name, exc)
            raise

    def initiate_oauth2(
        self,
        provider: OAuthProvider | None = None,
        redirect_to: str | None = None,
    ) -> AuthorizationRedirect:
        """Start a generic OAuth2 login, optionally with a provider configured by the caller."""
        self._advance(FlowState.REDIRECTING)
        try:
            chosen = provider or self._providers.get(IdentityProvider.OAUTH2.value)
            if chosen is None:
                raise ProviderDisabledError(IdentityProvider.OAUTH2.value, message="SSO failed")
            self.register_provider(chosen)
            return self._start(chosen, redirect_to, None, None)
        except SSOError as exc:
            self._fail(IdentityProvider.OAUTH2.value, exc)
            raise

    def _start(
        self,
        provider: OAuthProvider,
        redirect_to: str | None,
        service_id: str | None,
        scopes: Iterable[str] | None,
    ) -> AuthorizationRedirect:
        requested = sorted(set(scopes or ()))
        if service_id is not None:
            if not self.registry.is_enabled(service_id):
                raise ServiceDisabledError(service_id)
            service = self.registry.get(service_id)
            if not self.registry.validate_scopes(service_id, requested):
                raise ScopeNotAllowedError(service_id, sorted(set(requested) - service.allowed_scopes))
            target = redirect_to or service.callback_url
            # The token travels in the query string, so only the service's own callback may receive it
            if not self.registry.validate_callback_url(service_id, target):
                raise RedirectNotAllowedError(target)
        else:
            target = redirect_to or settings.FRONTEND_URL
        if not self.is_allowed_redirect(target):
            raise RedirectNotAllowedError(target)

        state = secrets.token_urlsafe(32)
        pending = PendingLogin(
            provider=provider.name,
            redirect_to=target,
            service_id=service_id,
            scopes=requested,
        )
        self.state_store.put(state, pending, settings.OAUTH_STATE_TTL_SECONDS)
        url = provider.get_authorization_url(state)
        self._advance(FlowState.AWAITING_CALLBACK)
        metrics.oauth_login_initiated(provider.name)
        logger.info("Initiating OAuth login with %s service=%s", provider.name, service_id)
        return AuthorizationRedirect(url=url, state=state, provider=provider.name)

    def is_allowed_redirect(self, target: str) -> bool:
        if not target:
            return False
        if target.startswith("/"):
            # Protocol-relative and backslash tricks resolve to foreign hosts in browsers
            return not target.startswith("//") and "\\" not in target
        parsed = urlparse(target)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            return False
        if parsed.scheme == "http" and settings.is_production:
            return False
        host = parsed.hostname.lower()
        return any(_host_matches(host, allowed) for allowed in self._allowed_hosts())

    def _allowed_hosts(self) -> set[str]:
        hosts = {h for h in (_hostname(settings.FRONTEND_URL), _hostname(settings.BACKEND_URL)) if h}
        hosts.update(h for h in settings.ALLOWED_REDIRECT_HOSTS if h)
        for service in self.registry.get_all_enabled():
            callback_host = _hostname(service.callback_url)
            if callback_host:
                hosts.add(callback_host)
        return hosts

    # ------------------------------------------------------------- callback
    async def handle_callback(
        self,
        provider_name: str,
        params: Mapping[str, str],
        expected_state: str | None,
        request: Request | None = None,
    ) -> LoginOutcome:
        """Validate a provider callback and complete the login.

        ``expected_state`` is the value bound to the browser by the initiating
        request (state cookie). The stored state is consumed whether or not
        the rest of the callback succeeds.

        Raises:
            StateMismatchError: missing, forged, replayed, expired or cross-provider state
            ProviderRejectedError, ProviderUnreachableError: provider side failures
            ProfileIncompleteError: no email and no stable account id
            plus any identity or token error raised while completing the login
        """
        if self._state is FlowState.UNSTARTED:
            self._advance(FlowState.AWAITING_CALLBACK)
        self._advance(FlowState.VALIDATING)
        try:
            provider = self.get_provider(provider_name)
            pending = self._check_state(provider, params.get("state"), expected_state)
            identity = await provider.exchange(params)
            return self._complete(provider, pending, identity, request)
        except SSOError as exc:
            self._fail(provider_name, exc)
            raise
        except Exception:
            self._state = FlowState.FAILED
            raise

    def _check_state(self, provider: OAuthProvider, returned: str | None, expected: str | None) -> PendingLogin:
        if not returned:
            raise StateMismatchError("missing")
        if not expected or not hmac.compare_digest(returned, expected):
            # Still burn the stored value so a leaked state cannot be replayed
            self.state_store.consume(returned)
            raise StateMismatchError("mismatch")
        pending = self.state_store.consume(returned)
        if pending is None:
            raise StateMismatchError("unknown_or_expired")
        if pending.provider != provider.name:
            raise StateMismatchError("provider_mismatch")
        return pending

    def _complete(
        self,
        provider: OAuthProvider,
        pending: PendingLogin,
        identity: ExternalIdentity,
        request: Request | None,
    ) -> LoginOutcome:
        email = normalize_email(identity.email)
        if not identity.external_id and not email:
            raise ProfileIncompleteError(provider.name)
        external_id = identity.external_id or f"email:{email}"

        user = self.resolver.find_or_create(provider.name, external_id, identity.profile)
        grant = None
        if pending.service_id:
            grant = self.tokens.issue_token(user.id, pending.service_id, pending.scopes)
        issue = self.sessions.establish(user, provider.name, request)

        self._advance(FlowState.RESOLVED)
        metrics.oauth_login_success(provider.name)
        log_audit_event(
            "auth.oauth.login",
            user_id=user.id,
            provider=provider.name,
            service_id=pending.service_id,
            token_id=grant.token_id if grant else None,
        )
        return LoginOutcome(
            user=user,
            identity=identity,
            session=issue,
            redirect_to=pending.redirect_to,
            service_id=pending.service_id,
            grant=grant,
        )

    # ---------------------------------------------------------- transitions
    def _advance(self, target: FlowState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal OAuth flow transition {self._state.value} -> {target.value}")
        self._state = target

    def _fail(self, provider_name: str, exc: SSOError) -> None:
        if FlowState.FAILED in _TRANSITIONS[self._state]:
            self._state = FlowState.FAILED
        metrics.oauth_login_failed(provider_name or "unknown", exc.code)
        log_failure("auth.oauth", user_id=None, error=exc.code, provider=provider_name, reason=exc.message)
        logger.warning("OAuth flow failed provider=%s code=%s: %s", provider_name, exc.code, exc.message)
