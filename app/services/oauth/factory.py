"""Factory functions for building configured OAuth providers and controllers."""
import logging

import httpx
from sqlalchemy.orm import Session

from app.core.config import BaseAppSettings, settings

from .providers import (
    FacebookOAuthProvider,
    GenericOAuth2Provider,
    GoogleOAuthProvider,
    MicrosoftOAuthProvider,
    OAuthProvider,
)
from .service import OAuthFlowController

logger = logging.getLogger(__name__)


def callback_url(provider_name: str, cfg: BaseAppSettings | None = None) -> str:
    cfg = cfg or settings
    base = cfg.BACKEND_URL.rstrip("/")
    if provider_name == "oauth2":
        return f"{base}/auth/sso/oauth2/callback"
    return f"{base}/auth/{provider_name}/callback"


def build_providers(
    cfg: BaseAppSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, OAuthProvider]:
    """
    Instantiate every provider whose credentials are configured.

    Providers without credentials are left out; the controller reports them
    as disabled rather than unknown.
    """
    cfg = cfg or settings
    providers: dict[str, OAuthProvider] = {}

    if cfg.GOOGLE_CLIENT_ID and cfg.GOOGLE_CLIENT_SECRET:
        providers["google"] = GoogleOAuthProvider(
            cfg.GOOGLE_CLIENT_ID,
            cfg.GOOGLE_CLIENT_SECRET,
            callback_url("google", cfg),
            transport=transport,
        )
    if cfg.MICROSOFT_CLIENT_ID and cfg.MICROSOFT_CLIENT_SECRET:
        providers["microsoft"] = MicrosoftOAuthProvider(
            cfg.MICROSOFT_CLIENT_ID,
            cfg.MICROSOFT_CLIENT_SECRET,
            callback_url("microsoft", cfg),
            tenant_id=cfg.MICROSOFT_TENANT_ID,
            transport=transport,
        )
    if cfg.FACEBOOK_CLIENT_ID and cfg.FACEBOOK_CLIENT_SECRET:
        providers["facebook"] = FacebookOAuthProvider(
            cfg.FACEBOOK_CLIENT_ID,
            cfg.FACEBOOK_CLIENT_SECRET,
            callback_url("facebook", cfg),
            transport=transport,
        )
    oauth2_ready = all(
        (
            cfg.OAUTH2_CLIENT_ID,
            cfg.OAUTH2_CLIENT_SECRET,
            cfg.OAUTH2_AUTHORIZATION_URL,
            cfg.OAUTH2_TOKEN_URL,
            cfg.OAUTH2_USERINFO_URL,
        )
    )
    if oauth2_ready:
        providers["oauth2"] = GenericOAuth2Provider(
            cfg.OAUTH2_CLIENT_ID,
            cfg.OAUTH2_CLIENT_SECRET,
            callback_url("oauth2", cfg),
            authorization_url=cfg.OAUTH2_AUTHORIZATION_URL,
            token_url=cfg.OAUTH2_TOKEN_URL,
            user_info_url=cfg.OAUTH2_USERINFO_URL,
            scopes=[s.strip() for s in cfg.OAUTH2_SCOPE.split(",") if s.strip()],
            transport=transport,
        )

    logger.debug("Configured OAuth providers: %s", ", ".join(sorted(providers)) or "none")
    return providers


def create_oauth_controller(db: Session, transport: httpx.AsyncBaseTransport | None = None) -> OAuthFlowController:
    """
    Factory function to create a per-request OAuth flow controller.

    Args:
        db: Database session
        transport: Optional httpx transport shared by all providers

    Returns:
        OAuthFlowController with every configured provider registered
    """
    return OAuthFlowController(db, build_providers(transport=transport))
