"""
OAuth 2.0 / SSO browser flows.

Endpoints:
- GET /auth/{provider}                    Initiate login (redirect to provider)
- GET /auth/{provider}/callback           Provider callback (redirect to landing page)
- GET /auth/sso/oauth2                    Generic OAuth2 initiation (redirect or JSON error)
- GET /auth/sso/oauth2/callback           Generic OAuth2 callback
- GET /auth/service/{service_id}/login    Service-initiated login / provider menu

Browser-facing failures never render an error page here: they redirect to
AUTH_ERROR_URL with ``error`` and ``code`` query parameters.
Business logic lives in OAuthFlowController.
"""

import logging
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from app.api.dependencies import OAuthControllerDep, RegistryDep
from app.api.rate_limit import RATE_LIMITS, limiter
from app.core.config import settings
from app.core.exceptions import ServiceDisabledError, SSOError
from app.models import schemas
from app.services.oauth import AuthorizationRedirect, LoginOutcome, OAuthFlowController
from app.services.session_service import cookie_settings

logger = logging.getLogger(__name__)
router = APIRouter(tags=["oauth"])


def build_redirect_with_params(base_url: str, params: dict[str, str]) -> str:
    """Append query parameters to an existing URL safely."""
    parsed = urlparse(base_url)
    existing_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    existing_params.update(params)
    return urlunparse(parsed._replace(query=urlencode(existing_params)))


def _split_scopes(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [s for s in raw.replace(",", " ").split() if s]


def _error_redirect(exc: SSOError) -> RedirectResponse:
    target = build_redirect_with_params(settings.AUTH_ERROR_URL, {"error": exc.message, "code": exc.code})
    response = RedirectResponse(url=target, status_code=302)
    response.delete_cookie(settings.OAUTH_STATE_COOKIE_NAME, path="/")
    return response


def _provider_redirect(redirect: AuthorizationRedirect) -> RedirectResponse:
    response = RedirectResponse(url=redirect.url, status_code=307)
    # Binds the state to this browser; the callback must present the same value
    response.set_cookie(
        settings.OAUTH_STATE_COOKIE_NAME,
        redirect.state,
        **cookie_settings(settings.OAUTH_STATE_TTL_SECONDS),
    )
    return response


def _landing_url(outcome: LoginOutcome) -> str:
    target = outcome.redirect_to or settings.FRONTEND_URL
    if target.startswith("/"):
        target = urljoin(settings.FRONTEND_URL.rstrip("/") + "/", target.lstrip("/"))
    if outcome.grant is not None:
        target = build_redirect_with_params(
            target,
            {
                "token": outcome.grant.access_token,
                "token_id": outcome.grant.token_id,
                "expires_in": str(outcome.grant.expires_in),
            },
        )
    return target


async def _complete_callback(request: Request, provider: str, controller: OAuthFlowController) -> RedirectResponse:
    params = dict(request.query_params)
    expected_state = request.cookies.get(settings.OAUTH_STATE_COOKIE_NAME)
    try:
        outcome = await controller.handle_callback(provider, params, expected_state, request)
    except SSOError as exc:
        return _error_redirect(exc)

    response = RedirectResponse(url=_landing_url(outcome), status_code=302)
    controller.sessions.attach(response, outcome.session)
    response.delete_cookie(settings.OAUTH_STATE_COOKIE_NAME, path="/")
    logger.info("OAuth authentication successful for %s user=%s", provider, outcome.user.id)
    return response


def _provider_menu(service_id: str, callback: str | None, controller: OAuthFlowController) -> list[schemas.ProviderInfo]:
    providers = []
    for provider in controller.available_providers():
        params = {"serviceId": service_id}
        if callback:
            params["callback"] = callback
        providers.append(
            schemas.ProviderInfo(
                id=provider.name,
                name=provider.display_name,
                auth_url=f"/auth/{provider.name}?{urlencode(params)}",
            )
        )
    return providers


@router.get("/auth/sso/oauth2")
@limiter.limit(RATE_LIMITS["oauth_login"])
async def sso_oauth2_login(
    request: Request,
    controller: OAuthControllerDep,
    callback: str | None = Query(None, description="Post-login redirect target"),
):
    """
    Initiate the generic OAuth2 flow.

    Example:
        GET /auth/sso/oauth2?callback=https://ad.id/dashboard
    """
    try:
        redirect = controller.initiate_oauth2(redirect_to=callback)
    except SSOError as exc:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})
    return _provider_redirect(redirect)


@router.get("/auth/sso/oauth2/callback")
@limiter.limit(RATE_LIMITS["oauth_callback"])
async def sso_oauth2_callback(request: Request, controller: OAuthControllerDep) -> RedirectResponse:
    return await _complete_callback(request, "oauth2", controller)


@router.get("/auth/service/{service_id}/login", response_model=schemas.ServiceLoginOut)
@limiter.limit(RATE_LIMITS["service_login"])
async def service_login(
    request: Request,
    service_id: str,
    controller: OAuthControllerDep,
    registry: RegistryDep,
    provider: str | None = Query(None, description="Identity provider to use"),
    scope: str | None = Query(None, description="Space or comma separated service scopes"),
    callback: str | None = Query(None, description="Service callback URL"),
):
    """
    Login initiated by a downstream service.

    With ``provider`` the browser goes straight to that provider with the
    login bound to ``service_id``; without it the available providers are listed.
    """
    if not registry.is_enabled(service_id):
        raise ServiceDisabledError(service_id)
    service = registry.get(service_id)

    if provider:
        try:
            redirect = controller.initiate(provider, callback, service_id, _split_scopes(scope))
        except SSOError as exc:
            return _error_redirect(exc)
        return _provider_redirect(redirect)

    return schemas.ServiceLoginOut(
        service=schemas.ServiceSummary(id=service.id, name=service.name, domain=service.domain),
        providers=_provider_menu(service_id, callback, controller),
        login_url=f"/auth/service/{service_id}/login",
    )


@router.get("/auth/{provider}")
@limiter.limit(RATE_LIMITS["oauth_login"])
async def oauth_login(
    request: Request,
    provider: str,
    controller: OAuthControllerDep,
    redirect_to: str | None = Query(None, description="Frontend redirect after auth"),
    callback: str | None = Query(None, description="Alias of redirect_to used by services"),
    service_id: str | None = Query(None, alias="serviceId"),
    scope: str | None = Query(None),
) -> RedirectResponse:
    """
    Initiate OAuth login flow.

    Example:
        GET /auth/google?redirect_to=/dashboard
        GET /auth/google?serviceId=mapable&scope=read:profile
    """
    try:
        redirect = controller.initiate(provider, redirect_to or callback, service_id, _split_scopes(scope))
    except SSOError as exc:
        return _error_redirect(exc)
    return _provider_redirect(redirect)


@router.get("/auth/{provider}/callback")
@limiter.limit(RATE_LIMITS["oauth_callback"])
async def oauth_callback(request: Request, provider: str, controller: OAuthControllerDep) -> RedirectResponse:
    """
    Handle OAuth provider callback.

    Example:
        GET /auth/google/callback?code=4/xxx&state=abc123
    """
    return await _complete_callback(request, provider, controller)
