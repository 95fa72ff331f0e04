"""Scoped tokens for downstream services.

Endpoints:
- POST /tokens/issue       Mint a token for the signed-in user (session required)
- POST /tokens/revoke      Revoke a token on behalf of the service it was issued to
- POST /tokens/rotate      Replace one of the signed-in user's tokens with a fresh one
- POST /tokens/exchange    Trade a live service token for a token to another service
- POST /tokens/introspect  Validity check for downstream services
"""
import logging

from fastapi import APIRouter, Request

from app.api.dependencies import CurrentUserDep, RegistryDep, TokenServiceDep
from app.api.rate_limit import RATE_LIMITS, limiter
from app.core.audit import log_audit_event, log_denied
from app.core.exceptions import InvalidServiceCredentialsError, InvalidTokenError, SSOError
from app.models import schemas
from app.services.token_service import IssuedTokenGrant

logger = logging.getLogger(__name__)
router = APIRouter()


def _bearer(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _grant_out(grant: IssuedTokenGrant) -> schemas.IssuedTokenOut:
    return schemas.IssuedTokenOut(
        token_id=grant.token_id,
        access_token=grant.access_token,
        token_type=grant.token_type,
        service_id=grant.service_id,
        scopes=grant.scopes,
        expires_in=grant.expires_in,
        expires_at=grant.expires_at,
    )


@router.post("/issue", response_model=schemas.IssuedTokenOut)
@limiter.limit(RATE_LIMITS["token_issue"])
def issue_token(request: Request, payload: schemas.IssueTokenRequest, user: CurrentUserDep, svc: TokenServiceDep):
    try:
        grant = svc.issue_token(
            user.id,
            payload.service_id,
            payload.scopes,
            expires_in=payload.expires_in,
            client_id=payload.client_id,
            client_secret=payload.client_secret,
        )
    except SSOError as exc:
        log_denied("tokens.issue", user_id=user.id, reason=exc.code, service_id=payload.service_id)
        raise
    log_audit_event(
        "tokens.issue",
        user_id=user.id,
        service_id=grant.service_id,
        token_id=grant.token_id,
        scopes=grant.scopes,
    )
    return _grant_out(grant)


@router.post("/revoke", response_model=schemas.RevokeTokenOut)
@limiter.limit(RATE_LIMITS["token_revoke"])
def revoke_token(request: Request, payload: schemas.RevokeTokenRequest, svc: TokenServiceDep, registry: RegistryDep):
    """
    Revoke ``tokenId`` for ``serviceId``.

    Credentials are optional; when both are sent they must match the service.
    A token issued to another service is never revoked.
    """
    if payload.client_id or payload.client_secret:
        if not registry.validate_credentials(payload.service_id, payload.client_id or "", payload.client_secret or ""):
            log_denied("tokens.revoke", reason="invalid_credentials", service_id=payload.service_id)
            raise InvalidServiceCredentialsError(payload.service_id)
    try:
        result = svc.revoke_token(payload.token_id, payload.service_id)
    except SSOError as exc:
        log_denied(
            "tokens.revoke",
            reason=exc.code,
            service_id=payload.service_id,
            token_id=payload.token_id,
        )
        raise
    log_audit_event("tokens.revoke", service_id=payload.service_id, token_id=payload.token_id)
    return schemas.RevokeTokenOut(success=True, message=result.message)


@router.post("/rotate", response_model=schemas.IssuedTokenOut)
@limiter.limit(RATE_LIMITS["token_rotate"])
def rotate_token(request: Request, payload: schemas.RotateTokenRequest, user: CurrentUserDep, svc: TokenServiceDep):
    try:
        grant = svc.rotate_token(payload.token_id, payload.service_id, payload.scopes, subject_user_id=user.id)
    except SSOError as exc:
        log_denied("tokens.rotate", user_id=user.id, reason=exc.code, token_id=payload.token_id)
        raise
    log_audit_event(
        "tokens.rotate",
        user_id=user.id,
        service_id=grant.service_id,
        token_id=grant.token_id,
        replaced_token_id=payload.token_id,
    )
    return _grant_out(grant)


@router.post("/exchange", response_model=schemas.IssuedTokenOut)
@limiter.limit(RATE_LIMITS["token_exchange"])
def exchange_token(request: Request, payload: schemas.ExchangeTokenRequest, svc: TokenServiceDep):
    """Body ``token`` wins over an ``Authorization: Bearer`` header."""
    raw = payload.token or _bearer(request)
    if not raw:
        raise InvalidTokenError("missing")
    try:
        grant = svc.exchange_token(raw, payload.target_service_id, payload.scopes)
    except SSOError as exc:
        log_denied("tokens.exchange", reason=exc.code, service_id=payload.target_service_id)
        raise
    log_audit_event("tokens.exchange", service_id=grant.service_id, token_id=grant.token_id)
    return _grant_out(grant)


@router.post("/introspect", response_model=schemas.IntrospectOut, response_model_exclude_none=True)
@limiter.limit(RATE_LIMITS["token_introspect"])
def introspect_token(request: Request, payload: schemas.IntrospectRequest, svc: TokenServiceDep):
    return schemas.IntrospectOut(**svc.introspect(payload.token, payload.service_id))
