"""Session endpoints: who is signed in, sign out, which providers exist."""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.api.dependencies import OAuthControllerDep, SessionBridgeDep
from app.core.audit import log_audit_event
from app.models import schemas
from app.models.models import User, ensure_utc

router = APIRouter()


def user_to_schema(user: User) -> schemas.UserOut:
    return schemas.UserOut(
        id=user.id,
        email=user.email,
        name=user.name,
        avatar_url=user.avatar_url,
        email_verified=bool(user.email_verified),
        roles=list(user.roles or []),
        verification_status=getattr(user.verification_status, "value", user.verification_status),
        linked_providers=sorted(user.linked_providers),
        created_at=user.created_at,
        last_login=user.last_login,
    )


@router.get("/providers", response_model=schemas.ProvidersOut)
def list_providers(controller: OAuthControllerDep):
    """List configured identity providers and where to start each login."""
    return schemas.ProvidersOut(
        providers=[
            schemas.ProviderInfo(id=p.name, name=p.display_name, auth_url=f"/auth/{p.name}")
            for p in controller.available_providers()
        ]
    )


@router.get("/session", response_model=schemas.SessionOut)
def current_session(request: Request, bridge: SessionBridgeDep):
    record = bridge.current_record(request)
    if record is None:
        return schemas.SessionOut(authenticated=False)
    return schemas.SessionOut(
        authenticated=True,
        user=user_to_schema(record.user),
        provider=record.provider,
        expires_at=ensure_utc(record.expires_at),
    )


@router.post("/logout", response_model=schemas.MessageOut)
def logout(request: Request, bridge: SessionBridgeDep):
    record = bridge.current_record(request)
    bridge.destroy(request)
    body = schemas.MessageOut(success=True, message="Logged out")
    response = JSONResponse(content=body.model_dump(by_alias=True))
    bridge.clear(response)
    if record is not None:
        log_audit_event("auth.logout", user_id=record.user_id, provider=record.provider)
    return response
