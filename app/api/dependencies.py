"""Common request dependencies: database, services and the session user."""
from typing import Annotated, TypeAlias

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.models import User
from app.services.oauth import OAuthFlowController, create_oauth_controller
from app.services.service_registry import ServiceRegistry, get_service_registry
from app.services.session_service import SessionBridge
from app.services.token_service import TokenIssuanceService

DbDep: TypeAlias = Annotated[Session, Depends(get_db)]


def get_registry() -> ServiceRegistry:
    return get_service_registry()


RegistryDep: TypeAlias = Annotated[ServiceRegistry, Depends(get_registry)]


def get_session_bridge(db: DbDep) -> SessionBridge:
    return SessionBridge(db)


SessionBridgeDep: TypeAlias = Annotated[SessionBridge, Depends(get_session_bridge)]


def get_oauth_controller(db: DbDep) -> OAuthFlowController:
    """One controller per request; tests override this to inject fake providers."""
    return create_oauth_controller(db)


OAuthControllerDep: TypeAlias = Annotated[OAuthFlowController, Depends(get_oauth_controller)]


def get_token_service(db: DbDep, registry: RegistryDep) -> TokenIssuanceService:
    return TokenIssuanceService(db, registry=registry)


TokenServiceDep: TypeAlias = Annotated[TokenIssuanceService, Depends(get_token_service)]


def get_optional_user(request: Request, bridge: SessionBridgeDep) -> User | None:
    """Session user or ``None``; callers decide whether anonymous access is fine."""
    return bridge.current(request)


def get_current_user(user: Annotated[User | None, Depends(get_optional_user)]) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


OptionalUserDep: TypeAlias = Annotated[User | None, Depends(get_optional_user)]
CurrentUserDep: TypeAlias = Annotated[User, Depends(get_current_user)]
