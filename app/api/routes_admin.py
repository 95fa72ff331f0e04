"""Operator endpoints (admin role required)."""
from fastapi import APIRouter, Depends

from app.api.dependencies import DbDep, TokenServiceDep
from app.api.routes_auth import user_to_schema
from app.core.exceptions import UserNotFoundError
from app.core.rbac import admin_required
from app.db.repository import AuthRepository
from app.models import schemas

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(admin_required)])


@router.get("/users/{user_id}", response_model=schemas.UserOut)
def get_user(user_id: str, db: DbDep):
    user = AuthRepository(db).get_user(user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user_to_schema(user)


@router.get("/users/{user_id}/tokens", response_model=list[schemas.TokenRecordOut])
def list_user_tokens(user_id: str, db: DbDep, svc: TokenServiceDep):
    """Issued-token audit trail for one user, newest first. Revoked tokens are included."""
    if AuthRepository(db).get_user(user_id) is None:
        raise UserNotFoundError(user_id)
    return [
        schemas.TokenRecordOut(
            token_id=t.id,
            service_id=t.service_id,
            scopes=list(t.scopes or []),
            issued_at=t.issued_at,
            expires_at=t.expires_at,
            revoked=t.revoked,
            revoked_at=t.revoked_at,
        )
        for t in svc.list_for_user(user_id)
    ]
