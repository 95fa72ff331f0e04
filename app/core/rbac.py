from typing import Iterable

from fastapi import Depends, HTTPException, Request, status

from app.api.dependencies import get_current_user
from app.core.audit import log_denied
from app.models.models import User


def require_roles(allowed: Iterable[str]):
    """Dependency factory: the signed-in user must hold one of ``allowed`` (case-insensitive)."""
    allowed_set = frozenset(r.lower() for r in allowed)

    async def _dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        if not any(user.has_role(role) for role in allowed_set):
            log_denied("rbac.check", user_id=user.id, reason="insufficient_role", path=request.url.path)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return user

    return _dependency


admin_required = require_roles(["admin"])
staff_or_admin_required = require_roles(["staff", "admin"])
