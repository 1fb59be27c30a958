from __future__ import annotations
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from ..services.auth import InvalidCredentials, issue_admin_token, verify_admin_token
from ..services.errors import ServiceNotConfigured

router = APIRouter(prefix="/auth", tags=["auth"])

_bearer = HTTPBearer(auto_error=False)


class LoginBody(BaseModel):
    password: str


class LoginOut(BaseModel):
    token: str
    expiresAt: str


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Dict[str, Any]:
    """Dependency for admin-only routes: a valid, unexpired bearer token."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Admin login required")
    try:
        return verify_admin_token(credentials.credentials)
    except InvalidCredentials as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ServiceNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/login", response_model=LoginOut)
def login(body: LoginBody):
    try:
        return issue_admin_token(body.password)
    except InvalidCredentials as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ServiceNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/me")
def me(claims: Dict[str, Any] = Depends(require_admin)):
    return {"ok": True, "expiresAt": claims.get("exp")}
