"""API auth: service role key, anon key, or JWT bearer. Returns a Caller for protected routes."""
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .config import settings
from .database import get_sync_db
from .models import Profile

ROLE_SERVICE = "service_role"
ROLE_ANON = "anon"
ROLE_USER = "authenticated"
ROLE_ADMIN = "admin"


class TokenData(BaseModel):
    sub: Optional[str] = None  # user id
    email: Optional[str] = None
    exp: Optional[datetime] = None


class Caller(BaseModel):
    role: str
    user_id: Optional[str] = None


http_bearer = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, email: Optional[str] = None, expires_minutes: int = 60) -> str:
    if not settings.secret_key:
        raise ValueError("SECRET_KEY not set")
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode = {"sub": str(user_id), "email": email, "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> Optional[TokenData]:
    if not settings.secret_key:
        return None
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
        exp = payload.get("exp")
        if exp:
            exp = datetime.fromtimestamp(exp, tz=timezone.utc)
        return TokenData(sub=payload.get("sub"), email=payload.get("email"), exp=exp)
    except JWTError:
        return None


def _same(a: str, b: str) -> bool:
    return bool(a) and bool(b) and hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def resolve_caller(token: Optional[str]) -> Optional[Caller]:
    if not token:
        return None
    if _same(token, settings.service_role_key):
        return Caller(role=ROLE_SERVICE)
    if _same(token, settings.anon_key):
        return Caller(role=ROLE_ANON)
    data = verify_token(token)
    if data and data.sub:
        return Caller(role=ROLE_USER, user_id=data.sub)
    return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _ensure_configured():
    if not (settings.service_role_key or settings.anon_key or settings.secret_key):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Auth not configured. Set SERVICE_ROLE_KEY, ANON_KEY or SECRET_KEY.",
        )


async def get_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Caller:
    """Any valid credential: service role key, anon key or a signed JWT."""
    _ensure_configured()
    if not credentials or not credentials.credentials:
        raise _unauthorized("Missing authorization header")
    caller = resolve_caller(credentials.credentials)
    if caller is None:
        raise _unauthorized("Invalid or missing credentials")
    return caller


async def require_service_role(caller: Caller = Depends(get_caller)) -> Caller:
    """Internal function-to-function endpoints accept only the service role key."""
    if caller.role != ROLE_SERVICE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Service role required")
    return caller


async def get_caller_for_sse(
    token: Optional[str] = Query(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Caller:
    """Auth for SSE: accept a token from ?token= (EventSource can't set headers) or a Bearer header."""
    _ensure_configured()
    caller = resolve_caller(token) if token else None
    if caller is not None:
        return caller
    return await get_caller(credentials=credentials)


async def require_admin(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_sync_db),
) -> Caller:
    """Signed-in user whose profile has the admin role."""
    profile = db.get(Profile, caller.user_id) if caller.role == ROLE_USER else None
    if profile is None or profile.role != ROLE_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: Admin access required")
    return caller
