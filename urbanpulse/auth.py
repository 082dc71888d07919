from typing import Optional
from datetime import datetime, timedelta, timezone
import logging
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel

from .config import get_settings
from .models import Role, Viewer

logger = logging.getLogger("urbanpulse.auth")

ALGORITHM = "HS256"
# auto_error=False so a missing header yields our own consistent 401 below.
security = HTTPBearer(auto_error=False)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Role


class TokenPayload(BaseModel):
    sub: str
    role: Role = Role.CITIZEN
    exp: Optional[int] = None


class SessionRequest(BaseModel):
    viewer_id: str
    passcode: Optional[str] = None


def check_admin_passcode(passcode: Optional[str]) -> bool:
    """Shared-passcode admin gate. Deliberately low assurance; no passcode configured means no admins."""
    expected = get_settings().admin_passcode
    if not expected or passcode is None:
        return False
    return secrets.compare_digest(passcode.encode("utf-8"), expected.encode("utf-8"))


def create_access_token(viewer_id: str, role: Role = Role.CITIZEN, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.jwt_access_minutes))
    to_encode = {"sub": str(viewer_id), "role": Role(role).value, "exp": int(expire.timestamp())}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    try:
        payload = jwt.decode(token, get_settings().jwt_secret, algorithms=[ALGORITHM])
        return TokenPayload(**payload)
    except (JWTError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"X-Auth-Reason": "Invalid token"},
        ) from exc


def viewer_from_token(token: str) -> Viewer:
    payload = decode_access_token(token)
    return Viewer(viewer_id=payload.sub, role=payload.role)


def issue_session(request: SessionRequest) -> Token:
    viewer_id = (request.viewer_id or "").strip()
    if not viewer_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="viewer_id must not be empty")
    role = Role.CITIZEN
    if request.passcode is not None:
        if not check_admin_passcode(request.passcode):
            logger.warning("Rejected admin passcode for viewer %s", viewer_id)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin passcode")
        role = Role.ADMINISTRATOR
    logger.info("Session issued: viewer_id=%s role=%s", viewer_id, role.value)
    return Token(access_token=create_access_token(viewer_id, role), role=role)


async def get_current_viewer(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Viewer:
    if not credentials or not getattr(credentials, "credentials", None):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated", headers={"X-Auth-Reason": "No credentials"})
    return viewer_from_token(credentials.credentials)


def require_role(required_role: Role):
    async def role_checker(viewer: Viewer = Depends(get_current_viewer)) -> Viewer:
        if viewer.role != required_role:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient privileges")
        return viewer
    return role_checker
