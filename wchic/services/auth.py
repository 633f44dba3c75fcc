# wchic/services/auth.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from uuid import uuid4

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from wchic.core.config import settings
from wchic.core.exceptions import AuthenticationError, AuthorizationError, ServiceUnavailableError
from wchic.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_ADMIN = "admin"
ROLE_DASHBOARD = "dashboard"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(subject: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    claims = {
        "sub": subject,
        "role": role,
        "exp": expire,
        "iat": now,
        "jti": str(uuid4()),
        "type": "access",
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> Dict:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        raise AuthenticationError("Invalid or expired token", code="invalid_token") from e


def authenticate_admin(username: str, password: str) -> str:
    if not settings.admin_password_hash:
        raise ServiceUnavailableError("Admin login is not configured", code="auth_not_configured")
    if username != settings.admin_user or not verify_password(password, settings.admin_password_hash):
        logger.warning("auth.login_failed", username=username)
        raise AuthenticationError("Invalid credentials", code="invalid_credentials")
    logger.info("auth.login", username=username, role=ROLE_ADMIN)
    return create_access_token(username, ROLE_ADMIN)


def authenticate_dashboard(password: str) -> str:
    if not settings.dashboard_password_hash:
        raise ServiceUnavailableError("Dashboard login is not configured", code="auth_not_configured")
    if not verify_password(password, settings.dashboard_password_hash):
        logger.warning("auth.login_failed", role=ROLE_DASHBOARD)
        raise AuthenticationError("Invalid credentials", code="invalid_credentials")
    return create_access_token(ROLE_DASHBOARD, ROLE_DASHBOARD)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication token is required", code="missing_token")
    return decode_token(credentials.credentials)


def require_role(*roles: str):
    def _check(user: Dict = Depends(get_current_user)) -> Dict:
        if user.get("role") not in roles:
            raise AuthorizationError("Insufficient permissions", code="forbidden")
        return user
    return _check
