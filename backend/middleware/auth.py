"""
Bearer-token authentication helpers.

Customers and admin operators both present `Authorization: Bearer <jwt>`.
Tokens are HS256-signed with settings.jwt_secret and carry:
    sub   customer id, or admin username
    role  "customer" | "admin"

Customer tokens are issued by the identity collaborator (OTP login) with the
same secret and issuer; admin tokens are issued by POST /api/admin/login.
"""
import hmac
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt

from config import settings
from domain.enums import Role
from domain.errors import AuthError, DomainError
from domain.identity import RequestIdentity

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _require_secret() -> str:
    if not settings.jwt_secret:
        raise DomainError("Server auth misconfigured (JWT secret missing).", status_code=500)
    return settings.jwt_secret


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(
            token,
            _require_secret(),
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "iss", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Access token expired.")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid access token.")


def issue_access_token(*, subject: str, role: Role) -> str:
    now = _now_utc()
    exp = now.replace(microsecond=0) + timedelta(minutes=settings.jwt_access_ttl_minutes)
    payload = {
        "iss": settings.jwt_issuer,
        "sub": subject,
        "role": role.value,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, _require_secret(), algorithm="HS256")


def identity_from_header(authorization: Optional[str]) -> RequestIdentity:
    token = parse_bearer_token(authorization)
    if not token:
        raise AuthError("Authentication required. Provide Authorization: Bearer <token>.")
    payload = decode_access_token(token)
    try:
        role = Role(payload.get("role", Role.CUSTOMER.value))
    except ValueError:
        raise AuthError("Invalid access token role.")
    return RequestIdentity(subject=str(payload["sub"]), role=role)


def check_admin_credentials(username: str, password: str) -> bool:
    """Constant-time comparison against the configured operator account."""
    if not settings.admin_username or not settings.admin_password:
        logger.error("security: admin login attempted but admin credentials are not configured")
        return False
    user_ok = hmac.compare_digest(username.encode("utf-8"), settings.admin_username.encode("utf-8"))
    pass_ok = hmac.compare_digest(password.encode("utf-8"), settings.admin_password.encode("utf-8"))
    return user_ok and pass_ok
