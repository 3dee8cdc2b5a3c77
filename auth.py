import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header, Request, Response

import config
from database import utcnow
from errors import AppError
from models import User

logger = logging.getLogger(__name__)

COOKIE_NAME = "jwt"
ALGORITHM = "HS256"


def sign_token(user_id: Any) -> str:
    now = utcnow()
    payload = {
        "id": str(user_id),
        "iat": now,
        "exp": now + timedelta(days=config.JWT_EXPIRES_IN_DAYS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, config.JWT_SECRET, algorithms=[ALGORITHM])


def _is_secure(request: Request) -> bool:
    return request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https"


def create_send_token(user: Dict[str, Any], status_code: int, request: Request, response: Response) -> Dict[str, Any]:
    token = sign_token(user["_id"])
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=config.JWT_COOKIE_EXPIRES_IN_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=_is_secure(request),
    )
    response.status_code = status_code
    return {"status": "success", "token": token, "data": {"user": User.to_json(user)}}


def get_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer"):
        parts = authorization.split(" ", 1)
        if len(parts) == 2 and parts[1].strip():
            return parts[1].strip()
    return request.cookies.get(COOKIE_NAME)


def user_from_token(token: str) -> Dict[str, Any]:
    """Verify a token and return its user; raises on any failure."""
    decoded = decode_token(token)
    if not decoded.get("id"):
        raise jwt.InvalidTokenError("token carries no user id")
    current_user = User.find_by_id(decoded.get("id"), include=("password_changed_at",))
    if current_user is None:
        raise AppError("The user belonging to this token does no longer exist.", 401)
    if User.changed_password_after(current_user, int(decoded.get("iat", 0))):
        raise AppError("User recently changed password! Please log in again.", 401)
    current_user.pop("password_changed_at", None)
    return current_user


def protect(request: Request, authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    token = get_token(request, authorization)
    if not token:
        raise AppError("You are not logged in! Please log in to get access.", 401)
    current_user = user_from_token(token)
    request.state.user = current_user
    return current_user


def current_user_optional(request: Request) -> Optional[Dict[str, Any]]:
    """Cookie-only lookup for callers that render differently when logged in."""
    token = request.cookies.get(COOKIE_NAME)
    if not token or token == "loggedout":
        return None
    try:
        return user_from_token(token)
    except (jwt.InvalidTokenError, AppError) as exc:
        logger.debug("Ignoring cookie token: %s", exc)
        return None


def restrict_to(*roles: str):
    def role_guard(user: Dict[str, Any] = Depends(protect)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise AppError("You do not have permission to perform this action", 403)
        return user

    return role_guard
