"""
JWT Authentication Middleware

Tokens are HS256-signed with JWT_SECRET and carry the user id in
``sub``, the shop in ``shopId`` and the user's ``role``.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Header, HTTPException
from jose import jwt

from app.config import JWT_ALGORITHM, JWT_SECRET
from app.utils.datetime_helper import utcnow

logger = logging.getLogger(__name__)

SUPER_ADMIN = "SUPER_ADMIN"


@dataclass
class CurrentUser:
    """Authenticated caller, as read from the token"""
    user_id: int
    shop_id: Optional[int]
    role: str

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN


def create_access_token(
    user_id: int,
    shop_id: Optional[int],
    role: str = "SHOP_OWNER",
    expires_in: timedelta = timedelta(hours=12)
) -> str:
    """Issue a signed token (used by tests and local tooling)"""
    payload = {
        "sub": str(user_id),
        "shopId": shop_id,
        "role": role,
        "exp": utcnow() + expires_in,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify a token and return its payload.

    Raises HTTPException(401) if verification fails.
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.JWTClaimsError as e:
        raise HTTPException(status_code=401, detail=f"Token validation failed: {str(e)}")
    except jwt.JWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)}")


def user_from_payload(payload: dict) -> CurrentUser:
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: no user ID")

    shop_id = payload.get("shopId")
    try:
        return CurrentUser(
            user_id=int(user_id),
            shop_id=int(shop_id) if shop_id is not None else None,
            role=payload.get("role") or "STAFF",
        )
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token: malformed claims")


async def get_current_user(
    authorization: Optional[str] = Header(None)
) -> CurrentUser:
    """
    FastAPI dependency to extract and verify the Bearer token
    Returns the authenticated user
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header missing")

    try:
        scheme, token = authorization.split(" ", 1)
    except ValueError:
        raise HTTPException(
            status_code=401,
            detail="Invalid authorization header format. Expected 'Bearer <token>'"
        )
    if scheme.lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Invalid authorization scheme. Expected 'Bearer'"
        )

    return user_from_payload(verify_token(token))
