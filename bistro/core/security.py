"""
Bistro — Security helpers (JWT decode only, shared secret)
"""
from dataclasses import dataclass
from typing import Any

from jose import jwt
from bistro.core.config import get_settings

settings = get_settings()


@dataclass(frozen=True)
class Account:
    id: str
    email: str
    is_admin: bool = False


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def account_from_claims(claims: dict[str, Any]) -> Account:
    return Account(
        id=str(claims["sub"]),
        email=str(claims.get("email", "")).strip().lower(),
        is_admin=bool(claims.get("is_admin", False)),
    )
