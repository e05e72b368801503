"""Password hashing, JWT issuance and password-reset tokens."""
from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

JWT_ALGORITHM = "HS256"
BCRYPT_ROUNDS = 12
# bcrypt only ever looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def _pw_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_pw_bytes(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("ascii")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_pw_bytes(password), password_hash.encode("ascii"))
    except ValueError:
        # malformed stored hash
        return False


def create_access_token(user: Dict[str, Any], secret: str, expires_hours: int) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user["id"],
        "email": user.get("email"),
        "username": user.get("username"),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=expires_hours)).timestamp()),
    }
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str, secret: str) -> Optional[Dict[str, Any]]:
    """Claims for a valid, unexpired token; None otherwise."""
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload


# ---- Reset tokens ------------------------------------------------------------

def new_reset_token() -> str:
    """Raw token for the email link. Only its hash is stored."""
    return secrets.token_hex(32)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
