# secondact/dependencies.py
"""
FastAPI dependencies.

Collaborators (store, payment gateway, mailer, image storage, settings) are
created once in ``create_app`` and hung on ``app.state``; routes pull them
from there so tests can hand in fakes.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .exceptions import AuthError, NotFoundError
from .security import decode_access_token
from .settings import Settings

bearer = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request):
    return request.app.state.store


def get_payments(request: Request):
    return request.app.state.payments


def get_mailer(request: Request):
    return request.app.state.mailer


def get_storage(request: Request):
    return request.app.state.storage


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    settings: Settings = Depends(get_settings),
) -> str:
    """Id of the caller from a ``Bearer`` session token."""
    if credentials is None or not credentials.credentials:
        raise AuthError("Authorization token required")
    claims = decode_access_token(credentials.credentials, settings.jwt_secret)
    if not claims or not claims.get("sub"):
        raise AuthError("Invalid or expired token")
    return claims["sub"]


async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_store),
) -> Dict[str, Any]:
    user = await store.get_user(user_id)
    if not user:
        raise NotFoundError("User not found")
    return user
