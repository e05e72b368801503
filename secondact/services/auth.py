# secondact/services/auth.py
"""
Account registration, login and the password-reset flow.

Reset flow:
    no-token --forgot--> token issued (1h) --reset--> no-token, password updated
                                        +--expiry--> no-token, unused

Only the sha256 of a reset token is stored. The forgot-password step answers
the same way whether or not the email belongs to an account.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from starlette.concurrency import run_in_threadpool

from ..exceptions import AuthError, BadRequestError, ConflictError
from ..security import (
    create_access_token,
    hash_password,
    hash_reset_token,
    new_reset_token,
    verify_password,
)

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, we've sent a password reset link."
INVALID_RESET_TOKEN = "Invalid or expired reset token"
INVALID_CREDENTIALS = "Invalid credentials"

PUBLIC_USER_FIELDS = ("id", "firstName", "lastName", "username", "email", "profilePictureUrl")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: user.get(k) for k in PUBLIC_USER_FIELDS}


def _display_name(user: Dict[str, Any]) -> str:
    return user.get("firstName") or user.get("username") or "User"


async def register(store, mailer, settings, body) -> Dict[str, Any]:
    existing = await store.find_users_by_email_or_username(body.email, body.username)
    if existing:
        errors: Dict[str, list] = {}
        for u in existing:
            if u.get("email") == body.email:
                errors["email"] = ["An account with this email already exists"]
            if u.get("username") == body.username:
                errors["username"] = ["This username is already taken"]
        raise ConflictError("User already exists", errors)

    user = await store.create_user({
        "firstName": body.firstName,
        "lastName": body.lastName,
        "username": body.username,
        "email": body.email,
        "passwordHash": await run_in_threadpool(hash_password, body.password),
    })
    logger.info("Registered user %s", user["id"])

    await mailer.send_welcome_email(body.email, body.firstName)

    token = create_access_token(user, settings.jwt_secret, settings.jwt_expires_hours)
    return {
        "message": "Account created successfully",
        "token": token,
        "user": {k: user.get(k) for k in ("id", "firstName", "lastName", "username", "email")},
    }


async def login(store, settings, body) -> Dict[str, Any]:
    user = await store.find_user_by_login(body.emailOrUsername)
    if not user:
        raise AuthError(INVALID_CREDENTIALS)
    if not user.get("passwordHash"):
        raise AuthError("Please use the email sign-in method for this account")
    if not await run_in_threadpool(verify_password, body.password, user["passwordHash"]):
        raise AuthError(INVALID_CREDENTIALS)

    token = create_access_token(user, settings.jwt_secret, settings.jwt_expires_hours)
    return {"message": "Login successful", "token": token, "user": public_user(user)}


async def forgot_password(store, mailer, settings, email: str) -> Dict[str, Any]:
    user = await store.get_user_by_email(email)
    if user:
        token = new_reset_token()
        expires = datetime.now(timezone.utc) + timedelta(minutes=settings.password_reset_ttl_minutes)
        await store.set_password_reset(user["id"], hash_reset_token(token), expires)
        await mailer.send_password_reset_email(email, _display_name(user), token)
    return {"message": FORGOT_PASSWORD_MESSAGE}


async def _user_for_token(store, token: str) -> Dict[str, Any]:
    user = await store.find_user_by_reset_token(hash_reset_token(token), datetime.now(timezone.utc))
    if not user:
        raise BadRequestError(INVALID_RESET_TOKEN)
    return user


async def validate_reset_token(store, token: str) -> Dict[str, Any]:
    user = await _user_for_token(store, token)
    return {
        "message": "Valid reset token",
        "user": {k: user.get(k) for k in ("email", "firstName", "username")},
    }


async def reset_password(store, token: str, new_password: str) -> Dict[str, Any]:
    user = await _user_for_token(store, token)
    # guarded on the token hash so two concurrent resets cannot both succeed
    password_hash = await run_in_threadpool(hash_password, new_password)
    if not await store.reset_password(user["id"], hash_reset_token(token), password_hash):
        raise BadRequestError(INVALID_RESET_TOKEN)
    logger.info("Password reset for user %s", user["id"])
    return {"message": "Password reset successfully"}
