# secondact/routes/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..dependencies import get_mailer, get_settings, get_store
from ..schemas.auth import ForgotPasswordIn, LoginIn, RegisterIn, ResetPasswordIn
from ..services import auth as auth_service

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", status_code=201)
async def register_endpoint(
    body: RegisterIn,
    store=Depends(get_store),
    mailer=Depends(get_mailer),
    settings=Depends(get_settings),
):
    return await auth_service.register(store, mailer, settings, body)


@router.post("/login")
async def login_endpoint(body: LoginIn, store=Depends(get_store), settings=Depends(get_settings)):
    return await auth_service.login(store, settings, body)


@router.post("/forgot-password")
async def forgot_password_endpoint(
    body: ForgotPasswordIn,
    store=Depends(get_store),
    mailer=Depends(get_mailer),
    settings=Depends(get_settings),
):
    return await auth_service.forgot_password(store, mailer, settings, body.email)


@router.get("/validate-reset-token/{token}")
async def validate_reset_token_endpoint(token: str, store=Depends(get_store)):
    return await auth_service.validate_reset_token(store, token)


@router.post("/reset-password/{token}")
async def reset_password_endpoint(token: str, body: ResetPasswordIn, store=Depends(get_store)):
    return await auth_service.reset_password(store, token, body.password)
