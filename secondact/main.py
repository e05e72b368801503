# secondact/main.py
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .db import close_pool, create_pool
from .db.store import PgStore
from .exceptions import (
    MarketplaceError,
    marketplace_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from .logging_config import setup_logging
from .routes import auth, checkout, costumes, stripe, upload, users
from .services.email import ResendMailer
from .services.payments import StripeGateway
from .services.storage import ImageStorage
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(
    store=None,
    payments: Optional[StripeGateway] = None,
    mailer: Optional[ResendMailer] = None,
    storage: Optional[ImageStorage] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the API. Anything not passed in is created from ``settings``; the
    Postgres pool is only opened (in the lifespan) when no store was given.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        os.makedirs(app.state.storage.uploads_dir, exist_ok=True)
        pool = None
        if app.state.store is None:
            pool = await create_pool(settings)
            app.state.store = PgStore(pool)
            logger.info("Postgres pool ready (%s-%s connections)", settings.db_pool_min, settings.db_pool_max)
        if not settings.payments_enabled:
            logger.warning("STRIPE_SECRET_KEY is not set; checkout will answer 503")
        try:
            yield
        finally:
            await close_pool(pool)

    app = FastAPI(title="Second Act Marketplace API", lifespan=lifespan)

    app.state.settings = settings
    app.state.store = store
    app.state.payments = payments or StripeGateway(
        settings.stripe_secret_key,
        settings.commission_percentage,
        settings.stripe_connect_country,
    )
    app.state.mailer = mailer or ResendMailer(
        settings.resend_api_key,
        settings.email_from,
        settings.app_base_url,
    )
    app.state.storage = storage or ImageStorage(
        settings.uploads_dir,
        settings.firebase_storage_bucket,
        settings.google_application_credentials,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(MarketplaceError, marketplace_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(auth.router)
    app.include_router(costumes.router)
    app.include_router(checkout.router)
    app.include_router(users.router)
    app.include_router(stripe.router)
    app.include_router(upload.router)

    # created in the lifespan or by the first local upload
    app.mount(
        "/uploads",
        StaticFiles(directory=app.state.storage.uploads_dir, check_dir=False),
        name="uploads",
    )

    @app.get("/")
    def root():
        return {"message": "Second Act API is running"}

    return app


app = create_app()
