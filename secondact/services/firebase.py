# secondact/services/firebase.py
from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Optional

import firebase_admin
from firebase_admin import credentials, storage

logger = logging.getLogger(__name__)


def _credential(credentials_path: Optional[str]):
    """Service-account certificate when the file exists, application default credentials otherwise."""
    path = credentials_path or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    if path and os.path.isfile(path):
        return credentials.Certificate(path)
    return credentials.ApplicationDefault()


@lru_cache
def ensure_bucket(bucket_name: str, credentials_path: Optional[str] = None):
    """Storage bucket for costume images; the default Firebase app is created on first use."""
    try:
        app = firebase_admin.get_app()
    except ValueError:
        app = firebase_admin.initialize_app(
            _credential(credentials_path), {"storageBucket": bucket_name}
        )
        logger.info("Firebase app initialised for bucket %s", bucket_name)
    return storage.bucket(bucket_name, app=app)
