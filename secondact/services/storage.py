from __future__ import annotations

import logging
import os
import uuid
from typing import Optional

from .firebase import ensure_bucket

logger = logging.getLogger(__name__)

BUCKET_PREFIX = "costume-images"
LOCAL_URL_PREFIX = "/uploads"

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

_EXT_TO_TYPE = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
}


def content_type_for(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return _EXT_TO_TYPE.get(ext, "image/jpeg")


def unique_filename(original: Optional[str], content_type: Optional[str]) -> str:
    ext = ""
    if original and "." in original:
        ext = original.rsplit(".", 1)[-1].lower()
    if ext not in _EXT_TO_TYPE:
        ext = ALLOWED_IMAGE_TYPES.get(content_type or "", "jpg")
    return f"{uuid.uuid4()}.{ext}"


class ImageStorage:
    """
    Costume image storage: Firebase Storage when a bucket is configured,
    local ``uploads_dir`` otherwise or whenever the bucket upload fails.
    """

    def __init__(self, uploads_dir: str, bucket_name: Optional[str] = None,
                 credentials_path: Optional[str] = None):
        self.uploads_dir = uploads_dir
        self.bucket_name = bucket_name
        self.credentials_path = credentials_path

    def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store ``data`` under ``key`` and return its public URL."""
        content_type = content_type or content_type_for(key)
        if self.bucket_name:
            try:
                return self._upload_bucket(key, data, content_type)
            except Exception as e:
                logger.warning("Firebase storage failed, falling back to local storage: %s", e)
        return self._upload_local(key, data)

    def _upload_bucket(self, key: str, data: bytes, content_type: str) -> str:
        bucket = ensure_bucket(self.bucket_name, self.credentials_path)
        blob = bucket.blob(f"{BUCKET_PREFIX}/{key}")
        blob.upload_from_string(data, content_type=content_type)
        blob.make_public()
        return blob.public_url

    def _upload_local(self, key: str, data: bytes) -> str:
        os.makedirs(self.uploads_dir, exist_ok=True)
        # never write outside uploads_dir
        name = os.path.basename(key)
        with open(os.path.join(self.uploads_dir, name), "wb") as f:
            f.write(data)
        return f"{LOCAL_URL_PREFIX}/{name}"
