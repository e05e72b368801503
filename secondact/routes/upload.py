# secondact/routes/upload.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile

from ..dependencies import get_current_user_id, get_settings, get_storage
from ..exceptions import BadRequestError
from ..services.storage import ALLOWED_IMAGE_TYPES, unique_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["upload"])


@router.post("/upload")
def upload_image(
    file: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    storage=Depends(get_storage),
    settings=Depends(get_settings),
):
    if file is None or not file.filename:
        raise BadRequestError("No file")
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise BadRequestError("Invalid file type")

    limit = settings.max_upload_mb * 1024 * 1024
    data = file.file.read(limit + 1)
    if len(data) > limit:
        raise BadRequestError("File too large")

    key = unique_filename(file.filename, file.content_type)
    url = storage.upload(key, data, file.content_type)
    logger.info("User %s uploaded %s (%d bytes)", user_id, key, len(data))
    return {"url": url}
