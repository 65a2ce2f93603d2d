"""
Image storage for complaint attachments.
Files land in UPLOAD_DIR/complaints and are served under /uploads.
"""
import logging
import os
import uuid
from typing import Iterable, List

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from app.core.config import settings
from app.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".heic"}
MAX_IMAGE_BYTES = 10 * 1024 * 1024
PUBLIC_PREFIX = "/uploads/complaints/"


class UploadService:
    def __init__(self, upload_dir: str | None = None):
        self.upload_dir = upload_dir or settings.upload_dir
        self.target_dir = os.path.join(self.upload_dir, "complaints")

    def _check(self, file: UploadFile) -> str:
        ext = os.path.splitext(file.filename or "")[1].lower()
        if not (file.content_type or "").startswith("image/") or ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                f"'{file.filename}' is not an accepted image",
                details={"allowed": sorted(ALLOWED_EXTENSIONS)},
            )
        return ext

    async def save_images(self, files: List[UploadFile]) -> List[str]:
        """Store the images and return their public URLs in upload order."""
        extensions = [self._check(f) for f in files]
        os.makedirs(self.target_dir, exist_ok=True)

        urls = []
        try:
            for file, ext in zip(files, extensions):
                name = f"{uuid.uuid4().hex}{ext}"
                path = os.path.join(self.target_dir, name)
                content = await file.read()
                if len(content) > MAX_IMAGE_BYTES:
                    raise ValidationError(f"'{file.filename}' exceeds {MAX_IMAGE_BYTES // (1024 * 1024)} MB")
                async with aiofiles.open(path, "wb") as out_file:
                    await out_file.write(content)
                urls.append(f"{PUBLIC_PREFIX}{name}")
        except ValidationError:
            await self.discard(urls)
            raise
        logger.info("Stored %d complaint images", len(urls))
        return urls

    async def discard(self, urls: Iterable[str]) -> None:
        """Remove stored images whose request was rejected afterwards."""
        for url in urls:
            if not url.startswith(PUBLIC_PREFIX):
                continue
            path = os.path.join(self.target_dir, os.path.basename(url))
            try:
                await aiofiles.os.remove(path)
            except FileNotFoundError:
                logger.warning("Image %s was already gone", url)
            else:
                logger.info("Discarded unused image %s", url)
