"""
Local-disk file store for avatars, project images and certificates.

Stored files are served back under ``/uploads/<name>``.
"""

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from errors import NotFound, UpstreamFailure, ValidationError
from logging_config import get_logger

logger = get_logger(__name__)

PDF_TYPE = "application/pdf"
POWERPOINT_TYPES = {
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",  # pptx
    "application/vnd.ms-powerpoint",  # ppt
}
URL_PREFIX = "/uploads/"


def is_allowed_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.startswith("image/") or content_type == PDF_TYPE or content_type in POWERPOINT_TYPES


@dataclass
class StoredFile:
    filename: str
    url: str
    content_type: str
    size: int

    @property
    def is_pdf(self) -> bool:
        return self.content_type == PDF_TYPE

    @property
    def is_powerpoint(self) -> bool:
        return self.content_type in POWERPOINT_TYPES


class FileStore:
    def __init__(self, root: str, max_bytes: int = 5 * 1024 * 1024):
        self.root = Path(root)
        self.max_bytes = max_bytes

    def save(self, original_name: Optional[str], content_type: Optional[str], data: Optional[bytes]) -> StoredFile:
        if not original_name or data is None:
            raise ValidationError("No image file uploaded")
        if not is_allowed_type(content_type):
            raise ValidationError("Only image files, PDFs, and PowerPoint files are allowed!")
        if len(data) > self.max_bytes:
            raise ValidationError("File too large")

        ext = os.path.splitext(original_name)[1].lower()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path = self._write_new(ext, data)
        except OSError as e:
            raise UpstreamFailure(f"File store not available: {e}") from e

        logger.info("file stored", filename=path.name, content_type=content_type, size=len(data))
        return StoredFile(filename=path.name, url=URL_PREFIX + path.name, content_type=content_type, size=len(data))

    def _write_new(self, ext: str, data: bytes) -> Path:
        """Write ``data`` under a fresh ``<epoch ms><ext>`` name, bumping the stamp on collision."""
        stamp = int(time.time() * 1000)
        while True:
            path = self.root / f"{stamp}{ext}"
            try:
                with open(path, "xb") as f:
                    f.write(data)
                return path
            except FileExistsError:
                stamp += 1

    def resolve(self, filename: str) -> Path:
        """Path of a stored file; anything outside the upload root is not found."""
        root = self.root.resolve()
        path = (root / filename).resolve()
        if path.parent != root or not path.is_file():
            raise NotFound("File not found")
        return path
