"""
Local filesystem buckets: ``STORAGE_DIR/<tenant_id>/<bucket>/<generated name>``.

Paths stored in the database are relative to ``STORAGE_DIR``.
"""

import logging
import os
import re
import uuid

from roofops import config
from roofops.core.exceptions import NotFoundError, ValidationFailedError

logger = logging.getLogger(__name__)

_BUCKET_RE = re.compile(r"^[a-z0-9_-]{1,32}$")
_EXT_RE = re.compile(r"^\.[a-z0-9]{1,5}$")

_CONTENT_TYPE_EXT = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/heic": ".heic",
    "application/pdf": ".pdf",
}


def _root() -> str:
    return os.path.abspath(config.STORAGE_DIR)


def _extension(filename: str, content_type: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if _EXT_RE.match(ext):
        return ext
    return _CONTENT_TYPE_EXT.get(content_type or "", ".bin")


def absolute_path(relative: str) -> str:
    """Resolve a stored path, refusing anything outside the storage root."""
    root = _root()
    full = os.path.abspath(os.path.join(root, relative))
    if os.path.commonpath([root, full]) != root:
        raise ValidationFailedError("Invalid storage path")
    return full


def save_bytes(tenant_id: str, bucket: str, data: bytes, filename: str = "", content_type: str = "") -> str:
    """Write ``data`` under a generated name and return its relative path."""
    if not _BUCKET_RE.match(bucket):
        raise ValidationFailedError(f"Invalid bucket name: {bucket}")
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise ValidationFailedError(
            f"File exceeds the {config.MAX_UPLOAD_BYTES // (1024 * 1024)} MB upload limit"
        )
    if not data:
        raise ValidationFailedError("File is empty")
    relative = os.path.join(tenant_id, bucket, f"{uuid.uuid4().hex}{_extension(filename, content_type)}")
    full = absolute_path(relative)
    os.makedirs(os.path.dirname(full), exist_ok=True)
    with open(full, "wb") as fh:
        fh.write(data)
    logger.debug("Stored %d bytes at %s", len(data), relative)
    return relative


def read_bytes(relative: str) -> bytes:
    full = absolute_path(relative)
    if not os.path.isfile(full):
        raise NotFoundError("Stored file is missing")
    with open(full, "rb") as fh:
        return fh.read()


def delete(relative: str) -> bool:
    full = absolute_path(relative)
    try:
        os.remove(full)
        return True
    except FileNotFoundError:
        return False
