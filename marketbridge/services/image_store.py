"""Filesystem-backed storage for listing images.

Every image lives flat under one root directory as ``<slug>-<uuid>.<ext>``.
The slug is cosmetic; the uuid keeps names from colliding. Names coming back
from callers are only ever used after :func:`is_safe_name` accepts them.
"""
import contextlib
import logging
import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from marketbridge.core.exceptions import StorageError, UnsupportedFormatError, ValidationError

logger = logging.getLogger(__name__)

EXTENSION_BY_MIME = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

CONTENT_TYPE_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}

FALLBACK_CONTENT_TYPE = "application/octet-stream"

SAFE_NAME_PATTERN = re.compile(r"[a-z0-9][a-z0-9-]*-[a-f0-9-]+\.(?:jpg|png|webp)")

MAX_SLUG_LENGTH = 40
DEFAULT_SLUG = "image"


@dataclass(frozen=True)
class ImageUpload:
    data: bytes
    filename: str
    content_type: str


def is_safe_name(value) -> bool:
    if not isinstance(value, str):
        return False
    return SAFE_NAME_PATTERN.fullmatch(value) is not None


def slugify(original_name: str) -> str:
    stem = re.sub(r"\.[^.]+$", "", original_name or "")
    slug = re.sub(r"[^a-z0-9-]", "-", stem.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    slug = slug[:MAX_SLUG_LENGTH].strip("-")
    return slug or DEFAULT_SLUG


def extension_for(mime_type: str) -> str:
    normalized = (mime_type or "").split(";", 1)[0].strip().lower()
    extension = EXTENSION_BY_MIME.get(normalized)
    if extension is None:
        raise UnsupportedFormatError(
            f"Unsupported image format: {mime_type or 'unknown'}. Use JPG, PNG or WEBP."
        )
    return extension


def content_type_for(name: str) -> str:
    return CONTENT_TYPE_BY_EXTENSION.get(Path(name).suffix.lower(), FALLBACK_CONTENT_TYPE)


class ImageStore:
    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).resolve()

    def generate_name(self, original_name: str, mime_type: str) -> str:
        extension = extension_for(mime_type)
        return f"{slugify(original_name)}-{uuid.uuid4()}.{extension}"

    def persist(self, name: str, data: bytes) -> Path:
        path = self.resolve(name)
        tmp_path = path.with_name(f".{name}.tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Could not write image {name}: {exc}") from exc
        logger.debug("Stored image %s (%d bytes)", name, len(data))
        return path

    def save(self, data: bytes, original_name: str, mime_type: str) -> str:
        name = self.generate_name(original_name, mime_type)
        self.persist(name, data)
        return name

    def resolve(self, name: str) -> Path:
        if not is_safe_name(name):
            raise ValidationError(f"Invalid image file name: {name!r}")
        return self.root / name

    def exists(self, name: str) -> bool:
        return is_safe_name(name) and (self.root / name).is_file()

    def delete(self, name: str) -> None:
        path = self.resolve(os.path.basename(name))
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not delete image {name}: {exc}") from exc
        logger.debug("Deleted image %s", path.name)

    @staticmethod
    def is_safe_name(value) -> bool:
        return is_safe_name(value)

    @staticmethod
    def content_type_for(name: str) -> str:
        return content_type_for(name)
