"""Complaint attachment storage."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from uuid import uuid4

import structlog

from src.services.errors import (
    AttachmentTooLargeError,
    ExternalCollaboratorError,
    UnsupportedAttachmentError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class UploadedFile:
    filename: str
    content_type: str
    data: bytes


class AttachmentStore(Protocol):
    """Persists an uploaded file and returns an opaque path for it."""

    async def save(self, filename: str, content_type: str, data: bytes) -> str: ...


def _safe_suffix(filename: str) -> str:
    suffix = Path(filename).suffix.lower()
    return suffix if suffix.isascii() and suffix[1:].isalnum() and len(suffix) <= 10 else ""


class LocalAttachmentStore:
    """Writes attachments under ``root`` with random file names.

    Parameters
    ----------
    root:
        Upload directory; created on first write.
    max_bytes:
        Largest accepted attachment.
    allowed_types:
        Accepted MIME types (``image/png`` ...).
    """

    __slots__ = ("_allowed_types", "_max_bytes", "_root")

    def __init__(self, root: str | Path, max_bytes: int, allowed_types: frozenset[str]) -> None:
        self._root = Path(root)
        self._max_bytes = max_bytes
        self._allowed_types = allowed_types

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def validate(self, content_type: str, size: int) -> None:
        """Raise if an upload of this type and size would be rejected."""
        if size > self._max_bytes:
            raise AttachmentTooLargeError(f"Attachment exceeds the {self._max_bytes // (1024 * 1024)} MB limit")
        if content_type.split(";")[0].strip().lower() not in self._allowed_types:
            raise UnsupportedAttachmentError(f"Attachment type {content_type or 'unknown'} is not allowed")

    async def save(self, filename: str, content_type: str, data: bytes) -> str:
        if not data:
            raise ValidationError("Attachment is empty")
        self.validate(content_type, len(data))
        target = self._root / f"{uuid4().hex}{_safe_suffix(filename)}"
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            logger.error("attachments.write_failed", path=str(target), exc_info=True)
            raise ExternalCollaboratorError("Could not store attachment") from exc
        logger.info("attachments.saved", path=target.name, size=len(data), content_type=content_type)
        return target.name

    def _write(self, target: Path, data: bytes) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
