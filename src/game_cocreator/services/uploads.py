"""Validation and storage of user-supplied step content."""

import asyncio
import base64
import logging
import mimetypes
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID, uuid4

from game_cocreator.domain.content import StepType, UploadedContent
from game_cocreator.domain.errors import ProviderFailure, ValidationError
from game_cocreator.domain.sessions import Provenance, Variant
from game_cocreator.services.catalog import MAX_UPLOAD_BYTES, StepTemplateCatalog

_logger = logging.getLogger(__name__)


class UploadStore(Protocol):
    """Persistence interface for uploaded bytes."""

    def store(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes under a path and return a reference to them."""


@dataclass
class UploadHandler:
    """Validates uploads against step guidelines and stores them."""

    store: UploadStore
    catalog: StepTemplateCatalog
    max_upload_bytes: int = MAX_UPLOAD_BYTES

    def validate(
        self, step_type: StepType, data: bytes, declared_type: str, size: int
    ) -> str:
        """Check an upload and return its normalized content type."""
        content_type = declared_type.split(";", 1)[0].strip().lower()
        guideline = self.catalog.guideline(step_type)
        if not guideline.accepts_uploads:
            raise ValidationError(f"The {step_type} step does not accept uploads")
        if content_type not in guideline.accepted_formats:
            raise ValidationError(
                f"Unsupported type {content_type!r} for the {step_type} step"
            )
        if not data:
            raise ValidationError("Upload is empty")
        if size != len(data):
            raise ValidationError(
                f"Declared size {size} does not match payload size {len(data)}"
            )
        limit = min(guideline.max_size_bytes, self.max_upload_bytes)
        if size > limit:
            raise ValidationError(f"Upload of {size} bytes exceeds {limit} bytes")
        return content_type

    async def store_upload(  # noqa: PLR0913
        self,
        session_id: UUID,
        step_id: UUID,
        step_type: StepType,
        data: bytes,
        declared_type: str,
        size: int,
        filename: str | None = None,
    ) -> Variant:
        """Validate and store an upload, returning it as a variant."""
        content_type = self.validate(step_type, data, declared_type, size)
        extension = mimetypes.guess_extension(content_type) or ""
        path = f"{session_id}/{step_id}/{uuid4()}{extension}"
        try:
            reference = await asyncio.to_thread(
                self.store.store, path, data, content_type
            )
        except Exception as exc:
            _logger.warning("Upload storage failed for %s: %s", path, exc)
            raise ProviderFailure(
                "Storing upload failed", session_id=session_id, step_id=step_id
            ) from exc

        return Variant(
            id=uuid4(),
            provenance=Provenance.UPLOADED,
            content=UploadedContent(
                reference=reference,
                content_type=content_type,
                size=size,
                filename=filename,
            ),
            preview=_preview(data, content_type),
            metadata={
                "filename": filename,
                "size": size,
                "format": content_type,
                "custom": True,
            },
        )


def _preview(data: bytes, content_type: str) -> str | None:
    """Return a data URL preview for images."""
    if not content_type.startswith("image/"):
        return None
    encoded = base64.b64encode(data).decode("utf-8")
    return f"data:{content_type};base64,{encoded}"
