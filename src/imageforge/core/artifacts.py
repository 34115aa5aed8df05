"""Artifact descriptors and filename policies.

An :class:`ArtifactDescriptor` is the metadata record for one stored binary.
It is written once at save time and never changed afterwards; the JSON form on
disk and on the wire uses camelCase keys::

    {"id": ..., "prompt": ..., "createdAt": ..., "filename": ...,
     "mimeType": ..., "size": ..., "url": ...}

Filenames are ``<md5 hex>.<extension>``.  What gets hashed depends on the
:class:`NamingPolicy` chosen by the caller:

- ``CONTENT_HASH`` (uploads): the content bytes only, so identical uploads
  always map to the same filename.
- ``PROMPT_TIMESTAMP`` (generations): the prompt plus the save time in epoch
  milliseconds.  Two generations of the same prompt in the same millisecond
  share a filename; that race is accepted.
"""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_MIME_EXTENSIONS: dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}

_SUBTYPE_RE = re.compile(r"[^a-z0-9]+")


class NamingPolicy(str, Enum):
    """How an artifact's filename is derived."""

    CONTENT_HASH = "content-hash"
    PROMPT_TIMESTAMP = "prompt-timestamp"


class ArtifactDescriptor(BaseModel):
    """Immutable metadata record for one stored artifact.

    Attributes:
        id: UUID generated at save time.
        prompt: Originating text prompt, ``None`` for plain uploads.
        created_at: Save time (timezone-aware).
        filename: Content-derived name shared by both binary tiers.
        mime_type: MIME type of the binary.
        size: Size of the binary in bytes.
        url: Remote public URL, or the local tier URL if the upload failed.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str
    prompt: str | None = None
    created_at: datetime
    filename: str
    mime_type: str
    size: int = Field(ge=0)
    url: str

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps would not sort against aware ones.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

    def to_dict(self) -> dict:
        """Serialise to the camelCase dictionary returned by the API."""
        return self.model_dump(mode="json", by_alias=True)


def extension_for_mime_type(mime_type: str) -> str:
    """Infer a file extension from a MIME type.

    Known image types map to their conventional extension; anything else
    falls back to the sanitised MIME subtype, or ``bin`` if none is usable.
    """
    normalized = (mime_type or "").split(";", 1)[0].strip().lower()
    if normalized in _MIME_EXTENSIONS:
        return _MIME_EXTENSIONS[normalized]

    subtype = normalized.split("/", 1)[1] if "/" in normalized else ""
    subtype = _SUBTYPE_RE.sub("", subtype.split("+", 1)[0])
    return subtype or "bin"


def content_hash_filename(content: bytes, mime_type: str) -> str:
    digest = hashlib.md5(content).hexdigest()
    return f"{digest}.{extension_for_mime_type(mime_type)}"


def prompt_timestamp_filename(prompt: str | None, created_at: datetime, mime_type: str) -> str:
    millis = int(created_at.timestamp() * 1000)
    digest = hashlib.md5(f"{prompt or ''}{millis}".encode("utf-8")).hexdigest()
    return f"{digest}.{extension_for_mime_type(mime_type)}"


def make_filename(
    policy: NamingPolicy,
    content: bytes,
    prompt: str | None,
    created_at: datetime,
    mime_type: str,
) -> str:
    """Derive the artifact filename according to ``policy``."""
    if NamingPolicy(policy) is NamingPolicy.CONTENT_HASH:
        return content_hash_filename(content, mime_type)
    return prompt_timestamp_filename(prompt, created_at, mime_type)
