"""
Upload validation and filename sanitization.

Size is checked before type. The declared content type is matched against an
explicit allow-list; the filename extension is never consulted.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from storefront.core.errors import (
    MalformedPayloadError,
    SizeExceededError,
    UnsupportedMediaTypeError,
)

MAX_FILENAME_LENGTH = 100
FALLBACK_FILENAME = "file"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_UNDERSCORE_RUNS = re.compile(r"_{2,}")
_LEADING_DOTS = re.compile(r"^\.+")

RESOURCE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$")


class ValidationOutcome(str, Enum):
    OK = "ok"
    SIZE_EXCEEDED = "size_exceeded"
    TYPE_REJECTED = "type_rejected"


@dataclass
class UploadRequest:
    """A fully buffered upload as received from the client."""

    data: bytes
    content_type: str
    filename: str
    owner_id: str
    resource_id: str
    declared_size: Optional[int] = None

    @property
    def size(self) -> int:
        if self.declared_size is not None:
            return max(self.declared_size, len(self.data))
        return len(self.data)


def normalize_content_type(content_type: Optional[str]) -> str:
    """``"Image/JPEG; charset=x"`` -> ``"image/jpeg"``"""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def sanitize_name(name: Optional[str]) -> str:
    """
    Make a client-supplied filename safe to embed in a storage key.

    The result contains only ``[a-zA-Z0-9._-]``, has no leading dot, is at most
    100 characters long and is never empty.
    """
    cleaned = (name or "").strip()
    cleaned = _UNSAFE_CHARS.sub("_", cleaned)
    cleaned = _UNDERSCORE_RUNS.sub("_", cleaned)
    cleaned = _LEADING_DOTS.sub("", cleaned)
    cleaned = cleaned[:MAX_FILENAME_LENGTH]
    return cleaned or FALLBACK_FILENAME


def validate(upload: UploadRequest, allowed_types: Iterable[str], max_bytes: int) -> ValidationOutcome:
    if upload.size > max_bytes:
        return ValidationOutcome.SIZE_EXCEEDED

    allowed = {normalize_content_type(t) for t in allowed_types}
    if normalize_content_type(upload.content_type) not in allowed:
        return ValidationOutcome.TYPE_REJECTED

    return ValidationOutcome.OK


def ensure_valid(upload: UploadRequest, allowed_types: Iterable[str], max_bytes: int) -> None:
    """
    Raise the error matching :func:`validate`'s outcome.

    Raises:
        SizeExceededError: The upload is larger than ``max_bytes``
        UnsupportedMediaTypeError: The content type is not allowed
    """
    outcome = validate(upload, allowed_types, max_bytes)
    if outcome is ValidationOutcome.SIZE_EXCEEDED:
        raise SizeExceededError()
    if outcome is ValidationOutcome.TYPE_REJECTED:
        raise UnsupportedMediaTypeError()


def is_valid_resource_id(value: Optional[str]) -> bool:
    return bool(value) and RESOURCE_ID_PATTERN.fullmatch(value) is not None


def require_resource_id(value: Optional[str], field: str) -> str:
    if not is_valid_resource_id(value):
        raise MalformedPayloadError(f"Invalid or missing '{field}'")
    return value  # type: ignore[return-value]
