"""Image payload helpers for provider uploads."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from healthlab.core.errors import InvalidSubmission

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}


@dataclass
class ImagePayload:
    """Container for image bytes and metadata."""

    data: bytes
    filename: str
    mime_type: str

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")


def extension_from_mime(mime_type: Optional[str]) -> str:
    """Map a mime type to a file extension, defaulting to png."""
    if not mime_type:
        return "png"
    return MIME_EXTENSIONS.get(mime_type.lower(), "png")


def _detect_mime_type(path: Path, header: bytes) -> str:
    if header.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if header.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if header[:4] == b"RIFF" and header[8:12] == b"WEBP":
        return "image/webp"
    suffix = path.suffix.lower()
    if suffix == ".png":
        return "image/png"
    if suffix in {".jpg", ".jpeg"}:
        return "image/jpeg"
    if suffix == ".webp":
        return "image/webp"
    raise ValueError("Unsupported image format. Use PNG, JPEG or WebP.")


def encode_image(path: str) -> ImagePayload:
    """Load an image file for upload."""
    file_path = Path(path)
    data = file_path.read_bytes()
    mime_type = _detect_mime_type(file_path, data[:12])
    return ImagePayload(data=data, filename=file_path.name, mime_type=mime_type)


def decode_image_base64(encoded: str, mime_type: Optional[str]) -> ImagePayload:
    """Decode a base64 image body received from the browser form."""
    if "," in encoded and encoded.lstrip().startswith("data:"):
        encoded = encoded.split(",", 1)[1]
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidSubmission(f"Image data is not valid base64: {exc}", status_code=400) from exc
    if not data:
        raise InvalidSubmission("Image data is empty.", status_code=400)
    resolved_mime = mime_type or "image/png"
    filename = f"reference.{extension_from_mime(resolved_mime)}"
    return ImagePayload(data=data, filename=filename, mime_type=resolved_mime)
