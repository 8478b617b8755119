from __future__ import annotations

import base64
import binascii
import io
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from models import ValidationError

ALLOWED_MIME_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")
MAX_IMAGE_BYTES = 10 * 1024 * 1024
MAX_EDGE = 1600


def estimated_size(image_base64: str) -> int:
    return (len(image_base64) * 3) // 4


def _strip_data_url(image_base64: str) -> str:
    if image_base64.startswith("data:") and "," in image_base64:
        return image_base64.split(",", 1)[1]
    return image_base64


def validate_image(image_base64: str, mime_type: str) -> bytes:
    """Check type and size of a base64 image payload and return its bytes."""
    if not image_base64:
        raise ValidationError("Image data is required.")
    if (mime_type or "").lower() not in ALLOWED_MIME_TYPES:
        raise ValidationError("Unsupported image format. Please use JPEG, PNG, or WebP.")
    payload = _strip_data_url(image_base64.strip())
    if estimated_size(payload) > MAX_IMAGE_BYTES:
        raise ValidationError("Image too large. Please use an image smaller than 10MB.")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Image data is not valid base64.") from None


def prepare_scan_image(
    image_base64: str,
    mime_type: str,
    *,
    max_edge: int = MAX_EDGE,
) -> Tuple[str, str]:
    """Validate a captured cover and shrink it for upload.

    Returns the base64 payload and MIME type to send on. Images already within
    ``max_edge`` are passed through untouched.
    """
    data = validate_image(image_base64, mime_type)
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError):
        raise ValidationError("Image data could not be decoded.") from None

    if max(image.size) <= max_edge:
        return base64.b64encode(data).decode("ascii"), ("image/jpeg" if mime_type == "image/jpg" else mime_type)

    image.thumbnail((max_edge, max_edge), Image.LANCZOS)
    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=90)
    return base64.b64encode(buffer.getvalue()).decode("ascii"), "image/jpeg"
