from __future__ import annotations

import io
from pathlib import PurePath
from typing import Optional

from PIL import Image, UnidentifiedImageError

from taskkeep.service.errors import ValidationError

ALLOWED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png"})
ALLOWED_FORMATS = frozenset({"jpeg", "png"})
# Decompression bomb guard, checked before any pixel data is decoded
MAX_AVATAR_PIXELS = 40_000_000


def _check_upload(filename: Optional[str], data: bytes, max_bytes: int) -> None:
    suffix = PurePath(filename or "").suffix.lower()
    if suffix not in ALLOWED_EXTENSIONS:
        raise ValidationError("please upload a jpg, jpeg or png image", field="avatar")
    if not data:
        raise ValidationError("avatar upload is empty", field="avatar")
    if len(data) > max_bytes:
        raise ValidationError(
            f"avatar must be at most {max_bytes} bytes", field="avatar"
        )


def normalize_avatar(
    filename: Optional[str],
    data: bytes,
    *,
    max_bytes: int = 10_000_000,
    size: int = 250,
) -> bytes:
    """Validate an uploaded image and return it as a ``size`` x ``size`` PNG."""

    _check_upload(filename, data, max_bytes)
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError):
        raise ValidationError("file is not a valid image", field="avatar") from None

    # verify() leaves the image unusable, so reopen for the resize
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = (image.format or "").lower()
            width, height = image.size
            if image_format not in ALLOWED_FORMATS:
                raise ValidationError("unsupported image format", field="avatar")
            if width * height > MAX_AVATAR_PIXELS:
                raise ValidationError("image resolution is too large", field="avatar")
            resized = image.convert("RGBA").resize((size, size))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        raise ValidationError("file is not a valid image", field="avatar") from None

    buffer = io.BytesIO()
    resized.save(buffer, format="PNG")
    return buffer.getvalue()


__all__ = ["ALLOWED_EXTENSIONS", "normalize_avatar"]
