"""Image content inspection helpers."""

from __future__ import annotations

import io

from PIL import Image, UnidentifiedImageError


def sniff_mime_type(data: bytes) -> str:
    """Detect the MIME type of encoded image bytes using Pillow.

    Only the image header is parsed; the pixel data is verified but not
    decoded.

    Args:
        data: Encoded image bytes.

    Returns:
        MIME type reported by Pillow (e.g. ``"image/png"``).

    Raises:
        ValueError: If ``data`` is empty or is not a recognisable image.
    """
    if not data:
        raise ValueError("Image data is empty")

    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValueError(f"Not a valid image: {e}") from e

    mime_type = Image.MIME.get(image_format or "")
    if not mime_type:
        raise ValueError(f"Unsupported image format: {image_format}")
    return mime_type
