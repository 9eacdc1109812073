"""Normalization of raw clipboard payloads into content variants."""

import base64
import binascii
import io
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from shadowpaste.models.schemas import (
    EMPTY,
    ClipboardContent,
    ImageContent,
    TextContent,
)

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = "data:image/png;base64,"


@dataclass(frozen=True)
class RawImage:
    """Uncompressed clipboard bitmap, 4 bytes (RGBA) per pixel."""

    width: int
    height: int
    rgba: bytes


@dataclass(frozen=True)
class ClipboardSnapshot:
    """Whatever the platform reported for one clipboard read."""

    text: Optional[str] = None
    image: Optional[RawImage] = None


def classify(snapshot: ClipboardSnapshot) -> ClipboardContent:
    """Text wins over image; most apps put text on the clipboard even when copying from images."""
    if snapshot.text:
        return TextContent(text=snapshot.text)
    if snapshot.image is not None:
        return encode_image(snapshot.image)
    return EMPTY


def encode_image(raw: RawImage) -> ClipboardContent:
    """Encode an RGBA bitmap as a PNG data URI, or Empty if it does not decode."""
    if raw.width <= 0 or raw.height <= 0:
        return EMPTY
    if len(raw.rgba) != raw.width * raw.height * 4:
        logger.debug(
            f"Image byte length {len(raw.rgba)} does not match {raw.width}x{raw.height} RGBA"
        )
        return EMPTY

    try:
        image = Image.frombytes("RGBA", (raw.width, raw.height), raw.rgba)
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
    except (ValueError, OSError) as e:
        logger.debug(f"Image encode failed: {e}")
        return EMPTY

    payload = base64.b64encode(buffer.getvalue()).decode("ascii")
    return ImageContent(uri=f"{DATA_URI_PREFIX}{payload}")


def decode_data_uri(uri: str) -> Optional[bytes]:
    """Raw bytes behind a ``data:<mime>;base64,<payload>`` URI."""
    if not uri.startswith("data:"):
        return None
    _, sep, payload = uri.partition(";base64,")
    if not sep:
        return None
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return None
