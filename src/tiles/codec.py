"""Tile payload codec.

Raw image bytes are stored as base64 text and handed to renderers as
``data:`` URIs. Pillow identifies the image so that non-image payloads (HTML
error pages, truncated bodies) are rejected before they reach the store.
"""

from __future__ import annotations

import base64
import binascii
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from shared.constants import PIL_FORMAT_TO_MIME, TileMime
from shared.errors import CodecError


def detect_mime(raw: bytes) -> str:
    """MIME type of an image payload.

    Raises:
        CodecError: payload is empty or not a recognised image.
    """
    if not raw:
        msg = 'Empty tile payload'
        raise CodecError(msg)
    try:
        with Image.open(BytesIO(raw)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        msg = f'Malformed tile image ({len(raw)} bytes): {e}'
        raise CodecError(msg) from e
    mime = PIL_FORMAT_TO_MIME.get(fmt or '')
    if mime is None:
        msg = f'Unsupported tile image format: {fmt}'
        raise CodecError(msg)
    return mime.value


def encode_tile(raw: bytes) -> str:
    """Validate the image and return its storage form (base64 text)."""
    return encode_tile_with_mime(raw)[0]


def encode_tile_with_mime(raw: bytes) -> tuple[str, str]:
    """Storage form plus the detected MIME type."""
    mime = detect_mime(raw)
    return base64.b64encode(raw).decode('ascii'), mime


def decode_tile_bytes(stored: str) -> bytes:
    """Exact inverse of ``encode_tile``."""
    try:
        return base64.b64decode(stored.encode('ascii'), validate=True)
    except (binascii.Error, UnicodeEncodeError, AttributeError) as e:
        msg = f'Stored tile is not valid base64: {e}'
        raise CodecError(msg) from e


def decode_tile(stored: str, mime: str = TileMime.PNG.value) -> str:
    """Turn the storage form into a displayable ``data:`` URI."""
    decode_tile_bytes(stored)
    return f'data:{mime};base64,{stored}'


def to_data_uri(raw: bytes) -> str:
    """``data:`` URI straight from raw image bytes."""
    mime = detect_mime(raw)
    return f'data:{mime};base64,{base64.b64encode(raw).decode("ascii")}'
