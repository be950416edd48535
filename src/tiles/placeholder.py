from __future__ import annotations

import base64
from functools import lru_cache
from io import BytesIO

from PIL import Image, ImageDraw, ImageFont

from shared.constants import (
    PLACEHOLDER_BG_COLOR,
    PLACEHOLDER_BORDER_COLOR,
    PLACEHOLDER_FONT_SIZE,
    PLACEHOLDER_TEXT,
    PLACEHOLDER_TEXT_COLOR,
    TILE_SIZE,
    TileMime,
)


@lru_cache(maxsize=1)
def placeholder_png() -> bytes:
    """PNG bytes of the tile shown when a tile is neither cached nor fetchable."""
    img = Image.new('RGB', (TILE_SIZE, TILE_SIZE), PLACEHOLDER_BG_COLOR)
    draw = ImageDraw.Draw(img)
    draw.rectangle(
        (0, 0, TILE_SIZE - 1, TILE_SIZE - 1), outline=PLACEHOLDER_BORDER_COLOR, width=1
    )
    font = ImageFont.load_default(size=PLACEHOLDER_FONT_SIZE)
    left, top, right, bottom = draw.textbbox((0, 0), PLACEHOLDER_TEXT, font=font)
    pos = (
        (TILE_SIZE - (right - left)) / 2 - left,
        (TILE_SIZE - (bottom - top)) / 2 - top,
    )
    draw.text(pos, PLACEHOLDER_TEXT, fill=PLACEHOLDER_TEXT_COLOR, font=font)
    buf = BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


@lru_cache(maxsize=1)
def placeholder_data_uri() -> str:
    data = base64.b64encode(placeholder_png()).decode('ascii')
    return f'data:{TileMime.PNG.value};base64,{data}'
