"""Pytest configuration and fixtures for tile cache tests."""

import sys
from io import BytesIO
from pathlib import Path

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from PIL import Image  # noqa: E402


def make_image_bytes(color=(200, 30, 30), size=(8, 8), fmt='PNG') -> bytes:
    """Encode a tiny solid-color image."""
    buf = BytesIO()
    Image.new('RGB', size, color).save(buf, format=fmt)
    return buf.getvalue()


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_image():
    """Factory for distinct image payloads."""
    return make_image_bytes


@pytest.fixture
def png_bytes():
    return make_image_bytes()


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes(color=(10, 120, 10), fmt='JPEG')


@pytest.fixture
def clock():
    return FakeClock()
