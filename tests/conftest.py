"""Pytest configuration and fixtures for tilemapper tests."""

import sys
from io import BytesIO
from pathlib import Path

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))


def make_png(color=(255, 0, 0, 255), size=(256, 256)) -> bytes:
    """Encode a solid-color PNG."""
    from PIL import Image

    buf = BytesIO()
    Image.new('RGBA', size, color).save(buf, format='PNG')
    return buf.getvalue()


@pytest.fixture
def png_factory():
    """Callable building solid-color PNG bytes."""
    return make_png


@pytest.fixture
def png_bytes():
    return make_png()
