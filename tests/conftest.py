import io
import sys
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

# Add api to sys.path so the flat packages import as they do at runtime
API_PATH = Path(__file__).resolve().parent.parent / "api"
if API_PATH.as_posix() not in sys.path:
    sys.path.insert(0, API_PATH.as_posix())

from config.models import EngineSettings  # noqa: E402
from image_processing.types import RasterImage  # noqa: E402


def square_pixels(size=100, left=30, right=70, background=255, foreground=0):
    """White canvas with a filled square covering [left, right) on both axes."""
    pixels = np.full((size, size, 3), background, dtype=np.uint8)
    pixels[left:right, left:right] = foreground
    return pixels


def png_bytes(pixels: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def white_image():
    """100x100 all-white image."""
    return RasterImage(np.full((100, 100, 3), 255, dtype=np.uint8))


@pytest.fixture
def square_image():
    """100x100 white image with a centred 40x40 black square."""
    return RasterImage(square_pixels())


@pytest.fixture
def small_square_image():
    """100x100 white image with a 20x20 black square at (20, 20)."""
    return RasterImage(square_pixels(left=20, right=40))


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def clock():
    return FakeClock()
