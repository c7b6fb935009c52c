"""
Utility functions for image processing.

This module provides helper functions for image loading, grayscale
conversion, working-resolution resizing, encoding and the simple
view filters (posterize, negative space).
"""

import cv2
import numpy as np
from PIL import Image
import io
from typing import Tuple, Union

from .types import BinaryMask, GrayscaleBuffer, RasterImage


LUMINANCE_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)


def load_image_from_bytes(image_bytes: bytes) -> RasterImage:
    """
    Load an image from bytes.

    Args:
        image_bytes: Encoded image data (PNG, JPEG, ...)

    Returns:
        Decoded RGBA RasterImage

    Raises:
        ValueError: If the bytes cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            rgba = img.convert("RGBA")
            return RasterImage(np.asarray(rgba))
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Failed to decode image: {e}") from e


def image_to_bytes(image: Union[np.ndarray, BinaryMask, RasterImage], format: str = 'PNG') -> bytes:
    """
    Encode an RGBA/gray array, mask or raster image to bytes.

    Args:
        image: Array (H, W), (H, W, 3) or (H, W, 4), a BinaryMask or a RasterImage
        format: Output format understood by Pillow

    Returns:
        Encoded image bytes
    """
    if isinstance(image, BinaryMask):
        array = image.bits
    elif isinstance(image, RasterImage):
        array = image.pixels
    else:
        array = np.asarray(image, dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(array).save(buffer, format=format)
    return buffer.getvalue()


def to_grayscale(image: Union[RasterImage, GrayscaleBuffer]) -> GrayscaleBuffer:
    """
    Convert an image to a luminance buffer (0.299R + 0.587G + 0.114B).

    Alpha is ignored, matching what a canvas read-back reports for the
    colour channels.
    """
    if isinstance(image, GrayscaleBuffer):
        return image
    rgb = image.pixels[:, :, :3].astype(np.float32)
    luminance = rgb @ LUMINANCE_WEIGHTS
    return GrayscaleBuffer(image.width, image.height, luminance.astype(np.float32))


def fit_within(width: int, height: int, max_side: int) -> Tuple[int, int, float]:
    """
    Compute a size whose longer side is at most max_side.

    Never upscales. Returns (new_width, new_height, scale).
    """
    if width <= 0 or height <= 0:
        return 0, 0, 1.0
    scale = min(max_side / width, max_side / height, 1.0) if max_side > 0 else 1.0
    new_w = max(1, int(round(width * scale)))
    new_h = max(1, int(round(height * scale)))
    return new_w, new_h, scale


def resize_gray(gray: GrayscaleBuffer, width: int, height: int) -> GrayscaleBuffer:
    """Area-resample a luminance buffer."""
    if (width, height) == (gray.width, gray.height):
        return gray
    resized = cv2.resize(gray.luminance, (width, height), interpolation=cv2.INTER_AREA)
    return GrayscaleBuffer(width, height, resized.astype(np.float32))


def resize_mask(mask: BinaryMask, width: int, height: int) -> BinaryMask:
    """Nearest-neighbour resize so edges stay hard."""
    if (width, height) == (mask.width, mask.height):
        return BinaryMask(mask.width, mask.height, mask.bits.copy())
    if width <= 0 or height <= 0:
        return BinaryMask.empty(max(width, 0), max(height, 0))
    if mask.width == 0 or mask.height == 0:
        return BinaryMask.empty(width, height)
    resized = cv2.resize(mask.bits, (width, height), interpolation=cv2.INTER_NEAREST)
    return BinaryMask(width, height, resized)


def posterize_image(image: RasterImage, levels: int = 4) -> np.ndarray:
    """
    Quantize luminance into a fixed number of grey bands.

    Args:
        image: Source image
        levels: Number of bands (at least 1)

    Returns:
        RGBA array with the grey band in RGB and the source alpha kept
    """
    levels = max(1, int(levels))
    gray = to_grayscale(image).luminance
    bucket = np.floor((gray / 255.0) * levels)
    value = np.clip((bucket / levels) * 255.0, 0, 255).astype(np.uint8)
    output = np.empty(image.pixels.shape, dtype=np.uint8)
    output[:, :, 0] = value
    output[:, :, 1] = value
    output[:, :, 2] = value
    output[:, :, 3] = image.pixels[:, :, 3]
    return output


def negative_space_mask(image: RasterImage, subject_fraction: float = 0.25) -> BinaryMask:
    """
    Split an image into subject and negative space.

    A pixel is subject when its luminance exceeds subject_fraction of
    full scale; the returned mask marks the negative space.
    """
    gray = to_grayscale(image).luminance
    subject = gray > subject_fraction * 255.0
    return BinaryMask.from_bool(~subject)
