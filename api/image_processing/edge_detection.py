"""
Edge detection module using OpenCV.

This module turns a raster image into a continuous edge-strength field:
grayscale -> working-resolution downscale -> box blur -> Sobel magnitude.
"""

import cv2
import numpy as np
from typing import Union

from utils.logger import get_logger
from .types import EdgeField, GrayscaleBuffer, RasterImage
from .utils import fit_within, resize_gray, to_grayscale

logger = get_logger(__name__)


def box_blur(gray: np.ndarray, radius: int) -> np.ndarray:
    """
    Separable box blur with replicated borders.

    Args:
        gray: float32 luminance array
        radius: Integer radius; window is 2 * radius + 1 (0 returns a copy)

    Returns:
        Blurred float32 array of the same shape
    """
    if radius <= 0 or gray.size == 0:
        return gray.astype(np.float32, copy=True)
    size = 2 * radius + 1
    return cv2.blur(gray.astype(np.float32), (size, size), borderType=cv2.BORDER_REPLICATE)


def sobel_magnitude(gray: np.ndarray) -> np.ndarray:
    """
    Sobel gradient magnitude hypot(Gx, Gy).

    Pixels on the outer row/column are left at zero since the 3x3 kernel
    needs a full neighbourhood.
    """
    h, w = gray.shape
    magnitude = np.zeros((h, w), dtype=np.float32)
    if h < 3 or w < 3:
        return magnitude
    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    magnitude[1:-1, 1:-1] = cv2.magnitude(gx, gy)[1:-1, 1:-1]
    return magnitude


class EdgeDetector:
    """
    Sobel edge detector working at a capped resolution.

    The image is downscaled (aspect preserved) so its longer side is at
    most max_side before blurring; the returned field records the scale
    so callers can upscale masks back to the source size.
    """

    def __init__(self, blur_radius: float = 1.0, max_side: int = 640):
        """
        Initialize the detector.

        Args:
            blur_radius: Box blur radius in working pixels (rounded, >= 0)
            max_side: Working resolution cap for the longer side
        """
        if blur_radius < 0:
            raise ValueError("blur_radius must be >= 0")
        self.blur_radius = blur_radius
        self.max_side = max_side

    def detect_edges(self, image: Union[RasterImage, GrayscaleBuffer]) -> EdgeField:
        """
        Compute the edge-strength field of an image.

        Args:
            image: RasterImage or pre-converted GrayscaleBuffer

        Returns:
            EdgeField at working resolution (empty for zero-area input)
        """
        gray = to_grayscale(image)
        if gray.width == 0 or gray.height == 0:
            return EdgeField.empty()

        work_w, work_h, scale = fit_within(gray.width, gray.height, self.max_side)
        working = resize_gray(gray, work_w, work_h)

        blurred = box_blur(working.luminance, int(round(self.blur_radius)))
        magnitude = sobel_magnitude(blurred)
        max_magnitude = float(magnitude.max()) if magnitude.size else 0.0

        logger.debug(
            f"Edges: source={gray.width}x{gray.height} working={work_w}x{work_h} "
            f"scale={scale:.3f} max={max_magnitude:.1f}"
        )
        return EdgeField(work_w, work_h, magnitude, max_magnitude, scale)
