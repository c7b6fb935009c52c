"""
Outline mask generation.

This module chains the edge and cleanup stages into a single outline
pipeline and provides the Ramer-Douglas-Peucker polyline simplifier used
for the lightweight "simplified" outline view.
"""

import cv2
import numpy as np
from typing import List, Optional, Sequence, Tuple, Union

from utils.logger import get_logger, log_execution_time
from .edge_detection import EdgeDetector
from .mask_cleaning import MaskCleaner, extract_boundary, threshold as threshold_edges
from .types import BinaryMask, Dimensions, GrayscaleBuffer, RasterImage
from .utils import resize_mask

logger = get_logger(__name__)


class OutlineMaskGenerator:
    """
    Produces a one-pixel outline mask for an image.

    Pipeline: downscale -> blur -> Sobel -> threshold -> clean ->
    boundary -> nearest-neighbour upscale. The pipeline has no random
    state, so identical inputs give bit-identical masks.
    """

    def __init__(
        self,
        blur_radius: float = 1.0,
        max_side: int = 640,
        threshold: float = 0.22,
        min_component_pixels: int = 45,
        refinement_level: int = 35,
        close_gaps: bool = False
    ):
        """
        Initialize the generator.

        Args:
            blur_radius: Box blur radius before Sobel
            max_side: Working resolution cap
            threshold: Normalized edge cutoff (0..1)
            min_component_pixels: Component size floor at full resolution
            refinement_level: 0..100 cleanup aggressiveness
            close_gaps: Run a morphological close after the open
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be a normalized value in 0..1")
        self.detector = EdgeDetector(blur_radius=blur_radius, max_side=max_side)
        self.cleaner = MaskCleaner(
            refinement_level=refinement_level,
            min_component_pixels=min_component_pixels,
            close_gaps=close_gaps
        )
        self.threshold = threshold

    @classmethod
    def from_settings(cls, settings) -> 'OutlineMaskGenerator':
        """Build a generator from an OutlineSettings model."""
        return cls(
            blur_radius=settings.blur_radius,
            max_side=settings.max_side,
            threshold=settings.threshold,
            min_component_pixels=settings.min_component_pixels,
            refinement_level=settings.refinement_level,
            close_gaps=settings.close_gaps
        )

    @log_execution_time(logger)
    def generate(
        self,
        image: Union[RasterImage, GrayscaleBuffer],
        target_size: Optional[Tuple[int, int]] = None
    ) -> BinaryMask:
        """
        Generate the outline mask of an image.

        Args:
            image: Source image
            target_size: Output (width, height); defaults to the source size

        Returns:
            Binary outline mask at target_size
        """
        source = Dimensions(image.width, image.height)
        target_w, target_h = target_size if target_size is not None else (source.width, source.height)
        target_w, target_h = int(round(target_w)), int(round(target_h))

        if source.is_empty or target_w <= 0 or target_h <= 0:
            return BinaryMask.empty(max(target_w, 0), max(target_h, 0))

        field = self.detector.detect_edges(image)
        binary = threshold_edges(field, self.threshold)
        cleaned = self.cleaner.clean(binary, field.scale)
        boundary = extract_boundary(cleaned)

        logger.debug(
            f"Outline: thresholded={binary.count()} cleaned={cleaned.count()} "
            f"boundary={boundary.count()}"
        )
        return resize_mask(boundary, target_w, target_h)


def _perpendicular_distances(points: np.ndarray, start: np.ndarray, end: np.ndarray) -> np.ndarray:
    """Distance of each point to the infinite line through start and end."""
    chord = end - start
    length = float(np.hypot(chord[0], chord[1]))
    if length == 0:
        return np.zeros(len(points))
    cross = chord[0] * (points[:, 1] - start[1]) - chord[1] * (points[:, 0] - start[0])
    return np.abs(cross) / length


def simplify_polyline(
    points: Sequence[Tuple[float, float]],
    epsilon: float
) -> List[Tuple[float, float]]:
    """
    Ramer-Douglas-Peucker simplification of an open polyline.

    Args:
        points: Ordered (x, y) vertices
        epsilon: Maximum allowed perpendicular deviation

    Returns:
        Simplified vertex list; the first and last vertices are always kept
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    n = len(pts)
    if n < 3:
        return [tuple(p) for p in pts.tolist()]

    keep = np.zeros(n, dtype=bool)
    keep[0] = keep[-1] = True
    stack = [(0, n - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue
        distances = _perpendicular_distances(pts[first + 1:last], pts[first], pts[last])
        index = int(np.argmax(distances))
        if distances[index] > epsilon:
            split = first + 1 + index
            keep[split] = True
            stack.append((first, split))
            stack.append((split, last))

    return [tuple(p) for p in pts[keep].tolist()]


def simplify_closed_contour(points: np.ndarray, epsilon: float) -> np.ndarray:
    """Simplify a closed contour by splitting it at the vertex farthest from the start."""
    if len(points) < 4:
        return points
    distances = np.hypot(points[:, 0] - points[0, 0], points[:, 1] - points[0, 1])
    split = int(np.argmax(distances))
    if split == 0:
        return points[:1]
    first = simplify_polyline(points[:split + 1], epsilon)
    second = simplify_polyline(np.vstack([points[split:], points[:1]]), epsilon)
    return np.asarray(first[:-1] + second[:-1], dtype=np.float64)


def simplify_outline(mask: BinaryMask, epsilon: float = 2.5) -> BinaryMask:
    """
    Redraw a mask's outer contours as simplified one-pixel polygons.

    Args:
        mask: Filled or outline mask
        epsilon: RDP tolerance in pixels

    Returns:
        Mask of the same size holding the simplified polygons
    """
    output = np.zeros((mask.height, mask.width), dtype=np.uint8)
    if mask.is_empty:
        return BinaryMask(mask.width, mask.height, output)

    contours, _ = cv2.findContours(mask.bits.copy(), cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
    polygons = []
    for contour in contours:
        vertices = contour.reshape(-1, 2).astype(np.float64)
        simplified = simplify_closed_contour(vertices, epsilon)
        polygons.append(np.rint(simplified).astype(np.int32).reshape(-1, 1, 2))

    cv2.polylines(output, polygons, isClosed=True, color=255, thickness=1)
    return BinaryMask(mask.width, mask.height, output)


def tint_outline(mask: BinaryMask, color: Tuple[int, int, int]) -> np.ndarray:
    """
    Render an outline as an RGBA layer.

    On pixels take the colour at full opacity; everything else is transparent.
    """
    layer = np.zeros((mask.height, mask.width, 4), dtype=np.uint8)
    on = mask.to_bool()
    layer[on, 0] = color[0]
    layer[on, 1] = color[1]
    layer[on, 2] = color[2]
    layer[on, 3] = 255
    return layer
