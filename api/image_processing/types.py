"""
Core data types for the comparison engine.

Buffers are thin wrappers around numpy arrays so the OpenCV/numpy
pipeline can work on them directly. Points always carry the coordinate
space they live in: image pixels or canvas pixels.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np


MIN_SCALE = 0.1
MAX_SCALE = 8.0


def clamp_scale(value: float) -> float:
    """Clamp a transform scale into the supported range."""
    return min(max(float(value), MIN_SCALE), MAX_SCALE)


class CoordinateSpace(str, Enum):
    """Coordinate space a point is expressed in."""
    IMAGE = "image"
    CANVAS = "canvas"


class ViewMode(str, Enum):
    """Render modes of a comparison session."""
    NORMAL = "normal"
    REFERENCE_OUTLINE = "reference-outline"
    DRAWING_OUTLINE = "drawing-outline"
    BOTH_OUTLINES = "both-outlines"
    BASE_UNIT_OUTLINE = "base-unit-outline"


@dataclass(frozen=True)
class Point2D:
    x: float
    y: float
    space: CoordinateSpace = CoordinateSpace.IMAGE

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle (top-left corner + size)."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @classmethod
    def from_points(cls, points: Sequence[Point2D]) -> Optional['Rect']:
        """Bounding box of a point list, or None when the list is empty."""
        if not points:
            return None
        xs = [p.x for p in points]
        ys = [p.y for p in points]
        return cls(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))


@dataclass
class RasterImage:
    """
    Decoded RGBA bitmap.

    The pixel array is marked read-only on construction; the engine only
    reads from it into working buffers.
    """

    pixels: np.ndarray

    def __post_init__(self):
        pixels = np.asarray(self.pixels)
        if pixels.ndim == 2:
            pixels = np.dstack([pixels, pixels, pixels, np.full_like(pixels, 255)])
        elif pixels.ndim == 3 and pixels.shape[2] == 3:
            alpha = np.full(pixels.shape[:2], 255, dtype=pixels.dtype)
            pixels = np.dstack([pixels, alpha])
        elif pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Unsupported pixel array shape: {pixels.shape}")
        pixels = np.array(pixels, dtype=np.uint8, order="C", copy=True)
        pixels.setflags(write=False)
        self.pixels = pixels

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def dimensions(self) -> Dimensions:
        return Dimensions(self.width, self.height)

    def pixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        """RGBA bytes at (x, y)."""
        r, g, b, a = self.pixels[y, x]
        return int(r), int(g), int(b), int(a)


@dataclass
class GrayscaleBuffer:
    width: int
    height: int
    luminance: np.ndarray  # float32 [height, width], 0..255


@dataclass
class EdgeField:
    """Sobel gradient magnitude at working resolution."""

    width: int
    height: int
    magnitude: np.ndarray  # float32 [height, width]
    max_magnitude: float
    scale: float = 1.0  # working resolution / source resolution

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0 or self.max_magnitude <= 0

    @classmethod
    def empty(cls, width: int = 0, height: int = 0, scale: float = 1.0) -> 'EdgeField':
        return cls(width, height, np.zeros((height, width), dtype=np.float32), 0.0, scale)


@dataclass
class BinaryMask:
    """Set of "on" pixels stored as uint8 0/255."""

    width: int
    height: int
    bits: np.ndarray

    def __post_init__(self):
        if self.bits.shape != (self.height, self.width):
            raise ValueError(
                f"Mask bits shape {self.bits.shape} does not match {self.width}x{self.height}"
            )

    @classmethod
    def from_bool(cls, on: np.ndarray) -> 'BinaryMask':
        on = np.asarray(on, dtype=bool)
        h, w = on.shape
        return cls(w, h, np.where(on, 255, 0).astype(np.uint8))

    @classmethod
    def empty(cls, width: int, height: int) -> 'BinaryMask':
        return cls(width, height, np.zeros((height, width), dtype=np.uint8))

    def to_bool(self) -> np.ndarray:
        return self.bits > 0

    def count(self) -> int:
        return int(np.count_nonzero(self.bits))

    @property
    def is_empty(self) -> bool:
        return self.count() == 0

    def same_as(self, other: 'BinaryMask') -> bool:
        return (self.width, self.height) == (other.width, other.height) and bool(
            np.array_equal(self.to_bool(), other.to_bool())
        )


@dataclass
class LandmarkSet:
    """
    Index-stable landmark points in image-pixel space.

    Index N always names the same semantic landmark (e.g. 33 = left eye
    corner for face sets), so pairs are matched by index.
    """

    points: List[Point2D] = field(default_factory=list)
    dimensions: Dimensions = Dimensions(0, 0)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_empty(self) -> bool:
        return not self.points or self.dimensions.is_empty

    def get(self, index: int) -> Optional[Point2D]:
        if 0 <= index < len(self.points):
            return self.points[index]
        return None

    @classmethod
    def from_normalized(
        cls,
        coords: Sequence[Tuple[float, float]],
        width: int,
        height: int
    ) -> 'LandmarkSet':
        """Build a set from detector output normalized to 0..1."""
        points = [Point2D(float(x) * width, float(y) * height) for x, y in coords]
        return cls(points, Dimensions(int(width), int(height)))


@dataclass
class SimilarityTransform:
    """
    Uniform scale + offset applied to the drawing.

    A drawing point p maps to center + (p - center) * scale + offset, where
    center is the centre of the untransformed drawing rect.
    """

    scale: float = 1.0
    offset_x: float = 0.0
    offset_y: float = 0.0

    def __setattr__(self, name, value):
        if name == 'scale':
            value = clamp_scale(value)
        super().__setattr__(name, value)

    @classmethod
    def identity(cls) -> 'SimilarityTransform':
        return cls(1.0, 0.0, 0.0)

    def apply(self, point: Point2D, center: Tuple[float, float]) -> Point2D:
        cx, cy = center
        return Point2D(
            cx + (point.x - cx) * self.scale + self.offset_x,
            cy + (point.y - cy) * self.scale + self.offset_y,
            point.space
        )

    def copy(self) -> 'SimilarityTransform':
        return SimilarityTransform(self.scale, self.offset_x, self.offset_y)

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.scale, self.offset_x, self.offset_y))


@dataclass(frozen=True)
class AlignmentScore:
    score: float = 0.0
    aligned: bool = False


@dataclass
class LandmarkPair:
    """Landmarks of the same kind detected on the reference and the drawing."""

    reference: Optional[LandmarkSet] = None
    drawing: Optional[LandmarkSet] = None

    @property
    def is_usable(self) -> bool:
        return (
            self.reference is not None and not self.reference.is_empty
            and self.drawing is not None and not self.drawing.is_empty
        )
