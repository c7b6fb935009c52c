"""
Canvas layout helpers.

Images are shown contain-fitted and centred on a shared canvas; the
drawing additionally carries a SimilarityTransform. These helpers move
points between image-pixel space and canvas space. Every point records
its space so the two can never be mixed silently.
"""

from typing import List, Optional, Tuple

from .types import CoordinateSpace, Dimensions, LandmarkSet, Point2D, Rect, SimilarityTransform


def fit_rect(image: Dimensions, canvas: Tuple[int, int]) -> Rect:
    """
    Contain-fit an image into the canvas, centred.

    Returns an empty rect for zero-area images or canvases.
    """
    canvas_w, canvas_h = canvas
    if image.is_empty or canvas_w <= 0 or canvas_h <= 0:
        return Rect(0, 0, 0, 0)
    scale = min(canvas_w / image.width, canvas_h / image.height)
    width = image.width * scale
    height = image.height * scale
    return Rect((canvas_w - width) / 2, (canvas_h - height) / 2, width, height)


def transformed_rect(base: Rect, transform: SimilarityTransform) -> Rect:
    """Rect the drawing occupies once the transform is applied to its base rect."""
    cx, cy = base.center
    width = base.width * transform.scale
    height = base.height * transform.scale
    return Rect(
        cx - width / 2 + transform.offset_x,
        cy - height / 2 + transform.offset_y,
        width,
        height
    )


def project_point(point: Point2D, rect: Rect, dimensions: Dimensions) -> Point2D:
    """Map an image-space point into the canvas rect showing that image."""
    if point.space != CoordinateSpace.IMAGE:
        raise ValueError(f"Expected an image-space point, got {point.space.value}")
    if rect.is_empty or dimensions.is_empty:
        return Point2D(0.0, 0.0, CoordinateSpace.CANVAS)
    return Point2D(
        rect.x + point.x * rect.width / dimensions.width,
        rect.y + point.y * rect.height / dimensions.height,
        CoordinateSpace.CANVAS
    )


def unproject_point(point: Point2D, rect: Rect, dimensions: Dimensions) -> Point2D:
    """Map a canvas point back into image pixels."""
    if point.space != CoordinateSpace.CANVAS:
        raise ValueError(f"Expected a canvas-space point, got {point.space.value}")
    if rect.is_empty or dimensions.is_empty:
        return Point2D(0.0, 0.0, CoordinateSpace.IMAGE)
    return Point2D(
        (point.x - rect.x) * dimensions.width / rect.width,
        (point.y - rect.y) * dimensions.height / rect.height,
        CoordinateSpace.IMAGE
    )


def project_landmarks(landmarks: Optional[LandmarkSet], rect: Rect) -> List[Point2D]:
    """Project a landmark set into canvas space (empty list when unusable)."""
    if landmarks is None or landmarks.is_empty or rect.is_empty:
        return []
    return [project_point(p, rect, landmarks.dimensions) for p in landmarks.points]


def project_rect(box: Rect, rect: Rect, dimensions: Dimensions) -> Rect:
    """Map an image-space box into canvas space."""
    top_left = project_point(Point2D(box.x, box.y), rect, dimensions)
    bottom_right = project_point(Point2D(box.x + box.width, box.y + box.height), rect, dimensions)
    return Rect(top_left.x, top_left.y, bottom_right.x - top_left.x, bottom_right.y - top_left.y)


def union_rect(a: Rect, b: Rect) -> Rect:
    """Smallest rect containing both."""
    left = min(a.x, b.x)
    top = min(a.y, b.y)
    right = max(a.x + a.width, b.x + b.width)
    bottom = max(a.y + a.height, b.y + b.height)
    return Rect(left, top, right - left, bottom - top)


def rect_key_points(rect: Rect) -> List[Point2D]:
    """
    The nine key points of a canvas rect.

    Corners and edge midpoints clockwise from the top-left corner, then
    the centre. The base-unit view triangulates these against the anchor.
    """
    if rect.is_empty:
        return []
    left, top = rect.x, rect.y
    right, bottom = rect.x + rect.width, rect.y + rect.height
    cx, cy = rect.center
    coords = [
        (left, top), (cx, top), (right, top), (right, cy),
        (right, bottom), (cx, bottom), (left, bottom), (left, cy),
        (cx, cy),
    ]
    return [Point2D(x, y, CoordinateSpace.CANVAS) for x, y in coords]
