"""
Landmark geometry helpers used by the segment critique.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .types import Point2D

# Error bands of the critique colours, in absolute percent
GOOD_ERROR_PERCENT = 8.0
FAIR_ERROR_PERCENT = 20.0


def calculate_distance(p1: Point2D, p2: Point2D) -> float:
    return math.hypot(p2.x - p1.x, p2.y - p1.y)


def calculate_angle(p1: Point2D, p2: Point2D, p3: Point2D) -> float:
    """Signed angle in degrees at p2 from the ray p2->p1 to the ray p2->p3."""
    a = math.atan2(p1.y - p2.y, p1.x - p2.x)
    b = math.atan2(p3.y - p2.y, p3.x - p2.x)
    return math.degrees(b - a)


def centroid(points: Sequence[Point2D]) -> Optional[Point2D]:
    if not points:
        return None
    return Point2D(
        sum(p.x for p in points) / len(points),
        sum(p.y for p in points) / len(points),
        points[0].space
    )


@dataclass
class SegmentComparison:
    a: int
    b: int
    reference_length: float
    drawing_length: float
    ratio: Optional[float]
    diff_percent: Optional[float]
    tilt_degrees: Optional[float] = None

    @property
    def rating(self) -> Optional[str]:
        if self.diff_percent is None:
            return None
        error = abs(self.diff_percent)
        if error < GOOD_ERROR_PERCENT:
            return "good"
        if error < FAIR_ERROR_PERCENT:
            return "fair"
        return "poor"

    def to_dict(self) -> Dict:
        return {
            'a': self.a,
            'b': self.b,
            'reference_length': self.reference_length,
            'drawing_length': self.drawing_length,
            'ratio': self.ratio,
            'diff_percent': self.diff_percent,
            'rating': self.rating,
            'tilt_degrees': self.tilt_degrees
        }


@dataclass
class SegmentCritique:
    segments: List[SegmentComparison]
    average_error_percent: Optional[float]
    worst_segment: Optional[SegmentComparison]
    # Drawing keypoint centroid minus reference keypoint centroid, canvas px
    centroid_offset: Optional[Tuple[float, float]] = None

    def to_dict(self) -> Dict:
        return {
            'segments': [s.to_dict() for s in self.segments],
            'average_error_percent': self.average_error_percent,
            'worst_segment': self.worst_segment.to_dict() if self.worst_segment else None,
            'centroid_offset': list(self.centroid_offset) if self.centroid_offset else None
        }


def _point_at(points: Sequence[Point2D], index: int) -> Optional[Point2D]:
    if 0 <= index < len(points):
        return points[index]
    return None


def segment_tilt(
    ref_a: Optional[Point2D],
    ref_b: Optional[Point2D],
    draw_a: Optional[Point2D],
    draw_b: Optional[Point2D]
) -> Optional[float]:
    """Rotation in degrees, in (-180, 180], from the reference segment to the drawing segment."""
    if not (ref_a and ref_b and draw_a and draw_b):
        return None
    if calculate_distance(ref_a, ref_b) == 0 or calculate_distance(draw_a, draw_b) == 0:
        return None
    origin = Point2D(0.0, 0.0)
    angle = calculate_angle(
        Point2D(ref_b.x - ref_a.x, ref_b.y - ref_a.y),
        origin,
        Point2D(draw_b.x - draw_a.x, draw_b.y - draw_a.y)
    )
    angle = math.fmod(angle, 360.0)
    if angle <= -180.0:
        angle += 360.0
    elif angle > 180.0:
        angle -= 360.0
    return angle


def compare_segments(
    reference_points: Sequence[Point2D],
    drawing_points: Sequence[Point2D],
    index_pairs: Sequence[Tuple[int, int]]
) -> SegmentCritique:
    """
    Compare segment lengths between two index-aligned landmark lists.

    Args:
        reference_points: Reference landmarks
        drawing_points: Drawing landmarks (same indexing)
        index_pairs: (a, b) landmark indices naming each segment

    Returns:
        SegmentCritique. A segment whose reference length is zero (missing
        or coincident reference endpoints) has no ratio and is left out of
        the average. Missing drawing endpoints count as length 0, so the
        segment rates at -100% and is averaged in.
    """
    segments = []
    for a, b in index_pairs:
        ref_a, ref_b = _point_at(reference_points, a), _point_at(reference_points, b)
        draw_a, draw_b = _point_at(drawing_points, a), _point_at(drawing_points, b)

        ref_len = calculate_distance(ref_a, ref_b) if ref_a and ref_b else 0.0
        draw_len = calculate_distance(draw_a, draw_b) if draw_a and draw_b else 0.0

        ratio = draw_len / ref_len if ref_len > 0 else None
        diff = (ratio - 1) * 100 if ratio is not None else None
        tilt = segment_tilt(ref_a, ref_b, draw_a, draw_b)
        segments.append(SegmentComparison(a, b, ref_len, draw_len, ratio, diff, tilt))

    valid = [s for s in segments if s.diff_percent is not None]
    if not valid:
        return SegmentCritique(segments, None, None)

    average = sum(abs(s.diff_percent) for s in valid) / len(valid)
    worst = valid[0]
    for segment in valid[1:]:
        if abs(segment.diff_percent) > abs(worst.diff_percent):
            worst = segment
    return SegmentCritique(segments, average, worst)
