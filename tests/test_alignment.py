"""
Unit Tests for the Similarity Aligner

Tests the least-squares landmark fit, bounding-box matching, centre fit,
content detection and auto_align strategy precedence.
"""

import math

import numpy as np
import pytest

from image_processing.alignment import (
    AlignmentRequest,
    AlignmentStrategy,
    SimilarityAligner,
)
from image_processing.layout import fit_rect
from image_processing.types import (
    CoordinateSpace,
    Dimensions,
    LandmarkPair,
    LandmarkSet,
    Point2D,
    RasterImage,
    Rect,
    MAX_SCALE,
    MIN_SCALE,
)


def canvas_points(coords):
    return [Point2D(x, y, CoordinateSpace.CANVAS) for x, y in coords]


def landmark_set(coords, size=100):
    return LandmarkSet([Point2D(x, y) for x, y in coords], Dimensions(size, size))


@pytest.fixture
def aligner():
    return SimilarityAligner()


class TestFitLandmarks:

    def test_fit_when_two_point_pairs_then_scale_two_and_centroids_match(self, aligner):
        reference = canvas_points([(10, 10), (90, 10)])
        drawing = canvas_points([(20, 20), (60, 20)])
        transform = aligner.fit_landmarks(reference, drawing, (50, 50))

        assert transform.scale == pytest.approx(2.0)
        assert (transform.offset_x, transform.offset_y) == pytest.approx((20.0, 20.0))
        mapped = transform.apply(Point2D(40, 20, CoordinateSpace.CANVAS), (50, 50))
        assert (mapped.x, mapped.y) == pytest.approx((50.0, 10.0))

    def test_fit_when_scale_huge_then_clamped_to_max(self, aligner):
        reference = canvas_points([(0, 0), (1000, 0)])
        drawing = canvas_points([(0, 0), (10, 0)])
        assert aligner.fit_landmarks(reference, drawing, (0, 0)).scale == MAX_SCALE

    def test_fit_when_scale_tiny_then_clamped_to_min(self, aligner):
        reference = canvas_points([(0, 0), (1, 0)])
        drawing = canvas_points([(0, 0), (1000, 0)])
        assert aligner.fit_landmarks(reference, drawing, (0, 0)).scale == MIN_SCALE

    def test_fit_when_drawing_points_coincide_then_none(self, aligner):
        reference = canvas_points([(10, 10), (90, 10)])
        drawing = canvas_points([(30, 30), (30, 30)])
        assert aligner.fit_landmarks(reference, drawing, (50, 50)) is None

    def test_fit_when_no_pairs_then_none(self, aligner):
        assert aligner.fit_landmarks([], canvas_points([(1, 1)]), (0, 0)) is None

    def test_fit_when_spaces_mixed_then_raises(self, aligner):
        reference = canvas_points([(10, 10), (90, 10)])
        drawing = [Point2D(20, 20), Point2D(60, 20)]
        with pytest.raises(ValueError):
            aligner.fit_landmarks(reference, drawing, (50, 50))

    def test_fit_when_many_pairs_then_sampled_and_exact(self, aligner):
        angles = np.linspace(0, 2 * math.pi, 1000, endpoint=False)
        drawing = canvas_points([(100 + 10 * math.cos(a), 100 + 10 * math.sin(a)) for a in angles])
        reference = canvas_points([(100 + 30 * math.cos(a), 100 + 30 * math.sin(a)) for a in angles])
        transform = aligner.fit_landmarks(reference, drawing, (100, 100))
        assert transform.scale == pytest.approx(3.0)
        assert transform.offset_x == pytest.approx(0.0, abs=1e-6)


class TestBoxes:

    def test_match_bounds_when_boxes_then_centres_coincide(self, aligner):
        reference_box = Rect(10, 10, 80, 40)
        drawing_box = Rect(0, 0, 40, 20)
        center = (50, 50)
        transform = aligner.match_bounds(reference_box, drawing_box, center)
        assert transform.scale == pytest.approx(2.0)
        mapped = transform.apply(Point2D(*drawing_box.center, CoordinateSpace.CANVAS), center)
        assert (mapped.x, mapped.y) == pytest.approx(reference_box.center)

    def test_match_bounds_when_degenerate_axis_then_ratio_one(self, aligner):
        transform = aligner.match_bounds(Rect(0, 0, 60, 0), Rect(0, 0, 20, 0), (0, 0))
        assert transform.scale == pytest.approx((3.0 + 1.0) / 2)

    def test_center_fit_when_drawing_larger_then_shrunk_and_centred(self, aligner):
        transform = aligner.center_fit(Rect(0, 0, 100, 50), Rect(200, 200, 200, 200))
        assert transform.scale == pytest.approx(0.25)
        assert (transform.offset_x, transform.offset_y) == pytest.approx((-250.0, -275.0))

    def test_content_bounds_when_square_then_square_box(self, aligner, small_square_image):
        assert aligner.content_bounds(small_square_image) == Rect(20, 20, 20, 20)

    def test_content_bounds_when_blank_or_transparent_then_none(self, aligner, white_image):
        assert aligner.content_bounds(white_image) is None
        assert aligner.content_bounds(RasterImage(np.zeros((10, 10, 4), dtype=np.uint8))) is None
        assert aligner.content_bounds(None) is None

    def test_content_bounds_when_large_image_then_scanned_downscaled(self, aligner):
        pixels = np.full((640, 640, 3), 255, dtype=np.uint8)
        pixels[100:300, 200:400] = 0
        box = aligner.content_bounds(RasterImage(pixels))
        assert (box.x, box.y, box.width, box.height) == pytest.approx((200, 100, 200, 200), abs=2)

    def test_is_full_frame_when_content_covers_image_then_true(self, aligner):
        assert aligner.is_full_frame(Rect(2, 2, 96, 96), Dimensions(100, 100))
        assert not aligner.is_full_frame(Rect(20, 20, 20, 20), Dimensions(100, 100))
        assert aligner.is_full_frame(None, Dimensions(100, 100))


class TestAutoAlign:

    def _request(self, **kwargs):
        rect = fit_rect(Dimensions(100, 100), (200, 200))
        return AlignmentRequest(reference_rect=rect, drawing_rect=rect, **kwargs)

    def test_auto_align_when_nothing_usable_then_center_fit(self, aligner, white_image):
        result = aligner.auto_align(self._request(reference_image=white_image, drawing_image=white_image))
        assert result.strategy == AlignmentStrategy.CENTER_FIT
        assert result.transform.scale == pytest.approx(1.0)
        assert result.success

    def test_auto_align_when_face_landmarks_then_landmark_fit(self, aligner):
        face = LandmarkPair(landmark_set([(10, 10), (90, 10)]), landmark_set([(30, 10), (70, 10)]))
        result = aligner.auto_align(self._request(face=face))
        assert result.strategy == AlignmentStrategy.LANDMARK_FIT
        assert result.transform.scale == pytest.approx(2.0)

    def test_auto_align_when_face_fit_fails_then_pose_fit(self, aligner):
        face = LandmarkPair(landmark_set([(10, 10), (90, 10)]), landmark_set([(50, 50), (50, 50)]))
        pose = LandmarkPair(landmark_set([(20, 20), (80, 80)]), landmark_set([(20, 20), (80, 80)]))
        result = aligner.auto_align(self._request(face=face, pose=pose))
        assert result.strategy == AlignmentStrategy.LANDMARK_FIT
        assert result.transform.scale == pytest.approx(1.0)

    def test_auto_align_when_fit_degenerate_then_landmark_bounds(self, aligner):
        face = LandmarkPair(landmark_set([(10, 10), (90, 10)]), landmark_set([(50, 50), (50, 50)]))
        result = aligner.auto_align(self._request(face=face))
        assert result.strategy == AlignmentStrategy.LANDMARK_BOUNDS

    def test_auto_align_when_landmarks_not_preferred_then_content_first(self, aligner, square_image, small_square_image):
        face = LandmarkPair(landmark_set([(10, 10), (90, 10)]), landmark_set([(30, 10), (70, 10)]))
        result = aligner.auto_align(self._request(
            face=face,
            reference_image=square_image,
            drawing_image=small_square_image,
            prefer_landmarks=False
        ))
        assert result.strategy == AlignmentStrategy.CONTENT_BOUNDS
        assert result.transform.scale == pytest.approx(2.0)

    def test_auto_align_when_content_matched_then_boxes_overlap(self, aligner, square_image, small_square_image):
        request = self._request(reference_image=square_image, drawing_image=small_square_image)
        result = aligner.auto_align(request)
        # Drawing square spans canvas 40..80, reference square 60..140
        center = request.drawing_rect.center
        top_left = result.transform.apply(Point2D(40, 40, CoordinateSpace.CANVAS), center)
        assert (top_left.x, top_left.y) == pytest.approx((60.0, 60.0))

    def test_auto_align_when_full_frame_content_then_landmark_bounds_after(self, aligner, white_image):
        face = LandmarkPair(landmark_set([(10, 10), (90, 10)]), landmark_set([(50, 50), (50, 50)]))
        photo = RasterImage(np.full((100, 100, 3), 90, dtype=np.uint8))
        result = aligner.auto_align(self._request(
            face=face, reference_image=photo, drawing_image=photo, prefer_landmarks=False
        ))
        assert result.strategy == AlignmentStrategy.LANDMARK_BOUNDS

    def test_auto_align_when_rect_empty_then_none(self, aligner):
        result = aligner.auto_align(AlignmentRequest(Rect(0, 0, 0, 0), Rect(0, 0, 10, 10)))
        assert result.strategy == AlignmentStrategy.NONE
        assert not result.success
        assert result.to_dict()['method'] == 'none'
