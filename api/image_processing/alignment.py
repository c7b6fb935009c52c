"""
Drawing-to-reference alignment.

Computes a rotation-free similarity transform (uniform scale + offset)
that places the drawing over the reference.

Strategies, in the order auto_align tries them:
1. Least-squares scale fit over paired landmarks (face, then pose)
2. Bounding-box match of landmark sets or of detected image content
3. Centre fit of the two image rects

Every strategy works in canvas space. The transform maps a drawing point
p to center + (p - center) * scale + offset, with center being the centre
of the untransformed drawing rect.
"""

import math
import cv2
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

from utils.logger import get_logger
from .layout import project_landmarks, project_rect
from .types import (
    Dimensions,
    LandmarkPair,
    Point2D,
    RasterImage,
    Rect,
    SimilarityTransform,
    clamp_scale,
)
from .utils import fit_within

logger = get_logger(__name__)

# Content detection: a pixel counts as content if alpha > 20 and brightness < 250
CONTENT_MIN_ALPHA = 20
CONTENT_MAX_BRIGHTNESS = 250


class AlignmentStrategy(str, Enum):
    LANDMARK_FIT = "landmark_fit"
    LANDMARK_BOUNDS = "landmark_bounds"
    CONTENT_BOUNDS = "content_bounds"
    CENTER_FIT = "center_fit"
    NONE = "none"


@dataclass
class AlignmentRequest:
    """
    Everything auto_align may use.

    Rects are the canvas rects of the two images before the drawing
    transform is applied.
    """

    reference_rect: Rect
    drawing_rect: Rect
    face: Optional[LandmarkPair] = None
    pose: Optional[LandmarkPair] = None
    reference_image: Optional[RasterImage] = None
    drawing_image: Optional[RasterImage] = None
    prefer_landmarks: bool = True


@dataclass
class AlignmentResult:
    transform: SimilarityTransform = field(default_factory=SimilarityTransform.identity)
    strategy: AlignmentStrategy = AlignmentStrategy.NONE

    @property
    def success(self) -> bool:
        return self.strategy != AlignmentStrategy.NONE

    def to_dict(self) -> Dict:
        return {
            'method': self.strategy.value,
            'success': self.success,
            'scale': float(self.transform.scale),
            'offset_x': float(self.transform.offset_x),
            'offset_y': float(self.transform.offset_y)
        }


class SimilarityAligner:
    """
    Computes the drawing transform from landmarks, content or image rects.

    Rotation is intentionally never modelled: downstream display code
    assumes rotation-free transforms.
    """

    def __init__(
        self,
        max_landmark_pairs: int = 200,
        content_scan_max_side: int = 320,
        full_frame_ratio: float = 0.9
    ):
        """
        Initialize the aligner.

        Args:
            max_landmark_pairs: Upper bound of pairs used by the least-squares fit
            content_scan_max_side: Resolution cap of the content bounds scan
            full_frame_ratio: Content covering at least this share of both axes
                is treated as a full-frame photo and ignored
        """
        self.max_landmark_pairs = max(1, int(max_landmark_pairs))
        self.content_scan_max_side = content_scan_max_side
        self.full_frame_ratio = full_frame_ratio

    def fit_landmarks(
        self,
        reference_points: Sequence[Point2D],
        drawing_points: Sequence[Point2D],
        center: Tuple[float, float]
    ) -> Optional[SimilarityTransform]:
        """
        Isotropic least-squares fit of paired landmarks.

        Both point lists must be in the same (canvas) space and are paired
        by index. Pairs are sampled at a stride so at most
        max_landmark_pairs are used.

        Args:
            reference_points: Reference landmarks
            drawing_points: Drawing landmarks (untransformed)
            center: Transform centre (centre of the base drawing rect)

        Returns:
            The fitted transform, or None when no pairs exist or the drawing
            points have no spread (sum_qq == 0) or the scale is non-finite
        """
        pair_count = min(len(reference_points), len(drawing_points))
        if pair_count == 0:
            return None
        spaces = {p.space for p in reference_points[:pair_count]} | {p.space for p in drawing_points[:pair_count]}
        if len(spaces) > 1:
            raise ValueError("Reference and drawing points must share one coordinate space")

        step = max(1, math.ceil(pair_count / self.max_landmark_pairs))
        indices = range(0, pair_count, step)
        cx, cy = center
        p = np.array([(reference_points[i].x - cx, reference_points[i].y - cy) for i in indices], dtype=np.float64)
        q = np.array([(drawing_points[i].x - cx, drawing_points[i].y - cy) for i in indices], dtype=np.float64)

        mean_p = p.mean(axis=0)
        mean_q = q.mean(axis=0)
        pc = p - mean_p
        qc = q - mean_q

        sum_cross = float(np.sum(qc * pc))
        sum_qq = float(np.sum(qc * qc))
        if sum_qq == 0:
            return None

        raw_scale = sum_cross / sum_qq
        if not math.isfinite(raw_scale):
            return None
        scale = clamp_scale(raw_scale)

        offset = mean_p - scale * mean_q
        transform = SimilarityTransform(scale, float(offset[0]), float(offset[1]))
        if not transform.is_finite():
            return None
        return transform

    def match_bounds(
        self,
        reference_box: Rect,
        drawing_box: Rect,
        center: Tuple[float, float]
    ) -> SimilarityTransform:
        """
        Match two canvas-space bounding boxes.

        Scale is the mean of the width and height ratios (a degenerate axis
        contributes 1); the offset puts the transformed drawing box centre
        on the reference box centre.
        """
        scale_x = reference_box.width / drawing_box.width if drawing_box.width else 1.0
        scale_y = reference_box.height / drawing_box.height if drawing_box.height else 1.0
        scale = clamp_scale((scale_x + scale_y) / 2 or 1.0)

        cx, cy = center
        ref_cx, ref_cy = reference_box.center
        draw_cx, draw_cy = drawing_box.center
        return SimilarityTransform(
            scale,
            ref_cx - cx - (draw_cx - cx) * scale,
            ref_cy - cy - (draw_cy - cy) * scale
        )

    def center_fit(self, reference_rect: Rect, drawing_rect: Rect) -> SimilarityTransform:
        """Centre the drawing rect on the reference rect, scaled to fit inside it."""
        if drawing_rect.is_empty:
            scale = 1.0
        else:
            scale = min(reference_rect.width / drawing_rect.width, reference_rect.height / drawing_rect.height)
        ref_cx, ref_cy = reference_rect.center
        draw_cx, draw_cy = drawing_rect.center
        return SimilarityTransform(clamp_scale(scale or 1.0), ref_cx - draw_cx, ref_cy - draw_cy)

    def content_bounds(self, image: Optional[RasterImage]) -> Optional[Rect]:
        """
        Bounding box of non-background content in image pixels.

        The scan runs at reduced resolution; a pixel is content if its
        alpha is above 20 and its mean brightness below 250.
        """
        if image is None or image.width == 0 or image.height == 0:
            return None

        width, height, scale = fit_within(image.width, image.height, self.content_scan_max_side)
        if (width, height) == (image.width, image.height):
            pixels = image.pixels
        else:
            pixels = cv2.resize(image.pixels, (width, height), interpolation=cv2.INTER_AREA)

        brightness = pixels[:, :, :3].astype(np.float32).mean(axis=2)
        content = (pixels[:, :, 3] > CONTENT_MIN_ALPHA) & (brightness < CONTENT_MAX_BRIGHTNESS)
        ys, xs = np.nonzero(content)
        if len(xs) == 0:
            return None

        scale_back_x = image.width / width
        scale_back_y = image.height / height
        min_x, max_x = int(xs.min()), int(xs.max())
        min_y, max_y = int(ys.min()), int(ys.max())
        return Rect(
            min_x * scale_back_x,
            min_y * scale_back_y,
            (max_x - min_x + 1) * scale_back_x,
            (max_y - min_y + 1) * scale_back_y
        )

    def is_full_frame(self, content: Optional[Rect], dimensions: Dimensions) -> bool:
        """Content spanning (nearly) the whole image carries no alignment signal."""
        if content is None or dimensions.is_empty:
            return True
        return (
            content.width / dimensions.width >= self.full_frame_ratio
            and content.height / dimensions.height >= self.full_frame_ratio
        )

    def auto_align(self, request: AlignmentRequest) -> AlignmentResult:
        """
        Pick the best available strategy and compute the drawing transform.

        Args:
            request: Rects, landmarks and images available for alignment

        Returns:
            AlignmentResult (strategy NONE with identity when nothing is usable)
        """
        reference_rect = request.reference_rect
        drawing_rect = request.drawing_rect
        if reference_rect.is_empty or drawing_rect.is_empty:
            return AlignmentResult()

        center = drawing_rect.center
        landmark_boxes = self._landmark_boxes(request)

        if request.prefer_landmarks:
            for kind, pair in (('face', request.face), ('pose', request.pose)):
                transform = self._fit_pair(pair, reference_rect, drawing_rect)
                if transform is not None:
                    logger.info(f"Aligned from {kind} landmarks: scale={transform.scale:.3f}")
                    return AlignmentResult(transform, AlignmentStrategy.LANDMARK_FIT)
            if landmark_boxes is not None:
                return self._from_boxes(landmark_boxes, center, AlignmentStrategy.LANDMARK_BOUNDS)

        content_boxes = self._content_boxes(request)
        if content_boxes is not None:
            return self._from_boxes(content_boxes, center, AlignmentStrategy.CONTENT_BOUNDS)

        if landmark_boxes is not None:
            return self._from_boxes(landmark_boxes, center, AlignmentStrategy.LANDMARK_BOUNDS)

        transform = self.center_fit(reference_rect, drawing_rect)
        logger.info(f"Aligned by centre fit: scale={transform.scale:.3f}")
        return AlignmentResult(transform, AlignmentStrategy.CENTER_FIT)

    def _fit_pair(
        self,
        pair: Optional[LandmarkPair],
        reference_rect: Rect,
        drawing_rect: Rect
    ) -> Optional[SimilarityTransform]:
        if pair is None or not pair.is_usable:
            return None
        reference_points = project_landmarks(pair.reference, reference_rect)
        drawing_points = project_landmarks(pair.drawing, drawing_rect)
        return self.fit_landmarks(reference_points, drawing_points, drawing_rect.center)

    def _landmark_boxes(self, request: AlignmentRequest) -> Optional[Tuple[Rect, Rect]]:
        for pair in (request.face, request.pose):
            if pair is None or not pair.is_usable:
                continue
            reference_box = Rect.from_points(project_landmarks(pair.reference, request.reference_rect))
            drawing_box = Rect.from_points(project_landmarks(pair.drawing, request.drawing_rect))
            if reference_box is not None and drawing_box is not None:
                return reference_box, drawing_box
        return None

    def _content_boxes(self, request: AlignmentRequest) -> Optional[Tuple[Rect, Rect]]:
        if request.reference_image is None or request.drawing_image is None:
            return None
        reference_dims = request.reference_image.dimensions
        drawing_dims = request.drawing_image.dimensions
        reference_content = self.content_bounds(request.reference_image)
        drawing_content = self.content_bounds(request.drawing_image)
        if self.is_full_frame(reference_content, reference_dims) or self.is_full_frame(drawing_content, drawing_dims):
            return None
        return (
            project_rect(reference_content, request.reference_rect, reference_dims),
            project_rect(drawing_content, request.drawing_rect, drawing_dims)
        )

    def _from_boxes(
        self,
        boxes: Tuple[Rect, Rect],
        center: Tuple[float, float],
        strategy: AlignmentStrategy
    ) -> AlignmentResult:
        transform = self.match_bounds(boxes[0], boxes[1], center)
        logger.info(f"Aligned by {strategy.value}: scale={transform.scale:.3f}")
        return AlignmentResult(transform, strategy)
