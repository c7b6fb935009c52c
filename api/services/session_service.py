"""
Comparison session service.

A session holds one reference and one drawing, the drawing transform,
the landmark pairs, the view mode and cached outlines. All state changes
go through a re-entrant lock so HTTP handlers and background landmark
requests never interleave half-updates.
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config.models import EngineSettings
from image_processing.alignment import AlignmentRequest, AlignmentResult, SimilarityAligner
from image_processing.comparator import DifferenceResult, DifferenceScorer, OutlineSimilarityScorer
from image_processing.geometry import SegmentCritique, calculate_distance, centroid, compare_segments
from image_processing.layout import (
    fit_rect,
    project_landmarks,
    project_point,
    rect_key_points,
    transformed_rect,
    unproject_point,
)
from image_processing.outline import OutlineMaskGenerator, simplify_outline
from image_processing.types import (
    AlignmentScore,
    BinaryMask,
    CoordinateSpace,
    LandmarkPair,
    LandmarkSet,
    Point2D,
    RasterImage,
    Rect,
    SimilarityTransform,
    ViewMode,
    clamp_scale,
)
from image_processing.utils import negative_space_mask, posterize_image
from utils.logger import LoggerAdapter, get_logger
from .landmark_service import (
    CRITIQUE_SEGMENTS,
    DetectorState,
    LandmarkPairs,
    LandmarkService,
    scale_anchors,
    select_keypoints,
)

logger = get_logger(__name__)

Color = Tuple[int, int, int]

OUTLINE_COLORS: Dict[str, Color] = {
    'aligned': (34, 197, 94),
    'unaligned_reference': (239, 68, 68),
    'unaligned_drawing': (59, 130, 246),
    'reference': (0, 160, 255),
    'drawing': (255, 80, 80),
    'base_unit_reference': (0, 200, 255),
    'base_unit_drawing': (255, 160, 120),
}


class ImageRole(str, Enum):
    REFERENCE = "reference"
    DRAWING = "drawing"


@dataclass
class RenderLayer:
    role: ImageRole
    kind: str  # "image" or "outline"
    rect: Rect
    color: Optional[Color] = None

    def to_dict(self) -> Dict:
        return {
            'role': self.role.value,
            'kind': self.kind,
            'rect': {'x': self.rect.x, 'y': self.rect.y, 'width': self.rect.width, 'height': self.rect.height},
            'color': list(self.color) if self.color else None
        }


@dataclass
class BaseUnitAnchor:
    """User-picked anchor pair, held in image pixels so it moves with its image."""

    reference: Point2D
    drawing: Point2D


@dataclass
class RenderPlan:
    """
    What the client should draw for the current view mode, bottom layer first.

    In base-unit mode with an anchor set, `anchor` holds the anchor pair on
    the canvas and `key_points` the reference rect points to triangulate
    against the reference anchor.
    """

    mode: ViewMode
    layers: List[RenderLayer] = field(default_factory=list)
    score: Optional[AlignmentScore] = None
    anchor: Optional[Tuple[Point2D, Point2D]] = None
    key_points: List[Point2D] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'mode': self.mode.value,
            'layers': [layer.to_dict() for layer in self.layers],
            'score': {'score': self.score.score, 'aligned': self.score.aligned} if self.score else None,
            'anchor': {
                'reference': list(self.anchor[0].as_tuple()),
                'drawing': list(self.anchor[1].as_tuple())
            } if self.anchor else None,
            'key_points': [list(p.as_tuple()) for p in self.key_points]
        }


class ComparisonSession:
    """
    State of one reference/drawing comparison.

    Args:
        settings: Validated engine settings
        landmark_service: Optional service for server-side landmark detection
        session_id: Identifier (generated when omitted)
        clock: Time source handed to the debounced scorer
    """

    def __init__(
        self,
        settings: EngineSettings,
        landmark_service: Optional[LandmarkService] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.id = session_id or uuid.uuid4().hex[:12]
        self.settings = settings
        self.landmark_service = landmark_service
        self.log = LoggerAdapter(logger, {'session': self.id})
        self._lock = threading.RLock()

        self.outline_generator = OutlineMaskGenerator.from_settings(settings.outline)
        self.aligner = SimilarityAligner(
            max_landmark_pairs=settings.alignment.max_landmark_pairs,
            content_scan_max_side=settings.alignment.content_scan_max_side,
            full_frame_ratio=settings.alignment.full_frame_ratio
        )
        self.scorer = OutlineSimilarityScorer(
            alignment_threshold=settings.scoring.alignment_threshold,
            debounce_ms=settings.scoring.debounce_ms,
            max_side=settings.scoring.max_side,
            clock=clock
        )
        self.difference_scorer = DifferenceScorer()

        self.images: Dict[ImageRole, Optional[RasterImage]] = {ImageRole.REFERENCE: None, ImageRole.DRAWING: None}
        self.transform = SimilarityTransform.identity()
        self.landmarks = LandmarkPairs()
        self.view_mode = ViewMode.NORMAL
        self.assist_enabled = False
        self.show_base_unit_drawing = True
        self.last_alignment: Optional[AlignmentResult] = None
        self.base_unit_anchor: Optional[BaseUnitAnchor] = None
        self._outlines: Dict[ImageRole, BinaryMask] = {}

    # ------------------------------------------------------------------
    # Images and layout
    # ------------------------------------------------------------------

    @property
    def canvas_size(self) -> Tuple[int, int]:
        return (self.settings.canvas.width, self.settings.canvas.height)

    @property
    def reference(self) -> Optional[RasterImage]:
        return self.images[ImageRole.REFERENCE]

    @property
    def drawing(self) -> Optional[RasterImage]:
        return self.images[ImageRole.DRAWING]

    def set_image(self, role: ImageRole, image: Optional[RasterImage]):
        """Replace one image; landmarks, its outline and the score are invalidated."""
        with self._lock:
            self.images[role] = image
            self._outlines.pop(role, None)
            self.landmarks = LandmarkPairs()
            self.base_unit_anchor = None
            if role == ImageRole.DRAWING:
                self.transform = SimilarityTransform.identity()
            if self.landmark_service is not None:
                # In-flight detections now refer to stale images
                self.landmark_service.next_token()
            self.scorer.reset()
        size = f"{image.width}x{image.height}" if image is not None else "none"
        self.log.info(f"{role.value} image set ({size})")

    def set_reference(self, image: Optional[RasterImage]):
        self.set_image(ImageRole.REFERENCE, image)

    def set_drawing(self, image: Optional[RasterImage]):
        self.set_image(ImageRole.DRAWING, image)

    def image_rect(self, role: ImageRole) -> Optional[Rect]:
        """Canvas rect of an image; the drawing's is its untransformed base rect."""
        image = self.images[role]
        if image is None:
            return None
        return fit_rect(image.dimensions, self.canvas_size)

    def drawing_rect(self) -> Optional[Rect]:
        """Canvas rect of the drawing with the current transform applied."""
        with self._lock:
            base = self.image_rect(ImageRole.DRAWING)
            if base is None:
                return None
            return transformed_rect(base, self.transform)

    def display_rect(self, role: ImageRole) -> Optional[Rect]:
        if role == ImageRole.DRAWING:
            return self.drawing_rect()
        return self.image_rect(role)

    # ------------------------------------------------------------------
    # Landmarks
    # ------------------------------------------------------------------

    def set_landmarks(self, kind: str, role: ImageRole, landmarks: Optional[LandmarkSet]):
        """Store landmarks detected elsewhere (e.g. on the client)."""
        with self._lock:
            pair = self.landmarks.get(kind)
            if role == ImageRole.REFERENCE:
                pair.reference = landmarks
            else:
                pair.drawing = landmarks
            if self.landmark_service is not None:
                self.landmark_service.next_token()
        self.log.debug(f"{kind} landmarks set for {role.value}: {len(landmarks) if landmarks else 0} points")

    async def update_landmarks(self) -> bool:
        """
        Detect landmarks on both images with the landmark service.

        Returns:
            True when the result was applied. False when no service is
            configured, the detector could not be loaded or a newer request
            superseded this one; existing landmarks are kept in those cases.
        """
        if self.landmark_service is None:
            return False
        with self._lock:
            token = self.landmark_service.next_token()
            reference, drawing = self.reference, self.drawing

        pairs = await self.landmark_service.request_pairs(reference, drawing, token)

        with self._lock:
            if pairs is None:
                if self.landmark_service.state == DetectorState.FAILED:
                    self.log.warning("Landmark detector unavailable, keeping current landmarks")
                else:
                    self.log.debug("Landmark result superseded, ignoring")
                return False
            if not self.landmark_service.is_current(token):
                self.log.debug("Landmark result superseded, ignoring")
                return False
            self.landmarks = pairs
        self.log.info(
            f"Landmarks updated (face usable={pairs.face.is_usable}, pose usable={pairs.pose.is_usable})"
        )
        return True

    # ------------------------------------------------------------------
    # Transform
    # ------------------------------------------------------------------

    def auto_align(self, prefer_landmarks: Optional[bool] = None) -> AlignmentResult:
        """Compute and apply the best available drawing transform."""
        with self._lock:
            reference_rect = self.image_rect(ImageRole.REFERENCE)
            drawing_rect = self.image_rect(ImageRole.DRAWING)
            if reference_rect is None or drawing_rect is None:
                self.log.warning("Auto-align needs both images")
                return AlignmentResult()

            if prefer_landmarks is None:
                prefer_landmarks = self.settings.alignment.prefer_landmarks
            request = AlignmentRequest(
                reference_rect=reference_rect,
                drawing_rect=drawing_rect,
                face=self.landmarks.face,
                pose=self.landmarks.pose,
                reference_image=self.reference,
                drawing_image=self.drawing,
                prefer_landmarks=prefer_landmarks
            )
            result = self.aligner.auto_align(request)
            if result.success:
                self.transform = result.transform.copy()
                self.scorer.reset()
            self.last_alignment = result
        self.log.info(f"Auto-align: {result.strategy.value} scale={result.transform.scale:.3f}")
        return result

    def nudge(self, dx: float, dy: float) -> SimilarityTransform:
        with self._lock:
            self.transform.offset_x += dx
            self.transform.offset_y += dy
            return self.transform.copy()

    def scale_about(self, factor: float, origin: Optional[Tuple[float, float]] = None) -> SimilarityTransform:
        """
        Multiply the drawing scale, keeping a canvas point fixed.

        Args:
            factor: Scale multiplier (> 0)
            origin: Canvas point to keep in place; defaults to the centre of
                the transformed drawing

        Returns:
            The updated transform
        """
        if factor <= 0:
            raise ValueError("factor must be > 0")
        with self._lock:
            base = self.image_rect(ImageRole.DRAWING)
            if base is None:
                return self.transform.copy()
            cx, cy = base.center
            if origin is None:
                origin = transformed_rect(base, self.transform).center
            ox, oy = origin

            old_scale = self.transform.scale
            new_scale = clamp_scale(old_scale * factor)
            ratio = new_scale / old_scale
            self.transform.offset_x = ox - cx - (ox - cx - self.transform.offset_x) * ratio
            self.transform.offset_y = oy - cy - (oy - cy - self.transform.offset_y) * ratio
            self.transform.scale = new_scale
            return self.transform.copy()

    def reset_transform(self) -> SimilarityTransform:
        with self._lock:
            self.transform = SimilarityTransform.identity()
            self.scorer.reset()
            return self.transform.copy()

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------

    def set_view_mode(self, mode: ViewMode):
        with self._lock:
            self.view_mode = ViewMode(mode)
        self.log.debug(f"View mode: {self.view_mode.value}")

    def set_assist(self, enabled: bool, threshold: Optional[float] = None):
        with self._lock:
            self.assist_enabled = bool(enabled)
            if threshold is not None:
                if not 0.0 <= threshold <= 1.0:
                    raise ValueError("alignment threshold must be in 0..1")
                self.scorer.alignment_threshold = threshold
            if not self.assist_enabled:
                self.scorer.reset()

    def set_base_unit_drawing_visible(self, visible: bool):
        with self._lock:
            self.show_base_unit_drawing = bool(visible)

    def set_base_unit_anchor(
        self,
        reference_point: Optional[Tuple[float, float]],
        drawing_point: Optional[Tuple[float, float]]
    ) -> Optional[Tuple[Point2D, Point2D]]:
        """
        Pick the base-unit anchor on the reference and on the drawing.

        Both points are canvas coordinates under the current layout. They
        are stored in image pixels, so the drawing anchor follows later
        nudges and scales. Passing None for either point clears the anchor.

        Returns:
            The anchor pair on the canvas, or None when cleared

        Raises:
            ValueError: If either image is missing
        """
        with self._lock:
            if reference_point is None or drawing_point is None:
                self.base_unit_anchor = None
                self.log.debug("Base-unit anchor cleared")
                return None
            reference_rect = self.image_rect(ImageRole.REFERENCE)
            drawing_rect = self.drawing_rect()
            if reference_rect is None or drawing_rect is None:
                raise ValueError("base-unit anchor needs both images")

            self.base_unit_anchor = BaseUnitAnchor(
                unproject_point(
                    Point2D(*reference_point, CoordinateSpace.CANVAS), reference_rect, self.reference.dimensions
                ),
                unproject_point(
                    Point2D(*drawing_point, CoordinateSpace.CANVAS), drawing_rect, self.drawing.dimensions
                )
            )
            anchor = self.base_unit_anchor_on_canvas()
        self.log.info(f"Base-unit anchor set: reference={reference_point} drawing={drawing_point}")
        return anchor

    def base_unit_anchor_on_canvas(self) -> Optional[Tuple[Point2D, Point2D]]:
        """Anchor pair re-projected through the current layout and transform."""
        with self._lock:
            anchor = self.base_unit_anchor
            reference_rect = self.image_rect(ImageRole.REFERENCE)
            drawing_rect = self.drawing_rect()
            if anchor is None or reference_rect is None or drawing_rect is None:
                return None
            return (
                project_point(anchor.reference, reference_rect, self.reference.dimensions),
                project_point(anchor.drawing, drawing_rect, self.drawing.dimensions)
            )

    def add_score_listener(self, listener: Callable[[AlignmentScore], None]):
        self.scorer.add_listener(listener)

    def remove_score_listener(self, listener: Callable[[AlignmentScore], None]):
        self.scorer.remove_listener(listener)

    # ------------------------------------------------------------------
    # Outlines and scores
    # ------------------------------------------------------------------

    def outline(self, role: ImageRole) -> Optional[BinaryMask]:
        """Outline mask of an image at its own resolution, generated once."""
        with self._lock:
            image = self.images[role]
            if image is None:
                return None
            cached = self._outlines.get(role)
            if cached is None:
                cached = self.outline_generator.generate(image)
                self._outlines[role] = cached
                self.log.debug(f"{role.value} outline generated: {cached.count()} pixels")
            return cached

    def simplified_outline(self, role: ImageRole) -> Optional[BinaryMask]:
        mask = self.outline(role)
        if mask is None:
            return None
        return simplify_outline(mask, self.settings.outline.simplify_epsilon)

    def compute_score(self) -> AlignmentScore:
        """Outline IoU of the current layout (debounced)."""
        with self._lock:
            return self.scorer.score(
                self.outline(ImageRole.REFERENCE),
                self.outline(ImageRole.DRAWING),
                self.image_rect(ImageRole.REFERENCE),
                self.drawing_rect()
            )

    def analyze_difference(self) -> Optional[DifferenceResult]:
        with self._lock:
            return self.difference_scorer.compute_difference(
                self.reference,
                self.drawing,
                self.image_rect(ImageRole.REFERENCE),
                self.drawing_rect()
            )

    def posterize(self, role: ImageRole):
        image = self.images[role]
        if image is None:
            return None
        return posterize_image(image, self.settings.canvas.posterize_levels)

    def negative_space(self, role: ImageRole) -> Optional[BinaryMask]:
        image = self.images[role]
        if image is None:
            return None
        return negative_space_mask(image)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self) -> RenderPlan:
        """Layers to draw for the current view mode."""
        with self._lock:
            mode = self.view_mode
            reference_rect = self.image_rect(ImageRole.REFERENCE)
            drawing_rect = self.drawing_rect()
            plan = RenderPlan(mode)

            if mode == ViewMode.NORMAL:
                self._add_layer(plan, ImageRole.REFERENCE, 'image', reference_rect)
                self._add_layer(plan, ImageRole.DRAWING, 'image', drawing_rect)
            elif mode == ViewMode.REFERENCE_OUTLINE:
                self._add_outline(plan, ImageRole.REFERENCE, reference_rect, OUTLINE_COLORS['reference'])
            elif mode == ViewMode.DRAWING_OUTLINE:
                self._add_outline(plan, ImageRole.DRAWING, drawing_rect, OUTLINE_COLORS['drawing'])
            elif mode == ViewMode.BOTH_OUTLINES:
                reference_color, drawing_color = OUTLINE_COLORS['reference'], OUTLINE_COLORS['drawing']
                if self.assist_enabled:
                    plan.score = self.compute_score()
                    if plan.score.aligned:
                        reference_color = drawing_color = OUTLINE_COLORS['aligned']
                    else:
                        reference_color = OUTLINE_COLORS['unaligned_reference']
                        drawing_color = OUTLINE_COLORS['unaligned_drawing']
                self._add_outline(plan, ImageRole.REFERENCE, reference_rect, reference_color)
                self._add_outline(plan, ImageRole.DRAWING, drawing_rect, drawing_color)
            elif mode == ViewMode.BASE_UNIT_OUTLINE:
                self._add_outline(plan, ImageRole.REFERENCE, reference_rect, OUTLINE_COLORS['base_unit_reference'])
                if self.show_base_unit_drawing:
                    self._add_outline(plan, ImageRole.DRAWING, drawing_rect, OUTLINE_COLORS['base_unit_drawing'])
                plan.anchor = self.base_unit_anchor_on_canvas()
                if plan.anchor is not None:
                    plan.key_points = rect_key_points(reference_rect)
            else:
                raise ValueError(f"Unhandled view mode: {mode}")
            return plan

    def _add_layer(self, plan: RenderPlan, role: ImageRole, kind: str, rect: Optional[Rect], color=None):
        if rect is not None:
            plan.layers.append(RenderLayer(role, kind, rect, color))

    def _add_outline(self, plan: RenderPlan, role: ImageRole, rect: Optional[Rect], color: Color):
        if rect is not None and self.outline(role) is not None:
            plan.layers.append(RenderLayer(role, 'outline', rect, color))

    def outline_color(self, role: ImageRole) -> Color:
        """Colour the current view mode gives an outline layer."""
        for layer in self.render().layers:
            if layer.role == role and layer.kind == 'outline':
                return layer.color
        return OUTLINE_COLORS[role.value]

    # ------------------------------------------------------------------
    # Critique
    # ------------------------------------------------------------------

    def canvas_landmarks(self, pair: LandmarkPair) -> Tuple[List[Point2D], List[Point2D]]:
        """Landmarks of both images in canvas space, the drawing's transformed."""
        with self._lock:
            reference_rect = self.image_rect(ImageRole.REFERENCE)
            base = self.image_rect(ImageRole.DRAWING)
            if reference_rect is None or base is None:
                return [], []
            reference = project_landmarks(pair.reference, reference_rect)
            center = base.center
            drawing = [self.transform.apply(p, center) for p in project_landmarks(pair.drawing, base)]
            return reference, drawing

    def critique(
        self,
        kind: str = 'face',
        index_pairs: Optional[Sequence[Tuple[int, int]]] = None
    ) -> SegmentCritique:
        """Compare landmark segment lengths of the aligned drawing with the reference."""
        pair = self.landmarks.get(kind)
        reference, drawing = self.canvas_landmarks(pair)
        if index_pairs is None:
            index_pairs = CRITIQUE_SEGMENTS[kind]
        result = compare_segments(reference, drawing, index_pairs)
        result.centroid_offset = self.keypoint_offset(kind)
        return result

    def keypoint_offset(self, kind: str = 'face') -> Optional[Tuple[float, float]]:
        """Canvas vector from the reference keypoint centroid to the aligned drawing's."""
        pair = self.landmarks.get(kind)
        if not pair.is_usable:
            return None
        keypoints = LandmarkPair(
            LandmarkSet(select_keypoints(pair.reference, kind), pair.reference.dimensions),
            LandmarkSet(select_keypoints(pair.drawing, kind), pair.drawing.dimensions)
        )
        reference, drawing = self.canvas_landmarks(keypoints)
        reference_center, drawing_center = centroid(reference), centroid(drawing)
        if reference_center is None or drawing_center is None:
            return None
        return (drawing_center.x - reference_center.x, drawing_center.y - reference_center.y)

    def anchor_scale_ratio(self, kind: str = 'face') -> Optional[float]:
        """Drawing / reference distance between the two scale anchors, in canvas space."""
        pair = self.landmarks.get(kind)
        if not pair.is_usable:
            return None
        reference_anchors = scale_anchors(pair.reference, kind)
        drawing_anchors = scale_anchors(pair.drawing, kind)
        if reference_anchors is None or drawing_anchors is None:
            return None
        anchor_only = LandmarkPair(
            LandmarkSet(list(reference_anchors), pair.reference.dimensions),
            LandmarkSet(list(drawing_anchors), pair.drawing.dimensions)
        )
        reference, drawing = self.canvas_landmarks(anchor_only)
        if len(reference) < 2 or len(drawing) < 2:
            return None
        reference_length = calculate_distance(reference[0], reference[1])
        if reference_length == 0:
            return None
        return calculate_distance(drawing[0], drawing[1]) / reference_length

    def snapshot(self) -> Dict:
        with self._lock:
            return {
                'id': self.id,
                'has_reference': self.reference is not None,
                'has_drawing': self.drawing is not None,
                'view_mode': self.view_mode.value,
                'assist_enabled': self.assist_enabled,
                'show_base_unit_drawing': self.show_base_unit_drawing,
                'has_base_unit_anchor': self.base_unit_anchor is not None,
                'transform': {
                    'scale': self.transform.scale,
                    'offset_x': self.transform.offset_x,
                    'offset_y': self.transform.offset_y
                },
                'landmarks': {
                    'face': self.landmarks.face.is_usable,
                    'pose': self.landmarks.pose.is_usable
                },
                'score': {
                    'score': self.scorer.last_score.score,
                    'aligned': self.scorer.last_score.aligned
                }
            }


class SessionRegistry:
    """In-memory session store; sessions are never shared between users."""

    def __init__(
        self,
        settings: EngineSettings,
        landmark_service_factory: Optional[Callable[[], LandmarkService]] = None
    ):
        self.settings = settings
        self.landmark_service_factory = landmark_service_factory
        self._sessions: Dict[str, ComparisonSession] = {}
        self._lock = threading.Lock()

    def create(self) -> ComparisonSession:
        service = self.landmark_service_factory() if self.landmark_service_factory else None
        session = ComparisonSession(self.settings, landmark_service=service)
        with self._lock:
            self._sessions[session.id] = session
        logger.info(f"Session created: {session.id}")
        return session

    def get(self, session_id: str) -> ComparisonSession:
        """Raises KeyError for unknown sessions."""
        with self._lock:
            return self._sessions[session_id]

    def delete(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info(f"Session deleted: {session_id}")
        return removed is not None

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
