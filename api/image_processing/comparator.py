"""
Comparison module for evaluating drawings.

This module scores how well a drawing matches its reference: outline
overlap (intersection over union of the two outline masks, laid out in
canvas space) and a per-pixel colour difference heatmap.
"""

import time
import cv2
import numpy as np
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from utils.logger import get_logger
from .layout import union_rect
from .types import AlignmentScore, BinaryMask, RasterImage, Rect
from .utils import fit_within

logger = get_logger(__name__)

ScoreListener = Callable[[AlignmentScore], None]

HEATMAP_COLOR = (255, 64, 64)
HEATMAP_GAIN = 1.4


class OutlineSimilarityScorer:
    """
    Scores outline overlap between the reference and the drawing.

    Both masks are rasterized into a shared frame covering the two canvas
    rects, then compared with IoU. Scoring is debounced: calls arriving
    within debounce_ms of the last computation return the cached score.
    """

    def __init__(
        self,
        alignment_threshold: float = 0.78,
        debounce_ms: float = 100.0,
        max_side: int = 512,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the scorer.

        Args:
            alignment_threshold: IoU at or above which the pair counts as aligned
            debounce_ms: Minimum interval between two computations
            max_side: Resolution cap of the shared scoring frame
            clock: Monotonic time source in seconds
        """
        if not 0.0 <= alignment_threshold <= 1.0:
            raise ValueError("alignment_threshold must be in 0..1")
        self.alignment_threshold = alignment_threshold
        self.debounce_seconds = max(0.0, debounce_ms) / 1000.0
        self.max_side = max_side
        self._clock = clock
        self._last_score = AlignmentScore()
        self._last_computed: Optional[float] = None
        self._listeners: List[ScoreListener] = []

    @property
    def last_score(self) -> AlignmentScore:
        return self._last_score

    def add_listener(self, listener: ScoreListener):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ScoreListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reset(self):
        """Forget the cached score and the debounce window."""
        self._last_computed = None
        self._publish(AlignmentScore())

    def score(
        self,
        reference_mask: Optional[BinaryMask],
        drawing_mask: Optional[BinaryMask],
        reference_rect: Optional[Rect],
        drawing_rect: Optional[Rect]
    ) -> AlignmentScore:
        """
        Score the overlap of two outline masks.

        Args:
            reference_mask: Reference outline in reference image pixels
            drawing_mask: Drawing outline in drawing image pixels
            reference_rect: Canvas rect the reference is shown in
            drawing_rect: Canvas rect of the (transformed) drawing

        Returns:
            AlignmentScore; the cached one while inside the debounce window
        """
        if (
            reference_mask is None or drawing_mask is None
            or reference_rect is None or drawing_rect is None
            or reference_rect.is_empty or drawing_rect.is_empty
        ):
            self.reset()
            return self._last_score

        now = self._clock()
        if self._last_computed is not None and now - self._last_computed < self.debounce_seconds:
            return self._last_score
        self._last_computed = now

        iou = outline_iou(reference_mask, drawing_mask, reference_rect, drawing_rect, self.max_side)
        result = AlignmentScore(score=iou, aligned=iou >= self.alignment_threshold)
        logger.debug(f"Outline IoU={iou:.3f} aligned={result.aligned}")
        self._publish(result)
        return result

    def _publish(self, result: AlignmentScore):
        self._last_score = result
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.error(f"Score listener failed: {e}", exc_info=True)


def _frame_box(rect: Rect, frame: Rect, scale: float) -> Tuple[int, int, int, int]:
    x = int(round((rect.x - frame.x) * scale))
    y = int(round((rect.y - frame.y) * scale))
    w = max(1, int(round(rect.width * scale)))
    h = max(1, int(round(rect.height * scale)))
    return x, y, w, h


def rasterize_into_frame(
    mask: BinaryMask,
    rect: Rect,
    frame: Rect,
    frame_size: Tuple[int, int],
    scale: float
) -> np.ndarray:
    """
    Place a mask into a shared boolean frame.

    Args:
        mask: Mask in its own image pixels
        rect: Canvas rect the mask's image occupies
        frame: Canvas rect covered by the frame
        frame_size: Frame (width, height) in pixels
        scale: Frame pixels per canvas pixel

    Returns:
        bool array [height, width]
    """
    frame_w, frame_h = frame_size
    canvas = np.zeros((frame_h, frame_w), dtype=bool)
    if mask.width == 0 or mask.height == 0:
        return canvas

    x, y, w, h = _frame_box(rect, frame, scale)
    resized = cv2.resize(mask.bits, (w, h), interpolation=cv2.INTER_NEAREST) > 0

    left, top = max(x, 0), max(y, 0)
    right, bottom = min(x + w, frame_w), min(y + h, frame_h)
    if right <= left or bottom <= top:
        return canvas
    canvas[top:bottom, left:right] = resized[top - y:bottom - y, left - x:right - x]
    return canvas


def outline_iou(
    reference_mask: BinaryMask,
    drawing_mask: BinaryMask,
    reference_rect: Rect,
    drawing_rect: Rect,
    max_side: int = 512
) -> float:
    """Intersection over union of two masks laid out in canvas space (0 when the union is empty)."""
    frame = union_rect(reference_rect, drawing_rect)
    if frame.is_empty:
        return 0.0
    frame_w, frame_h, scale = fit_within(
        int(np.ceil(frame.width)), int(np.ceil(frame.height)), max_side
    )
    if frame_w == 0 or frame_h == 0:
        return 0.0

    reference = rasterize_into_frame(reference_mask, reference_rect, frame, (frame_w, frame_h), scale)
    drawing = rasterize_into_frame(drawing_mask, drawing_rect, frame, (frame_w, frame_h), scale)

    union = int(np.count_nonzero(reference | drawing))
    if union == 0:
        return 0.0
    intersection = int(np.count_nonzero(reference & drawing))
    return intersection / union


@dataclass
class DifferenceResult:
    heatmap: np.ndarray  # uint8 [height, width, 4]
    average_difference_percent: float
    width: int
    height: int

    def to_dict(self) -> dict:
        return {
            'average_difference_percent': round(self.average_difference_percent, 2),
            'width': self.width,
            'height': self.height
        }


class DifferenceScorer:
    """
    Per-pixel colour difference between the reference and the drawing.

    Both images are stretched into a shared buffer sized to the smaller of
    the two display rects. The per-pixel difference is the summed absolute
    RGB delta over 765; the heatmap shows it as a red layer whose alpha
    grows with the difference.
    """

    def compute_difference(
        self,
        reference: Optional[RasterImage],
        drawing: Optional[RasterImage],
        reference_rect: Optional[Rect] = None,
        drawing_rect: Optional[Rect] = None
    ) -> Optional[DifferenceResult]:
        """
        Compute the difference heatmap.

        Args:
            reference: Reference image
            drawing: Drawing image
            reference_rect: Display rect of the reference (defaults to image size)
            drawing_rect: Display rect of the drawing (defaults to image size)

        Returns:
            DifferenceResult, or None when an input is missing or the
            shared size is zero
        """
        if reference is None or drawing is None:
            return None

        ref_w, ref_h = _display_size(reference, reference_rect)
        draw_w, draw_h = _display_size(drawing, drawing_rect)
        width = int(round(min(ref_w, draw_w)))
        height = int(round(min(ref_h, draw_h)))
        if width <= 0 or height <= 0 or reference.width == 0 or drawing.width == 0:
            return None

        ref_rgb = _resize_rgb(reference, width, height)
        draw_rgb = _resize_rgb(drawing, width, height)

        diff = np.abs(ref_rgb - draw_rgb).sum(axis=2) / 765.0

        heatmap = np.zeros((height, width, 4), dtype=np.uint8)
        heatmap[:, :, 0] = HEATMAP_COLOR[0]
        heatmap[:, :, 1] = HEATMAP_COLOR[1]
        heatmap[:, :, 2] = HEATMAP_COLOR[2]
        alpha = np.floor(diff * 255 * HEATMAP_GAIN + 0.5)
        heatmap[:, :, 3] = np.minimum(alpha, 255).astype(np.uint8)

        average = float(diff.mean()) * 100.0
        logger.debug(f"Difference {width}x{height}: {average:.2f}%")
        return DifferenceResult(heatmap, average, width, height)


def _display_size(image: RasterImage, rect: Optional[Rect]) -> Tuple[float, float]:
    if rect is None:
        return float(image.width), float(image.height)
    return rect.width, rect.height


def _resize_rgb(image: RasterImage, width: int, height: int) -> np.ndarray:
    rgb = image.pixels[:, :, :3]
    if (image.width, image.height) != (width, height):
        rgb = cv2.resize(rgb, (width, height), interpolation=cv2.INTER_AREA)
    return rgb.astype(np.int16)
