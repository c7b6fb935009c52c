"""
Binary mask cleanup.

Thresholding of edge fields, 3x3 morphology, speck and small-component
removal, and boundary extraction. Morphology treats everything outside
the image as background.
"""

import cv2
import numpy as np
from dataclasses import dataclass, replace
from scipy import ndimage

from utils.logger import get_logger
from .types import BinaryMask, EdgeField

logger = get_logger(__name__)

KERNEL_3X3 = np.ones((3, 3), dtype=np.uint8)
NEIGHBOR_KERNEL = np.array([[1, 1, 1], [1, 0, 1], [1, 1, 1]], dtype=np.float32)
EIGHT_CONNECTED = np.ones((3, 3), dtype=bool)

# Cleaning that keeps less than this share of the input triggers a relaxed retry
MIN_COVERAGE_RATIO = 0.3
# Refinement levels at or above this are taken as "the user asked for it"
AGGRESSIVE_REFINEMENT_LEVEL = 80


def threshold(field: EdgeField, cutoff: float = 0.22) -> BinaryMask:
    """
    Binarize an edge field with a normalized cutoff.

    Args:
        field: Edge field
        cutoff: Fraction of the observed maximum magnitude (0..1)

    Returns:
        Mask with pixels on where magnitude / max > cutoff
    """
    if field.is_empty:
        return BinaryMask.empty(field.width, field.height)
    normalized = field.magnitude / field.max_magnitude
    return BinaryMask.from_bool(normalized > cutoff)


def erode(mask: BinaryMask) -> BinaryMask:
    """A pixel survives only if it and all 8 neighbours are on."""
    if mask.width == 0 or mask.height == 0:
        return BinaryMask.empty(mask.width, mask.height)
    eroded = cv2.erode(mask.bits, KERNEL_3X3, borderType=cv2.BORDER_CONSTANT, borderValue=0)
    return BinaryMask(mask.width, mask.height, eroded)


def dilate(mask: BinaryMask) -> BinaryMask:
    """A pixel turns on if it or any of its 8 neighbours is on."""
    if mask.width == 0 or mask.height == 0:
        return BinaryMask.empty(mask.width, mask.height)
    dilated = cv2.dilate(mask.bits, KERNEL_3X3, borderType=cv2.BORDER_CONSTANT, borderValue=0)
    return BinaryMask(mask.width, mask.height, dilated)


def open_mask(mask: BinaryMask) -> BinaryMask:
    """Erode then dilate: removes specks smaller than the 3x3 element."""
    return dilate(erode(mask))


def close_mask(mask: BinaryMask) -> BinaryMask:
    """Dilate then erode: fills one-pixel gaps."""
    return erode(dilate(mask))


def count_neighbors(mask: BinaryMask) -> np.ndarray:
    """Number of on 8-neighbours for every pixel (off-image counts as off)."""
    on = mask.to_bool().astype(np.float32)
    counts = cv2.filter2D(on, -1, NEIGHBOR_KERNEL, borderType=cv2.BORDER_CONSTANT)
    return np.rint(counts).astype(np.int32)


def remove_isolated_pixels(mask: BinaryMask, min_neighbors: int) -> BinaryMask:
    """Drop on pixels with fewer than min_neighbors on neighbours."""
    if min_neighbors <= 0 or mask.is_empty:
        return BinaryMask(mask.width, mask.height, mask.bits.copy())
    keep = mask.to_bool() & (count_neighbors(mask) >= min_neighbors)
    return BinaryMask.from_bool(keep)


def remove_small_components(mask: BinaryMask, min_pixels: int) -> BinaryMask:
    """
    Drop 8-connected components smaller than min_pixels.

    Args:
        mask: Input mask
        min_pixels: Minimum component size to keep

    Returns:
        Filtered mask
    """
    if min_pixels <= 1 or mask.is_empty:
        return BinaryMask(mask.width, mask.height, mask.bits.copy())
    labels, count = ndimage.label(mask.to_bool(), structure=EIGHT_CONNECTED)
    if count == 0:
        return BinaryMask.empty(mask.width, mask.height)
    sizes = np.bincount(labels.ravel())
    keep_label = sizes >= min_pixels
    keep_label[0] = False
    return BinaryMask.from_bool(keep_label[labels])


def extract_boundary(mask: BinaryMask, border_is_background: bool = True) -> BinaryMask:
    """
    Reduce a filled mask to its one-pixel outline.

    A pixel is boundary when it is on and at least one 8-neighbour is off.

    Args:
        mask: Filled mask
        border_is_background: Treat off-image neighbours as background. When
            False the border replicates, so uniform masks have no boundary.

    Returns:
        Boundary mask of the same size
    """
    if mask.is_empty:
        return BinaryMask.empty(mask.width, mask.height)
    if border_is_background:
        eroded = cv2.erode(mask.bits, KERNEL_3X3, borderType=cv2.BORDER_CONSTANT, borderValue=0)
    else:
        eroded = cv2.erode(mask.bits, KERNEL_3X3, borderType=cv2.BORDER_REPLICATE)
    return BinaryMask.from_bool(mask.to_bool() & (eroded == 0))


@dataclass(frozen=True)
class CleaningOptions:
    """Resolved thresholds for one cleaning pass."""

    min_neighbors: int = 2
    min_component_pixels: int = 45
    open: bool = True
    close: bool = False


def options_for_refinement(
    refinement_level: int,
    min_component_pixels: int = 45,
    close_gaps: bool = False
) -> CleaningOptions:
    """
    Map the 0..100 refinement slider onto cleaning thresholds.

    Higher levels demand more neighbour support and drop larger components.
    """
    level = min(max(int(refinement_level), 0), 100)
    return CleaningOptions(
        min_neighbors=1 + int(round(3 * level / 100)),
        min_component_pixels=int(round(min_component_pixels * (1 + level / 100))),
        open=True,
        close=close_gaps
    )


class MaskCleaner:
    """
    Removes speckle noise from thresholded edge masks.

    Cleaning runs a neighbour-support filter, a morphological open, an
    optional close and a small-component filter. Component sizes are scaled
    by the square of the working-resolution scale so results do not depend
    on the source resolution.
    """

    def __init__(
        self,
        refinement_level: int = 35,
        min_component_pixels: int = 45,
        close_gaps: bool = False
    ):
        self.refinement_level = min(max(int(refinement_level), 0), 100)
        self.options = options_for_refinement(self.refinement_level, min_component_pixels, close_gaps)

    def clean(self, mask: BinaryMask, scale: float = 1.0) -> BinaryMask:
        """
        Clean a mask, retrying once with relaxed thresholds on over-erosion.

        Args:
            mask: Thresholded mask
            scale: Working resolution / source resolution

        Returns:
            Cleaned mask (possibly sparse, never an error)
        """
        before = mask.count()
        if before == 0:
            return BinaryMask.empty(mask.width, mask.height)

        cleaned = self._clean_once(mask, self.options, scale)
        after = cleaned.count()

        if after < MIN_COVERAGE_RATIO * before and self.refinement_level < AGGRESSIVE_REFINEMENT_LEVEL:
            relaxed = replace(
                self.options,
                min_neighbors=self.options.min_neighbors // 2,
                min_component_pixels=self.options.min_component_pixels // 2
            )
            logger.info(
                f"Cleaning kept {after}/{before} pixels, retrying with "
                f"min_neighbors={relaxed.min_neighbors} "
                f"min_component_pixels={relaxed.min_component_pixels}"
            )
            cleaned = self._clean_once(mask, relaxed, scale)

        return cleaned

    def _clean_once(self, mask: BinaryMask, options: CleaningOptions, scale: float) -> BinaryMask:
        result = remove_isolated_pixels(mask, options.min_neighbors)
        if options.open:
            result = open_mask(result)
        if options.close:
            result = close_mask(result)
        min_pixels = max(1, int(round(options.min_component_pixels * scale * scale)))
        return remove_small_components(result, min_pixels)
