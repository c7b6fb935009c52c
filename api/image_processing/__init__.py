"""
Image processing library for SketchMatch.

This package provides the outline pipeline (edges, cleanup, boundary),
drawing-to-reference alignment and the comparison scorers.
"""

from .alignment import AlignmentRequest, AlignmentResult, AlignmentStrategy, SimilarityAligner
from .comparator import DifferenceResult, DifferenceScorer, OutlineSimilarityScorer
from .edge_detection import EdgeDetector
from .mask_cleaning import MaskCleaner
from .outline import OutlineMaskGenerator, simplify_outline, simplify_polyline
from .types import (
    AlignmentScore,
    BinaryMask,
    CoordinateSpace,
    Dimensions,
    LandmarkPair,
    LandmarkSet,
    Point2D,
    RasterImage,
    Rect,
    SimilarityTransform,
    ViewMode,
)
from .utils import image_to_bytes, load_image_from_bytes, to_grayscale

__all__ = [
    'AlignmentRequest',
    'AlignmentResult',
    'AlignmentStrategy',
    'SimilarityAligner',
    'DifferenceResult',
    'DifferenceScorer',
    'OutlineSimilarityScorer',
    'EdgeDetector',
    'MaskCleaner',
    'OutlineMaskGenerator',
    'simplify_outline',
    'simplify_polyline',
    'AlignmentScore',
    'BinaryMask',
    'CoordinateSpace',
    'Dimensions',
    'LandmarkPair',
    'LandmarkSet',
    'Point2D',
    'RasterImage',
    'Rect',
    'SimilarityTransform',
    'ViewMode',
    'image_to_bytes',
    'load_image_from_bytes',
    'to_grayscale',
]
