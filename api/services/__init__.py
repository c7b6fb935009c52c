"""
Services layer for SketchMatch.

This package provides the comparison session and landmark services.
"""

from typing import Optional

from config.models import get_settings
from .landmark_service import DetectorState, LandmarkDetector, LandmarkService, StaticLandmarkDetector
from .session_service import ComparisonSession, ImageRole, RenderPlan, SessionRegistry

_registry: Optional[SessionRegistry] = None


def get_registry() -> SessionRegistry:
    """Process-wide session registry (FastAPI dependency)."""
    global _registry
    if _registry is None:
        _registry = SessionRegistry(get_settings())
    return _registry


__all__ = [
    'ComparisonSession',
    'DetectorState',
    'ImageRole',
    'LandmarkDetector',
    'LandmarkService',
    'RenderPlan',
    'SessionRegistry',
    'StaticLandmarkDetector',
    'get_registry',
]
