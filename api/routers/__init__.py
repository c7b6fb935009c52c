"""
SketchMatch API Routers

This package contains the FastAPI routers:
- sessions: Comparison session endpoints (images, alignment, outlines, scores)
"""

from .sessions import router as sessions_router

__all__ = [
    "sessions_router"
]
