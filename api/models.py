"""
Pydantic models for request/response validation.

These models define the API contracts for SketchMatch endpoints.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Literal, Optional, Tuple

from image_processing.types import ViewMode


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    active_sessions: int


class TransformResponse(BaseModel):
    scale: float
    offset_x: float
    offset_y: float


class ScoreResponse(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0)
    aligned: bool


class SessionResponse(BaseModel):
    """Snapshot of a comparison session."""

    id: str
    has_reference: bool
    has_drawing: bool
    view_mode: ViewMode
    assist_enabled: bool
    show_base_unit_drawing: bool
    has_base_unit_anchor: bool = False
    transform: TransformResponse
    landmarks: Dict[str, bool]
    score: ScoreResponse


class ImageUploadResponse(BaseModel):
    role: Literal["reference", "drawing"]
    width: int
    height: int


class LandmarkRequest(BaseModel):
    """Landmarks detected on the client, normalized to 0..1."""

    kind: Literal["face", "pose"]
    role: Literal["reference", "drawing"]
    points: List[Tuple[float, float]] = Field(..., description="Normalized (x, y) pairs")

    @field_validator('points')
    @classmethod
    def validate_points(cls, v):
        for x, y in v:
            if not (-0.5 <= x <= 1.5 and -0.5 <= y <= 1.5):
                raise ValueError('landmark coordinates must be normalized to the image size')
        return v


class AlignRequest(BaseModel):
    prefer_landmarks: Optional[bool] = None


class AlignResponse(BaseModel):
    method: str
    success: bool
    scale: float
    offset_x: float
    offset_y: float


class NudgeRequest(BaseModel):
    dx: float = 0.0
    dy: float = 0.0


class ScaleRequest(BaseModel):
    factor: float = Field(..., gt=0, description="Scale multiplier")
    origin_x: Optional[float] = None
    origin_y: Optional[float] = None


class ViewModeRequest(BaseModel):
    mode: ViewMode


class BaseUnitAnchorRequest(BaseModel):
    """Anchor picked on each image, in canvas coordinates of the current layout."""

    reference: Tuple[float, float]
    drawing: Tuple[float, float]


class BaseUnitAnchorResponse(BaseModel):
    reference: Optional[List[float]] = None
    drawing: Optional[List[float]] = None


class AssistRequest(BaseModel):
    enabled: bool
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    show_base_unit_drawing: Optional[bool] = None


class DifferenceResponse(BaseModel):
    average_difference_percent: float
    width: int
    height: int


class SegmentResponse(BaseModel):
    a: int
    b: int
    reference_length: float
    drawing_length: float
    ratio: Optional[float] = None
    diff_percent: Optional[float] = None
    rating: Optional[str] = None
    tilt_degrees: Optional[float] = None


class CritiqueResponse(BaseModel):
    kind: str
    segments: List[SegmentResponse]
    average_error_percent: Optional[float] = None
    worst_segment: Optional[SegmentResponse] = None
    centroid_offset: Optional[List[float]] = None
    anchor_scale_ratio: Optional[float] = None


class RenderLayerResponse(BaseModel):
    role: str
    kind: str
    rect: Dict[str, float]
    color: Optional[List[int]] = None


class RenderResponse(BaseModel):
    mode: ViewMode
    layers: List[RenderLayerResponse]
    score: Optional[ScoreResponse] = None
    anchor: Optional[Dict[str, List[float]]] = None
    key_points: List[List[float]] = []
