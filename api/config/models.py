"""
Pydantic Models for the SketchMatch engine configuration

Provides typed, range-checked access to the YAML configuration.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any, Dict, Optional

from .config_loader import get_config


class OutlineSettings(BaseModel):
    """Outline pipeline options."""

    blur_radius: float = Field(1.0, ge=0, le=10, description="Box blur radius before Sobel")
    max_side: int = Field(640, ge=16, le=4096, description="Working resolution cap")
    threshold: float = Field(0.22, ge=0, le=1, description="Normalized edge cutoff")
    min_component_pixels: int = Field(45, ge=0, description="Component size floor at full resolution")
    refinement_level: int = Field(35, ge=0, le=100, description="Cleanup aggressiveness")
    close_gaps: bool = Field(False, description="Morphological close after the open")
    simplify_epsilon: float = Field(2.5, gt=0, description="RDP tolerance in pixels")


class AlignmentSettings(BaseModel):
    """Auto-alignment options."""

    max_landmark_pairs: int = Field(200, ge=1, le=10000)
    content_scan_max_side: int = Field(320, ge=16, le=4096)
    full_frame_ratio: float = Field(0.9, gt=0, le=1)
    prefer_landmarks: bool = True


class ScoringSettings(BaseModel):
    """Outline similarity scoring options."""

    alignment_threshold: float = Field(0.78, ge=0, le=1)
    debounce_ms: float = Field(100, ge=0)
    max_side: int = Field(512, ge=16, le=4096)


class CanvasSettings(BaseModel):
    """Shared canvas the two images are laid out on."""

    width: int = Field(1024, ge=1)
    height: int = Field(768, ge=1)
    posterize_levels: int = Field(4, ge=2, le=32)

    @field_validator('width', 'height')
    @classmethod
    def validate_reasonable(cls, v):
        if v > 16384:
            raise ValueError('canvas side must not exceed 16384 pixels')
        return v


class EngineSettings(BaseModel):
    """Complete engine configuration."""

    outline: OutlineSettings = Field(default_factory=OutlineSettings)
    alignment: AlignmentSettings = Field(default_factory=AlignmentSettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    canvas: CanvasSettings = Field(default_factory=CanvasSettings)

    @model_validator(mode='after')
    def validate_consistency(self):
        """The content scan must not run above the outline working resolution."""
        if self.alignment.content_scan_max_side > self.outline.max_side:
            raise ValueError('alignment.content_scan_max_side must not exceed outline.max_side')
        return self

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'EngineSettings':
        sections = {k: config[k] for k in ('outline', 'alignment', 'scoring', 'canvas') if k in config}
        return cls(**sections)


_settings: Optional[EngineSettings] = None


def get_settings(reload: bool = False) -> EngineSettings:
    """
    Validated engine settings built from the YAML configuration.

    Raises:
        ValidationError: If a configured value is out of range
    """
    global _settings
    if _settings is None or reload:
        _settings = EngineSettings.from_dict(get_config().as_dict())
    return _settings
