"""
Sessions Router - Comparison session endpoints for SketchMatch API

Contains endpoints for:
- Session lifecycle
- Reference/drawing upload and landmarks
- Alignment and transform manipulation
- View mode, base-unit anchor, outlines, scores and critique
"""

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
import io

from image_processing.outline import tint_outline
from image_processing.types import LandmarkSet
from image_processing.utils import image_to_bytes, load_image_from_bytes
from models import (
    AlignRequest,
    AlignResponse,
    AssistRequest,
    BaseUnitAnchorRequest,
    BaseUnitAnchorResponse,
    CritiqueResponse,
    DifferenceResponse,
    ImageUploadResponse,
    LandmarkRequest,
    NudgeRequest,
    RenderResponse,
    ScaleRequest,
    ScoreResponse,
    SessionResponse,
    TransformResponse,
    ViewModeRequest,
)
from services import ComparisonSession, ImageRole, SessionRegistry, get_registry
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _session(session_id: str, registry: SessionRegistry) -> ComparisonSession:
    try:
        return registry.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")


def _png(data: bytes) -> StreamingResponse:
    return StreamingResponse(io.BytesIO(data), media_type="image/png")


def _transform(session: ComparisonSession) -> TransformResponse:
    t = session.transform
    return TransformResponse(scale=t.scale, offset_x=t.offset_x, offset_y=t.offset_y)


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(registry: SessionRegistry = Depends(get_registry)):
    """Create an empty comparison session."""
    return registry.create().snapshot()


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    return _session(session_id, registry).snapshot()


@router.delete("/{session_id}")
async def delete_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    if not registry.delete(session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"success": True, "message": f"Session {session_id} deleted"}


@router.post("/{session_id}/images/{role}", response_model=ImageUploadResponse)
async def upload_image(
    session_id: str,
    role: ImageRole,
    file: UploadFile = File(...),
    registry: SessionRegistry = Depends(get_registry)
):
    """
    Upload the reference or the drawing.

    Replacing an image clears landmarks and cached outlines; a new drawing
    also resets the transform.
    """
    session = _session(session_id, registry)
    content = await file.read()
    try:
        image = load_image_from_bytes(content)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    session.set_image(role, image)
    return ImageUploadResponse(role=role.value, width=image.width, height=image.height)


@router.post("/{session_id}/landmarks", response_model=SessionResponse)
async def set_landmarks(
    session_id: str,
    request: LandmarkRequest,
    registry: SessionRegistry = Depends(get_registry)
):
    """Store landmarks detected on the client."""
    session = _session(session_id, registry)
    role = ImageRole(request.role)
    image = session.images[role]
    if image is None:
        raise HTTPException(status_code=400, detail=f"Upload the {role.value} image first")

    landmarks = LandmarkSet.from_normalized(request.points, image.width, image.height)
    session.set_landmarks(request.kind, role, landmarks)
    return session.snapshot()


@router.post("/{session_id}/landmarks/detect")
async def detect_landmarks(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Run server-side landmark detection when a detector is configured."""
    session = _session(session_id, registry)
    if session.landmark_service is None:
        raise HTTPException(status_code=501, detail="No landmark detector configured")
    applied = await session.update_landmarks()
    return {
        "applied": applied,
        "detector_state": session.landmark_service.state.value,
        "landmarks": session.snapshot()["landmarks"]
    }


@router.post("/{session_id}/align", response_model=AlignResponse)
async def auto_align(
    session_id: str,
    request: AlignRequest = AlignRequest(),
    registry: SessionRegistry = Depends(get_registry)
):
    session = _session(session_id, registry)
    if session.reference is None or session.drawing is None:
        raise HTTPException(status_code=400, detail="Both images are required for alignment")
    return session.auto_align(request.prefer_landmarks).to_dict()


@router.post("/{session_id}/transform/nudge", response_model=TransformResponse)
async def nudge(session_id: str, request: NudgeRequest, registry: SessionRegistry = Depends(get_registry)):
    session = _session(session_id, registry)
    session.nudge(request.dx, request.dy)
    return _transform(session)


@router.post("/{session_id}/transform/scale", response_model=TransformResponse)
async def scale(session_id: str, request: ScaleRequest, registry: SessionRegistry = Depends(get_registry)):
    session = _session(session_id, registry)
    origin = None
    if request.origin_x is not None and request.origin_y is not None:
        origin = (request.origin_x, request.origin_y)
    session.scale_about(request.factor, origin)
    return _transform(session)


@router.post("/{session_id}/transform/reset", response_model=TransformResponse)
async def reset_transform(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = _session(session_id, registry)
    session.reset_transform()
    return _transform(session)


@router.put("/{session_id}/view-mode", response_model=SessionResponse)
async def set_view_mode(session_id: str, request: ViewModeRequest, registry: SessionRegistry = Depends(get_registry)):
    session = _session(session_id, registry)
    session.set_view_mode(request.mode)
    return session.snapshot()


@router.put("/{session_id}/assist", response_model=SessionResponse)
async def set_assist(session_id: str, request: AssistRequest, registry: SessionRegistry = Depends(get_registry)):
    session = _session(session_id, registry)
    session.set_assist(request.enabled, request.threshold)
    if request.show_base_unit_drawing is not None:
        session.set_base_unit_drawing_visible(request.show_base_unit_drawing)
    return session.snapshot()


@router.put("/{session_id}/base-unit-anchor", response_model=BaseUnitAnchorResponse)
async def set_base_unit_anchor(
    session_id: str,
    request: BaseUnitAnchorRequest,
    registry: SessionRegistry = Depends(get_registry)
):
    """
    Pick the base-unit anchor on both images.

    Points are canvas coordinates under the current layout; the drawing
    anchor then follows later nudges and scales.
    """
    session = _session(session_id, registry)
    try:
        reference, drawing = session.set_base_unit_anchor(request.reference, request.drawing)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BaseUnitAnchorResponse(reference=list(reference.as_tuple()), drawing=list(drawing.as_tuple()))


@router.get("/{session_id}/base-unit-anchor", response_model=BaseUnitAnchorResponse)
async def get_base_unit_anchor(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Anchor pair on the canvas; both fields are null when none is set."""
    anchor = _session(session_id, registry).base_unit_anchor_on_canvas()
    if anchor is None:
        return BaseUnitAnchorResponse()
    return BaseUnitAnchorResponse(reference=list(anchor[0].as_tuple()), drawing=list(anchor[1].as_tuple()))


@router.delete("/{session_id}/base-unit-anchor", response_model=SessionResponse)
async def clear_base_unit_anchor(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = _session(session_id, registry)
    session.set_base_unit_anchor(None, None)
    return session.snapshot()


@router.get("/{session_id}/render", response_model=RenderResponse)
async def render(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Layers the client should draw for the current view mode."""
    return _session(session_id, registry).render().to_dict()


@router.get("/{session_id}/outline/{role}")
async def get_outline(
    session_id: str,
    role: ImageRole,
    simplified: bool = Query(False, description="Return the RDP-simplified outline"),
    registry: SessionRegistry = Depends(get_registry)
):
    """Outline of one image as a tinted RGBA PNG."""
    session = _session(session_id, registry)
    mask = session.simplified_outline(role) if simplified else session.outline(role)
    if mask is None:
        raise HTTPException(status_code=404, detail=f"No {role.value} image uploaded")
    return _png(image_to_bytes(tint_outline(mask, session.outline_color(role))))


@router.get("/{session_id}/posterize/{role}")
async def get_posterized(session_id: str, role: ImageRole, registry: SessionRegistry = Depends(get_registry)):
    session = _session(session_id, registry)
    posterized = session.posterize(role)
    if posterized is None:
        raise HTTPException(status_code=404, detail=f"No {role.value} image uploaded")
    return _png(image_to_bytes(posterized))


@router.get("/{session_id}/negative-space/{role}")
async def get_negative_space(session_id: str, role: ImageRole, registry: SessionRegistry = Depends(get_registry)):
    session = _session(session_id, registry)
    mask = session.negative_space(role)
    if mask is None:
        raise HTTPException(status_code=404, detail=f"No {role.value} image uploaded")
    return _png(image_to_bytes(mask))


@router.get("/{session_id}/score", response_model=ScoreResponse)
async def get_score(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Outline IoU of the current layout."""
    result = _session(session_id, registry).compute_score()
    return ScoreResponse(score=result.score, aligned=result.aligned)


@router.get("/{session_id}/difference", response_model=DifferenceResponse)
async def get_difference(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    result = _session(session_id, registry).analyze_difference()
    if result is None:
        raise HTTPException(status_code=400, detail="Both images are required for difference analysis")
    return result.to_dict()


@router.get("/{session_id}/difference/heatmap")
async def get_heatmap(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    result = _session(session_id, registry).analyze_difference()
    if result is None:
        raise HTTPException(status_code=400, detail="Both images are required for difference analysis")
    return _png(image_to_bytes(result.heatmap))


@router.get("/{session_id}/critique", response_model=CritiqueResponse)
async def get_critique(
    session_id: str,
    kind: str = Query("face", pattern="^(face|pose)$"),
    registry: SessionRegistry = Depends(get_registry)
):
    """Segment length critique of the aligned drawing against the reference."""
    session = _session(session_id, registry)
    critique = session.critique(kind)
    return CritiqueResponse(
        kind=kind,
        anchor_scale_ratio=session.anchor_scale_ratio(kind),
        **critique.to_dict()
    )
