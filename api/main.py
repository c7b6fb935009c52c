"""
SketchMatch API - Reference/drawing alignment and outline comparison

This FastAPI application provides endpoints for:
- Uploading a reference photo and an in-progress drawing
- Auto-aligning the drawing from landmarks, content or image bounds
- Generating outline masks and scoring their overlap
- Difference heatmaps and landmark proportion critique
"""

from fastapi import FastAPI, Depends

from config import get_config
from models import HealthResponse
from routers import sessions_router
from services import SessionRegistry, get_registry
from utils.logger import get_logger, setup_from_config

logger = get_logger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="SketchMatch API",
    description="Alignment, outline and difference analysis of drawings against reference photos",
    version="1.0.0"
)

app.include_router(sessions_router)


@app.on_event("startup")
async def startup_event():
    """
    Configure logging on startup.
    """
    setup_from_config(get_config())
    logger.info("SketchMatch API started")


@app.get("/api/health", response_model=HealthResponse)
async def health_check(registry: SessionRegistry = Depends(get_registry)):
    """
    Health check endpoint.

    Returns:
        Service status and number of active sessions
    """
    return HealthResponse(status="healthy", active_sessions=len(registry))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
