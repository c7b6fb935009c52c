"""
Landmark service.

Wraps an injected landmark detector (face / pose) with explicit load
state and request supersession: every request takes a generation token,
and results of a request overtaken by a newer one are discarded.
"""

import asyncio
import hashlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from image_processing.types import LandmarkPair, LandmarkSet, Point2D, RasterImage
from utils.logger import get_logger

logger = get_logger(__name__)

# Landmark indices used for alignment keypoints and scale anchors
KEYPOINT_INDICES: Dict[str, List[int]] = {
    'face': [33, 263, 1, 13, 152],
    'pose': [11, 12, 23, 24, 0],
}
SCALE_ANCHOR_INDICES: Dict[str, List[int]] = {
    'face': [33, 263],
    'pose': [11, 12],
}
# Default segments for the proportion critique
CRITIQUE_SEGMENTS: Dict[str, List[Tuple[int, int]]] = {
    'face': [(33, 263), (1, 13), (13, 152), (33, 152), (263, 152)],
    'pose': [(11, 12), (11, 23), (12, 24), (23, 24), (0, 11), (0, 12)],
}


class DetectorState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class LandmarkDetector(Protocol):
    """Capability the landmark service consumes."""

    def load(self) -> None:
        ...

    def detect_face(self, image: RasterImage) -> Optional[LandmarkSet]:
        ...

    def detect_pose(self, image: RasterImage) -> Optional[LandmarkSet]:
        ...


def image_key(image: RasterImage) -> str:
    """Content hash of an image."""
    return hashlib.sha256(image.pixels.tobytes()).hexdigest()


class StaticLandmarkDetector:
    """
    Detector returning landmarks registered ahead of time per image content.

    Used where landmarks come from elsewhere (client-side detection,
    fixtures). latency simulates a slow model.
    """

    def __init__(self, latency: float = 0.0, fail_on_load: bool = False):
        self.latency = latency
        self.fail_on_load = fail_on_load
        self._face: Dict[str, LandmarkSet] = {}
        self._pose: Dict[str, LandmarkSet] = {}

    def register(
        self,
        image: RasterImage,
        face: Optional[LandmarkSet] = None,
        pose: Optional[LandmarkSet] = None
    ):
        key = image_key(image)
        if face is not None:
            self._face[key] = face
        if pose is not None:
            self._pose[key] = pose

    def load(self):
        if self.fail_on_load:
            raise RuntimeError("landmark model unavailable")

    def detect_face(self, image: RasterImage) -> Optional[LandmarkSet]:
        if self.latency:
            time.sleep(self.latency)
        return self._face.get(image_key(image))

    def detect_pose(self, image: RasterImage) -> Optional[LandmarkSet]:
        if self.latency:
            time.sleep(self.latency)
        return self._pose.get(image_key(image))


@dataclass
class LandmarkPairs:
    """Face and pose pairs of one detection request."""

    face: LandmarkPair = field(default_factory=LandmarkPair)
    pose: LandmarkPair = field(default_factory=LandmarkPair)

    def get(self, kind: str) -> LandmarkPair:
        if kind == 'face':
            return self.face
        if kind == 'pose':
            return self.pose
        raise ValueError(f"Unknown landmark kind: {kind}")


class LandmarkService:
    """
    Runs landmark detection off the event loop.

    The detector is loaded lazily on the first request. A failed load
    leaves the service in the FAILED state; the next request tries again.
    """

    def __init__(self, detector: LandmarkDetector):
        self.detector = detector
        self.state = DetectorState.UNLOADED
        self.last_error: Optional[str] = None
        self._generation = 0
        # Bound to the running loop on first load
        self._load_lock: Optional[asyncio.Lock] = None

    @property
    def generation(self) -> int:
        return self._generation

    def next_token(self) -> int:
        """Start a new request generation; older tokens become stale."""
        self._generation += 1
        return self._generation

    def is_current(self, token: int) -> bool:
        return token == self._generation

    async def ensure_ready(self) -> bool:
        """Load the detector once; returns whether it is usable."""
        if self.state == DetectorState.READY:
            return True
        if self._load_lock is None:
            self._load_lock = asyncio.Lock()
        async with self._load_lock:
            if self.state == DetectorState.READY:
                return True
            self.state = DetectorState.LOADING
            try:
                await asyncio.to_thread(self.detector.load)
            except Exception as e:
                self.state = DetectorState.FAILED
                self.last_error = str(e)
                logger.warning(f"Landmark detector failed to load: {e}")
                return False
            self.state = DetectorState.READY
            self.last_error = None
            logger.info("Landmark detector ready")
            return True

    async def request_pairs(
        self,
        reference: Optional[RasterImage],
        drawing: Optional[RasterImage],
        token: Optional[int] = None
    ) -> Optional[LandmarkPairs]:
        """
        Detect face and pose landmarks on both images.

        Args:
            reference: Reference image
            drawing: Drawing image
            token: Generation token from next_token(); a fresh one is taken
                when omitted

        Returns:
            LandmarkPairs, or None when the detector could not be loaded or
            a newer request superseded this one; callers keep their current
            landmarks on None
        """
        if token is None:
            token = self.next_token()

        if not await self.ensure_ready():
            return None

        face = LandmarkPair(
            await self._detect('face', reference),
            await self._detect('face', drawing)
        )
        pose = LandmarkPair(
            await self._detect('pose', reference),
            await self._detect('pose', drawing)
        )

        if not self.is_current(token):
            logger.debug(f"Discarding stale landmark result (token {token}, current {self._generation})")
            return None
        return LandmarkPairs(face, pose)

    async def _detect(self, kind: str, image: Optional[RasterImage]) -> Optional[LandmarkSet]:
        if image is None:
            return None
        method = self.detector.detect_face if kind == 'face' else self.detector.detect_pose
        try:
            return await asyncio.to_thread(method, image)
        except Exception as e:
            logger.warning(f"{kind} landmark detection failed: {e}")
            return None


def select_keypoints(landmarks: Optional[LandmarkSet], kind: str) -> List[Point2D]:
    """Alignment keypoints of a set, skipping indices the set does not have."""
    if landmarks is None or landmarks.is_empty:
        return []
    picked = [landmarks.get(i) for i in KEYPOINT_INDICES.get(kind, [])]
    return [p for p in picked if p is not None]


def scale_anchors(landmarks: Optional[LandmarkSet], kind: str) -> Optional[Tuple[Point2D, Point2D]]:
    """The two scale anchor points of a set, or None when either is missing."""
    indices: Sequence[int] = SCALE_ANCHOR_INDICES.get(kind, [])
    if landmarks is None or landmarks.is_empty or len(indices) < 2:
        return None
    first, second = landmarks.get(indices[0]), landmarks.get(indices[1])
    if first is None or second is None:
        return None
    return first, second
