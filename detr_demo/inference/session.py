"""
Upload/display session for the demo page.

A session holds the UI state of one viewer: the chosen image, the current
detections, the last rendered overlay and a phase that is always exactly one
of ModelLoading, Idle, Detecting or ErrorShown.

Overlapping selections resolve latest-wins. Every selection bumps a
generation counter; a detection that settles after a newer selection is
dropped instead of overwriting the newer image's state. The superseded call
itself is not cancelled.
"""

from __future__ import annotations

import io
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Literal, Optional, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from detr_demo.api.schemas import Detection
from detr_demo.inference.inference_image import (
    DetectionOrchestrator,
    InferenceError,
    ModelInitializationError,
)
from detr_demo.inference.render import RenderSurface

logger = logging.getLogger(__name__)


class InvalidImageError(ValueError):
    """The selected file could not be decoded as an image."""


@dataclass(frozen=True)
class ModelLoading:
    name = "model-loading"


@dataclass(frozen=True)
class Idle:
    name = "idle"


@dataclass(frozen=True)
class Detecting:
    generation: int
    name = "detecting"


@dataclass(frozen=True)
class ErrorShown:
    message: str
    stage: Literal["initialization", "inference", "decode"]
    name = "error"


Phase = Union[ModelLoading, Idle, Detecting, ErrorShown]


def decode_image(data: bytes) -> Image.Image:
    """Decode uploaded bytes into an RGB PIL image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImageError(f"cannot decode image: {e}") from e


class DetectionSession:
    """
    Drives select -> detect -> render for one viewer.

    Args:
        orchestrator: Shared detection orchestrator.
        surface: Drawable surface; without one, rendering is skipped.
        threshold: Confidence threshold passed to every detection.
    """

    def __init__(
        self,
        orchestrator: DetectionOrchestrator,
        surface: Optional[RenderSurface] = None,
        threshold: Optional[float] = None,
    ):
        self.orchestrator = orchestrator
        self.surface = surface
        self.threshold = threshold
        self.phase: Phase = Idle() if orchestrator.is_ready else ModelLoading()
        self.image: Optional[Image.Image] = None
        self.detections: Optional[list[Detection]] = None
        self.overlay: Optional[np.ndarray] = None
        self._generation = 0

    @property
    def model_ready(self) -> bool:
        return self.orchestrator.is_ready

    @property
    def generation(self) -> int:
        return self._generation

    def refresh(self) -> Phase:
        """Leave ModelLoading once the shared model load has settled."""
        if isinstance(self.phase, ModelLoading):
            error = self.orchestrator.init_error
            if self.orchestrator.is_ready:
                self.phase = Idle()
            elif error is not None:
                self.phase = ErrorShown(str(error) or type(error).__name__, "initialization")
        return self.phase

    def select_image(self, data: bytes) -> int:
        """
        Accept a newly chosen file.

        Previous detections and overlay are cleared before anything else so a
        stale overlay never shows against the new image.

        Returns:
            Generation number identifying this selection.

        Raises:
            InvalidImageError: If ``data`` is not a decodable image.
        """
        self._generation += 1
        self.detections = None
        self.overlay = None
        self.image = None

        try:
            self.image = decode_image(data)
        except InvalidImageError as e:
            self.phase = ErrorShown(str(e), "decode")
            raise
        return self._generation

    async def on_image_loaded(self, generation: int) -> Optional[list[Detection]]:
        """
        Detect and render the image of selection ``generation``.

        Returns:
            The detections, or None when a newer selection superseded this one.

        Raises:
            ModelInitializationError: If the model could not be built.
            InferenceError: If inference failed for this image.
        """
        if generation != self._generation or self.image is None:
            return None

        image = self.image
        self.phase = Detecting(generation)
        try:
            detections = await self.orchestrator.detect(image, self.threshold)
        except ModelInitializationError as e:
            if generation == self._generation:
                self.phase = ErrorShown(str(e), "initialization")
            raise
        except InferenceError as e:
            if generation == self._generation:
                self.phase = ErrorShown(str(e), "inference")
            raise

        if generation != self._generation:
            logger.info("Dropping detections for superseded image #%d", generation)
            return None

        self.detections = detections
        if self.surface is not None:
            self.overlay = self.surface.render(image, detections)
        self.phase = Idle()
        return detections

    async def submit(self, data: bytes) -> Optional[list[Detection]]:
        """Select ``data`` and run detection on it."""
        return await self.on_image_loaded(self.select_image(data))


class SessionRegistry:
    """
    Per-viewer sessions over one shared orchestrator.

    Viewers are identified by an opaque id (the session cookie). The least
    recently used session is evicted once ``max_sessions`` is exceeded.
    """

    def __init__(self, orchestrator: DetectionOrchestrator, threshold: Optional[float] = None, max_sessions: int = 256):
        self.orchestrator = orchestrator
        self.threshold = threshold
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, DetectionSession] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: Optional[str]) -> tuple[str, DetectionSession]:
        """Return ``(id, session)``, creating a session for unknown ids."""
        if session_id and session_id in self._sessions:
            self._sessions.move_to_end(session_id)
            return session_id, self._sessions[session_id]

        session_id = uuid.uuid4().hex
        session = DetectionSession(self.orchestrator, surface=RenderSurface(), threshold=self.threshold)
        self._sessions[session_id] = session
        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.debug("Evicted session %s", evicted)
        return session_id, session
