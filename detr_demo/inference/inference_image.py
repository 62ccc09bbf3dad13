"""
Image inference pipeline for the object detection demo.

Uses:
- PIL.Image.open() with RGB conversion to decode inputs
- DETR ResNet-50 through the transformers object-detection pipeline
- OpenCV (via RenderSurface) for annotation drawing

The pipeline is built once per process through a SharedHandle and reused
for every image. Inference is blocking torch work, so it runs on a worker
thread while the event loop stays free.

Command-line use goes through detr_demo.inference.visualize.
"""

import asyncio
import functools
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

import cv2
from PIL import Image
from pydantic import ValidationError

from detr_demo.api.schemas import Box, Detection
from detr_demo.config import DemoConfig, load_config
from detr_demo.inference.provider import SharedHandle, load_detector
from detr_demo.inference.render import RenderSurface

logger = logging.getLogger(__name__)


class ModelInitializationError(RuntimeError):
    """The inference provider could not be constructed."""


class InferenceError(RuntimeError):
    """The provider failed (or returned malformed output) for one image."""


def to_detections(raw_output: Iterable[dict]) -> list[Detection]:
    """
    Map raw pipeline output to Detection objects, one-to-one and in order.

    Each raw item looks like
    ``{"score": 0.91, "label": "person", "box": {"xmin": 10, "ymin": 20, "xmax": 200, "ymax": 400}}``.
    """
    return [
        Detection(score=item["score"], label=item["label"], box=Box(**item["box"]))
        for item in raw_output
    ]


class DetectionOrchestrator:
    """
    Owns access to the shared inference handle and turns images into detections.

    Args:
        handle: Shared, load-once handle to the inference provider.
        threshold: Default confidence threshold for ``detect``.
    """

    def __init__(self, handle: SharedHandle, threshold: float = 0.3):
        self.handle = handle
        self.threshold = threshold

    @property
    def is_ready(self) -> bool:
        return self.handle.ready

    @property
    def is_loading(self) -> bool:
        return self.handle.loading

    @property
    def init_error(self) -> Optional[BaseException]:
        """Exception of the last failed model load, if it failed."""
        return self.handle.error

    def preload(self):
        """Start building the provider without waiting for it."""
        return self.handle.get()

    async def ensure_ready(self) -> Any:
        """Return the shared provider, building it on first use."""
        try:
            return await asyncio.wrap_future(self.handle.get())
        except Exception as e:
            logger.exception("Model initialization failed")
            raise ModelInitializationError(str(e) or type(e).__name__) from e

    async def detect(self, image: Any, threshold: Optional[float] = None) -> list[Detection]:
        """
        Run detection on one image.

        Args:
            image: Image reference accepted by the provider (PIL image, path or URL).
            threshold: Confidence threshold; defaults to the orchestrator's.

        Returns:
            Detections in provider order.

        Raises:
            ModelInitializationError: If the provider could not be built.
            InferenceError: If the provider raised or returned malformed output.
        """
        detector = await self.ensure_ready()
        if threshold is None:
            threshold = self.threshold

        try:
            raw_output = await asyncio.to_thread(detector, image, threshold=threshold)
        except Exception as e:
            logger.error("Inference failed: %s", e)
            raise InferenceError(str(e) or "inference failed") from e

        try:
            detections = to_detections(raw_output)
        except (KeyError, TypeError, ValidationError) as e:
            logger.error("Malformed provider output: %s", e)
            raise InferenceError(f"malformed detector output: {e}") from e

        logger.debug("%d detections above %.2f", len(detections), threshold)
        return detections


def build_orchestrator(cfg: DemoConfig, handle: Optional[SharedHandle] = None) -> DetectionOrchestrator:
    """Wire a DetectionOrchestrator for ``cfg``; ``handle`` overrides the provider."""
    handle = handle or SharedHandle(functools.partial(load_detector, cfg))
    return DetectionOrchestrator(handle, threshold=cfg.threshold)


def run_image_inference(
    input_path: str,
    output_path: str,
    threshold: Optional[float] = None,
    cfg: Optional[DemoConfig] = None,
    orchestrator: Optional[DetectionOrchestrator] = None,
):
    """
    Full image inference pipeline.

    1. Load image with PIL
    2. Run DETR detection
    3. Annotate and save output

    Args:
        input_path: Path to input image
        output_path: Path to save annotated output
        threshold: Confidence threshold (defaults to the configured one)
        cfg: Demo configuration
        orchestrator: Pre-built orchestrator, mainly for tests

    Returns:
        list[Detection]
    """
    cfg = cfg or load_config()
    orchestrator = orchestrator or build_orchestrator(cfg)

    with Image.open(input_path) as img:
        image = img.convert("RGB")

    detections = asyncio.run(orchestrator.detect(image, threshold))
    annotated = RenderSurface().render(image, detections)

    output_dir = Path(output_path).parent
    output_dir.mkdir(parents=True, exist_ok=True)
    cv2.imwrite(str(output_path), annotated)

    print(f"[INFO] Detections: {len(detections)}")
    print(f"[INFO] Output saved to: {output_path}")

    return detections

