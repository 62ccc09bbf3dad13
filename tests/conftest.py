"""
Pytest configuration and shared fixtures.
"""

import io
import threading

import pytest
from PIL import Image

from detr_demo.config import DemoConfig
from detr_demo.inference.inference_image import DetectionOrchestrator
from detr_demo.inference.provider import SharedHandle


PERSON = {"score": 0.91, "label": "person", "box": {"xmin": 10, "ymin": 20, "xmax": 200, "ymax": 400}}
DOG = {"score": 0.5, "label": "dog", "box": {"xmin": 300, "ymin": 250, "xmax": 520, "ymax": 480}}


class FakeDetector:
    """Deterministic stand-in for the transformers pipeline."""

    def __init__(self, outputs=None, error=None):
        self.outputs = [PERSON, DOG] if outputs is None else outputs
        self.error = error
        self.calls = []

    def __call__(self, image, threshold=0.3):
        self.calls.append((image, threshold))
        if self.error is not None:
            raise self.error
        return [dict(item) for item in self.outputs]


class GatedDetector(FakeDetector):
    """Blocks its first call until ``release`` is set."""

    def __init__(self, outputs=None):
        super().__init__(outputs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, image, threshold=0.3):
        if not self.calls:
            self.calls.append((image, threshold))
            self.entered.set()
            self.release.wait(5)
            return [dict(item) for item in self.outputs]
        return super().__call__(image, threshold)


def make_png(width=800, height=600, color=(100, 100, 100)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def detector():
    return FakeDetector()


@pytest.fixture
def handle(detector):
    return SharedHandle(lambda: detector)


@pytest.fixture
def orchestrator(handle):
    return DetectionOrchestrator(handle, threshold=0.3)


@pytest.fixture
def config():
    return DemoConfig()


@pytest.fixture
def gray_image():
    return Image.new("RGB", (800, 600), (100, 100, 100))


@pytest.fixture
def png_bytes():
    return make_png()
