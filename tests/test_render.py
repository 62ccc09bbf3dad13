"""
Tests for RenderSurface drawing.
"""

import numpy as np
import pytest
from PIL import Image

from conftest import DOG, PERSON
from detr_demo.inference.inference_image import to_detections
from detr_demo.inference.render import BOX_COLOR, CHIP_HEIGHT, RenderSurface


def _pixel(canvas, x, y):
    return tuple(int(c) for c in canvas[y, x])


class TestRender:
    def test_example_person(self, gray_image):
        detections = to_detections([PERSON])
        assert detections[0].caption == "person 91.0%"

        surface = RenderSurface()
        canvas = surface.render(gray_image, detections)

        assert canvas.shape == (600, 800, 3)
        assert surface.canvas.shape == (600, 800, 3)
        # border on the left edge
        assert _pixel(canvas, 10, 200) == BOX_COLOR
        # label chip above the box (ymin 20 -> chip rows 0..19)
        assert _pixel(canvas, 11, 5) == BOX_COLOR
        # translucent interior
        assert np.allclose(canvas[200, 100], (99, 115, 90), atol=1)
        # untouched background
        assert _pixel(canvas, 700, 550) == (100, 100, 100)

    def test_deterministic(self, gray_image):
        detections = to_detections([PERSON, DOG])
        surface = RenderSurface()
        first = surface.render(gray_image, detections)
        second = surface.render(gray_image, detections)
        third = RenderSurface().render(gray_image, detections)
        assert np.array_equal(first, second)
        assert np.array_equal(first, third)

    def test_no_detections_is_plain_image(self, gray_image):
        canvas = RenderSurface().render(gray_image, [])
        assert (canvas == 100).all()

    def test_surface_resizes_to_each_image(self, gray_image):
        surface = RenderSurface()
        surface.render(gray_image, [])
        surface.render(Image.new("RGB", (320, 240)), [])
        assert surface.canvas.shape == (240, 320, 3)

    def test_rgb_becomes_bgr(self):
        red = Image.new("RGB", (10, 10), (255, 0, 0))
        canvas = RenderSurface().render(red, [])
        assert _pixel(canvas, 5, 5) == (0, 0, 255)

    @pytest.mark.parametrize("ymin", [0, 5])
    def test_chip_clamped_to_top(self, gray_image, ymin):
        raw = {"score": 0.5, "label": "kite", "box": {"xmin": 50, "ymin": ymin, "xmax": 150, "ymax": 100}}
        canvas = RenderSurface().render(gray_image, to_detections([raw]))
        assert _pixel(canvas, 51, 0) == BOX_COLOR
        assert _pixel(canvas, 51, CHIP_HEIGHT - 1) == BOX_COLOR

    def test_chip_sits_above_box(self, gray_image):
        raw = {"score": 0.5, "label": "kite", "box": {"xmin": 50, "ymin": 100, "xmax": 150, "ymax": 200}}
        canvas = RenderSurface().render(gray_image, to_detections([raw]))
        assert _pixel(canvas, 51, 100 - CHIP_HEIGHT) == BOX_COLOR
        assert _pixel(canvas, 51, 100 - CHIP_HEIGHT - 1) == (100, 100, 100)


class TestArrayInputs:
    def test_grayscale_array(self):
        gray = np.full((40, 60), 80, dtype=np.uint8)
        canvas = RenderSurface().render(gray, [])
        assert canvas.shape == (40, 60, 3)
        assert _pixel(canvas, 5, 5) == (80, 80, 80)

    def test_rgba_array(self):
        rgba = np.zeros((40, 60, 4), dtype=np.uint8)
        rgba[..., 0] = 255
        rgba[..., 3] = 128
        canvas = RenderSurface().render(rgba, [])
        assert canvas.shape == (40, 60, 3)
        assert _pixel(canvas, 5, 5) == (0, 0, 255)

    def test_zero_width_box_draws_line_and_chip(self, gray_image):
        thin = {"score": 0.42, "label": "pole", "box": {"xmin": 40, "ymin": 50, "xmax": 40, "ymax": 300}}
        canvas = RenderSurface().render(gray_image, to_detections([thin]))
        assert _pixel(canvas, 40, 200) == BOX_COLOR
        assert _pixel(canvas, 41, 50 - CHIP_HEIGHT) == BOX_COLOR
