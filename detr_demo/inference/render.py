"""
Detection overlay drawing.

The surface is a BGR numpy raster (OpenCV convention). Each render resizes
it to the source image, paints the image, then draws every detection as a
translucent green box with a label chip above it.
"""

from typing import Iterable, Optional, Union

import cv2
import numpy as np
from PIL import Image

from detr_demo.api.schemas import Detection

# #22c55e and #0a0a0a in BGR
BOX_COLOR = (94, 197, 34)
TEXT_COLOR = (10, 10, 10)
FILL_ALPHA = 0.15
BORDER_THICKNESS = 2

CHIP_HEIGHT = 20
CHIP_PADDING = 4
FONT = cv2.FONT_HERSHEY_SIMPLEX
FONT_SCALE = 0.5


def _to_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    channels = image.shape[2]
    if channels == 1:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2BGR)
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
    raise ValueError(f"unsupported image with {channels} channels")


class RenderSurface:
    """Drawable raster that mirrors the last rendered image."""

    def __init__(self):
        self.canvas: Optional[np.ndarray] = None

    def render(self, image: Union[Image.Image, np.ndarray], detections: Iterable[Detection]) -> np.ndarray:
        """
        Draw ``image`` and its detections onto the surface.

        Args:
            image: PIL image, or numpy array (grayscale, RGB or RGBA)
            detections: Detections in source-image pixel coordinates

        Returns:
            Copy of the annotated canvas in BGR format
        """
        if isinstance(image, Image.Image):
            image = np.asarray(image.convert("RGB"))
        bgr = _to_bgr(np.ascontiguousarray(image))
        height, width = bgr.shape[:2]

        if self.canvas is None or self.canvas.shape[:2] != (height, width):
            self.canvas = np.zeros((height, width, 3), dtype=np.uint8)

        self.canvas[:] = bgr

        for det in detections:
            self._draw_detection(det)

        return self.canvas.copy()

    def _draw_detection(self, det: Detection) -> None:
        canvas = self.canvas
        box = det.box
        x1, y1, x2, y2 = (int(round(v)) for v in (box.xmin, box.ymin, box.xmax, box.ymax))

        # Translucent fill
        roi = canvas[max(y1, 0):max(y2, 0), max(x1, 0):max(x2, 0)]
        if roi.size:
            fill = np.empty_like(roi)
            fill[:] = BOX_COLOR
            roi[:] = cv2.addWeighted(roi, 1.0 - FILL_ALPHA, fill, FILL_ALPHA, 0)

        cv2.rectangle(canvas, (x1, y1), (x2, y2), BOX_COLOR, BORDER_THICKNESS)

        # Label chip, never above the top edge
        caption = det.caption
        (text_w, _), _ = cv2.getTextSize(caption, FONT, FONT_SCALE, 1)
        chip_w = text_w + 2 * CHIP_PADDING
        chip_top = max(0, y1 - CHIP_HEIGHT)
        cv2.rectangle(
            canvas,
            (x1, chip_top),
            (x1 + chip_w - 1, chip_top + CHIP_HEIGHT - 1),
            BOX_COLOR,
            cv2.FILLED,
        )
        cv2.putText(
            canvas, caption, (x1 + CHIP_PADDING, max(14, y1 - 6)),
            FONT, FONT_SCALE, TEXT_COLOR, 1, cv2.LINE_AA,
        )
