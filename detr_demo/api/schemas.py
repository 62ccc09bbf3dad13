"""Pydantic schemas for detections and API request/response contracts."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Box(BaseModel):
    model_config = ConfigDict(frozen=True)

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @model_validator(mode="after")
    def _check_corners(self):
        # Zero-width or zero-height boxes are valid: corners arrive rounded to pixels
        if self.xmin > self.xmax or self.ymin > self.ymax:
            raise ValueError(
                f"inverted box ({self.xmin}, {self.ymin})-({self.xmax}, {self.ymax})"
            )
        return self


class Detection(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0.0, le=1.0)
    label: str
    box: Box

    @property
    def caption(self) -> str:
        """Text shown on the label chip, e.g. ``person 91.0%``."""
        return f"{self.label} {self.score * 100:.1f}%"


class DetectionResponse(BaseModel):
    count: int
    width: int
    height: int
    detections: list[Detection]


class StatusResponse(BaseModel):
    phase: Literal["model-loading", "idle", "detecting", "error"]
    model_ready: bool
    error: Optional[str] = None
    detections: Optional[list[Detection]] = None


class HealthResponse(BaseModel):
    status: str = "ok"
