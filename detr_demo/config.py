"""
Configuration for the object detection demo.

Settings are read from a YAML file (path given explicitly or through the
DETR_DEMO_CONFIG environment variable). Every key is optional; missing keys
fall back to the defaults below.

Example config.yaml:

    model_checkpoint: facebook/detr-resnet-50
    threshold: 0.3
    num_threads: 1
    base_path: /object-detection
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

CONFIG_ENV_VAR = "DETR_DEMO_CONFIG"


@dataclass
class DemoConfig:
    """Typed view over the YAML configuration."""
    model_checkpoint: str = "facebook/detr-resnet-50"
    task: str = "object-detection"
    threshold: float = 0.3
    allow_local_models: bool = False
    num_threads: int = 1
    device: str = "auto"
    base_path: str = "/object-detection"
    log_level: str = "INFO"
    max_sessions: int = 256

    def __post_init__(self):
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {self.threshold}")
        if self.num_threads < 1:
            raise ValueError(f"num_threads must be >= 1, got {self.num_threads}")
        if self.max_sessions < 1:
            raise ValueError(f"max_sessions must be >= 1, got {self.max_sessions}")
        # "/object-detection/" and "object-detection" both mean "/object-detection"
        base = self.base_path.strip("/")
        self.base_path = f"/{base}" if base else ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DemoConfig":
        return cls(
            model_checkpoint=d.get("model_checkpoint", "facebook/detr-resnet-50"),
            task=d.get("task", "object-detection"),
            threshold=float(d.get("threshold", 0.3)),
            allow_local_models=bool(d.get("allow_local_models", False)),
            num_threads=int(d.get("num_threads", 1)),
            device=str(d.get("device", "auto")),
            base_path=d.get("base_path", "/object-detection") or "",
            log_level=str(d.get("log_level", "INFO")).upper(),
            max_sessions=int(d.get("max_sessions", 256)),
        )


def load_config(config_path: Optional[str] = None) -> DemoConfig:
    """Load the demo configuration.

    Args:
        config_path: Path to a YAML file. When omitted, the path in
            ``DETR_DEMO_CONFIG`` is used; when that is unset too, the
            built-in defaults are returned.

    Returns:
        A validated ``DemoConfig``.

    Raises:
        FileNotFoundError: If an explicitly requested file does not exist.
        ValueError: If a value is out of range.
    """
    config_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if not config_path:
        return DemoConfig()
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file '{config_path}' not found")
    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}
    return DemoConfig.from_dict(data)
