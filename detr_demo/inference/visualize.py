"""
Standalone visualization helper for object detection.

Usage:
    python -m detr_demo.inference.visualize \
        --input assets/street.jpg \
        --output assets/sample_outputs/street_annotated.png \
        --threshold 0.3
"""

import argparse
import sys
from pathlib import Path

from detr_demo.config import load_config
from detr_demo.inference.inference_image import (
    InferenceError,
    ModelInitializationError,
    run_image_inference,
)
from detr_demo.logs import setup_logging


def main(argv=None):
    parser = argparse.ArgumentParser(description="Object Detection - Visualize Single Image")
    parser.add_argument("--input", type=str, required=True, help="Path to input image")
    parser.add_argument("--output", type=str, required=True, help="Path to output annotated image")
    parser.add_argument("--threshold", type=float, default=None, help="Confidence threshold (default: from config, 0.3)")
    parser.add_argument("--config", type=str, default=None, help="Path to configuration YAML")
    args = parser.parse_args(argv)

    if not Path(args.input).exists():
        print(f"[ERROR] Input file not found: {args.input}")
        sys.exit(1)

    cfg = load_config(args.config)
    setup_logging(cfg.log_level)

    try:
        detections = run_image_inference(args.input, args.output, args.threshold, cfg)
    except (ModelInitializationError, InferenceError) as e:
        print(f"[ERROR] {e}")
        sys.exit(2)

    print(f"[RESULT] {len(detections)} objects detected")
    for i, det in enumerate(detections):
        box = det.box
        print(f"  [{i+1}] {det.caption} bbox=({box.xmin:g},{box.ymin:g})-({box.xmax:g},{box.ymax:g})")


if __name__ == "__main__":
    main()
