from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from .decode import LAYOUTS
from .errors import ConfigurationError


@dataclass(frozen=True)
class QuantYoloPostConfig:
    """
    Post-processing settings for a quantized three-scale YOLO export.

    Defaults match the RKNN YOLOv5 demo (BOX_THRESH 0.5, NMS_THRESH 0.6,
    64 results per frame, 80 COCO classes).
    """

    conf_threshold: float = 0.5
    nms_threshold: float = 0.6
    max_detections: int = 64
    num_classes: int = 80
    # False for exports that already apply the logistic inside the graph.
    apply_sigmoid: bool = True
    layout: str = "nhwc"
    # > 1 decodes the three scales on a thread pool.
    workers: int = 1

    def __post_init__(self) -> None:
        # Thresholds outside [0, 1] are allowed; they keep everything or nothing.
        for key in _FLOAT_KEYS:
            if not math.isfinite(getattr(self, key)):
                raise ConfigurationError(f"{key} must be a finite number")
        if self.max_detections < 0:
            raise ConfigurationError("max_detections must be >= 0")
        if self.num_classes < 1:
            raise ConfigurationError("num_classes must be >= 1")
        if self.layout not in LAYOUTS:
            raise ConfigurationError(f"layout must be one of {LAYOUTS}")
        if self.workers < 1:
            raise ConfigurationError("workers must be >= 1")


_FLOAT_KEYS = ("conf_threshold", "nms_threshold")
_INT_KEYS = ("max_detections", "num_classes", "workers")
_BOOL_KEYS = ("apply_sigmoid",)
_STR_KEYS = ("layout",)


def parse_post_config(payload: Dict[str, Any]) -> QuantYoloPostConfig:
    if not isinstance(payload, dict):
        raise ConfigurationError("Post-process config must be a JSON object")

    allowed = set(_FLOAT_KEYS + _INT_KEYS + _BOOL_KEYS + _STR_KEYS)
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ConfigurationError(f"Unknown post-process config keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    for key, value in payload.items():
        if key in _FLOAT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"{key} must be a number")
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{key} must be within [0, 1]")
            kwargs[key] = float(value)
        elif key in _INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{key} must be an integer")
            kwargs[key] = value
        elif key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ConfigurationError(f"{key} must be a boolean")
            kwargs[key] = value
        else:
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"{key} must be a non-empty string")
            kwargs[key] = value.strip().lower()
    return QuantYoloPostConfig(**kwargs)


def load_post_config(path: Path) -> QuantYoloPostConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Post-process config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid post-process config JSON: {path}") from exc
    return parse_post_config(payload)
