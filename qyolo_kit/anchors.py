from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Sequence, Tuple

from .errors import ConfigurationError


Anchor = Tuple[float, float]


@dataclass(frozen=True)
class AnchorScale:
    """
    One detection scale: grid stride (pixels of resized input per cell) and
    its anchor boxes as (width, height) in resized-input pixels.
    """

    stride: int
    anchors: Tuple[Anchor, ...]

    def __post_init__(self) -> None:
        if self.stride <= 0:
            raise ConfigurationError(f"stride must be > 0, got {self.stride}")
        if not self.anchors:
            raise ConfigurationError("anchor scale must have at least one anchor")
        for w, h in self.anchors:
            if w <= 0 or h <= 0:
                raise ConfigurationError(f"anchor sizes must be > 0, got {(w, h)}")

    @property
    def num_anchors(self) -> int:
        return len(self.anchors)

    def grid_size(self, input_height: int, input_width: int) -> Tuple[int, int]:
        if input_height % self.stride or input_width % self.stride:
            raise ConfigurationError(
                f"Input size {input_width}x{input_height} is not a multiple of stride {self.stride}"
            )
        return input_height // self.stride, input_width // self.stride


# YOLOv5 COCO anchors, small -> large objects.
DEFAULT_ANCHORS: Tuple[AnchorScale, ...] = (
    AnchorScale(stride=8, anchors=((10, 13), (16, 30), (33, 23))),
    AnchorScale(stride=16, anchors=((30, 61), (62, 45), (59, 119))),
    AnchorScale(stride=32, anchors=((116, 90), (156, 198), (373, 326))),
)


def _parse_scale(item: Any, idx: int) -> AnchorScale:
    if not isinstance(item, dict):
        raise ConfigurationError(f"anchor entry {idx} must be an object")
    unknown = sorted(set(item.keys()) - {"stride", "anchors"})
    if unknown:
        raise ConfigurationError(f"Unknown anchor entry keys: {unknown}")
    stride = item.get("stride")
    if isinstance(stride, bool) or not isinstance(stride, int):
        raise ConfigurationError(f"anchor entry {idx}: stride must be an integer")
    raw = item.get("anchors")
    if not isinstance(raw, list) or not raw:
        raise ConfigurationError(f"anchor entry {idx}: anchors must be a non-empty list")

    anchors: List[Anchor] = []
    for pair in raw:
        if (
            not isinstance(pair, (list, tuple))
            or len(pair) != 2
            or any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in pair)
        ):
            raise ConfigurationError(f"anchor entry {idx}: each anchor must be [width, height]")
        anchors.append((pair[0], pair[1]))
    return AnchorScale(stride=stride, anchors=tuple(anchors))


def parse_anchor_scales(payload: Sequence[Any]) -> Tuple[AnchorScale, ...]:
    if not isinstance(payload, list):
        raise ConfigurationError("anchor table must be a JSON list")
    if len(payload) != 3:
        raise ConfigurationError(f"anchor table must describe 3 scales, got {len(payload)}")
    return tuple(_parse_scale(item, i) for i, item in enumerate(payload))


def load_anchor_scales(path: Path) -> Tuple[AnchorScale, ...]:
    """
    Load an anchor table exported next to a model:

        [{"stride": 8, "anchors": [[10, 13], [16, 30], [33, 23]]}, ...]
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Anchor table not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid anchor table JSON: {path}") from exc
    return parse_anchor_scales(payload)
