from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .anchors import AnchorScale
from .errors import ConfigurationError
from .quant import QuantParams, dequantize_array, sigmoid
from .types import Candidate


logger = logging.getLogger(__name__)

LAYOUTS = ("nhwc", "nchw")

# Channel order inside one anchor slot: tx, ty, tw, th, objectness, class scores...
BOX_CHANNELS = 5


def _as_grid(
    raw: np.ndarray,
    grid_h: int,
    grid_w: int,
    num_anchors: int,
    channels: int,
    layout: str,
) -> np.ndarray:
    """
    Validate one output tensor and view it as (H, W, A, 5 + C).
    """

    arr = np.asarray(raw)
    if not np.issubdtype(arr.dtype, np.integer):
        raise ConfigurationError(f"Expected an integer (quantized) tensor, got dtype {arr.dtype}")

    expected = grid_h * grid_w * num_anchors * channels
    if arr.size != expected:
        raise ConfigurationError(
            f"Tensor has {arr.size} elements, expected {expected} "
            f"(grid {grid_h}x{grid_w}, {num_anchors} anchors, {channels} channels, layout {layout})"
        )

    packed = num_anchors * channels
    if layout == "nhwc":
        allowed = {
            (expected,),
            (grid_h, grid_w, num_anchors, channels),
            (grid_h, grid_w, packed),
            (1, grid_h, grid_w, packed),
        }
        if arr.shape not in allowed:
            raise ConfigurationError(f"Unsupported NHWC tensor shape {arr.shape}")
        return arr.reshape(grid_h, grid_w, num_anchors, channels)

    if layout == "nchw":
        allowed = {
            (expected,),
            (packed, grid_h, grid_w),
            (1, packed, grid_h, grid_w),
        }
        if arr.shape not in allowed:
            raise ConfigurationError(f"Unsupported NCHW tensor shape {arr.shape}")
        # (A, K, H, W) -> (H, W, A, K)
        return arr.reshape(num_anchors, channels, grid_h, grid_w).transpose(2, 3, 0, 1)

    raise ConfigurationError(f"Unknown tensor layout {layout!r}; expected one of {LAYOUTS}")


def decode_scale(
    raw: np.ndarray,
    params: QuantParams,
    scale: AnchorScale,
    input_height: int,
    input_width: int,
    num_classes: int,
    *,
    apply_sigmoid: bool = True,
    layout: str = "nhwc",
    min_score: Optional[float] = None,
) -> List[Candidate]:
    """
    Decode one detection scale into candidates in resized-input coordinates.

    Candidates come out row-major over grid cells, then by anchor. Every
    candidate with a finite, non-negative score is emitted unless `min_score`
    is given, in which case lower scores are skipped before any record is
    built.
    """

    if num_classes < 1:
        raise ConfigurationError(f"num_classes must be >= 1, got {num_classes}")

    grid_h, grid_w = scale.grid_size(input_height, input_width)
    grid = _as_grid(raw, grid_h, grid_w, scale.num_anchors, BOX_CHANNELS + num_classes, layout)

    x = dequantize_array(grid, params)
    if apply_sigmoid:
        x = sigmoid(x)

    stride = np.float32(scale.stride)
    rows = np.arange(grid_h, dtype=np.float32).reshape(grid_h, 1, 1)
    cols = np.arange(grid_w, dtype=np.float32).reshape(1, grid_w, 1)
    anchors = np.asarray(scale.anchors, dtype=np.float32)

    cx = (x[..., 0] * 2.0 - 0.5 + cols) * stride
    cy = (x[..., 1] * 2.0 - 0.5 + rows) * stride
    bw = (x[..., 2] * 2.0) ** 2 * anchors[:, 0]
    bh = (x[..., 3] * 2.0) ** 2 * anchors[:, 1]

    class_scores = x[..., BOX_CHANNELS:]
    class_ids = np.argmax(class_scores, axis=-1)
    class_conf = np.take_along_axis(class_scores, class_ids[..., None], axis=-1)[..., 0]
    scores = x[..., 4] * class_conf

    boxes = np.stack([cx - bw / 2, cy - bh / 2, cx + bw / 2, cy + bh / 2], axis=-1).reshape(-1, 4)
    scores = scores.reshape(-1)
    class_ids = class_ids.reshape(-1)

    keep = np.isfinite(scores) & (scores >= 0) & np.isfinite(boxes).all(axis=1)
    if min_score is not None:
        keep &= scores >= min_score
    # Unactivated exports can overshoot 1.0 after dequantization.
    scores = np.minimum(scores, 1.0)

    out = [
        Candidate(
            x1=float(b[0]),
            y1=float(b[1]),
            x2=float(b[2]),
            y2=float(b[3]),
            score=float(s),
            class_id=int(c),
        )
        for b, s, c in zip(boxes[keep], scores[keep], class_ids[keep])
    ]
    logger.debug("stride %d: %d cells x %d anchors -> %d candidates", scale.stride, grid_h * grid_w, scale.num_anchors, len(out))
    return out


def decode_scales(
    tensors: Sequence[np.ndarray],
    params: Sequence[QuantParams],
    anchors: Sequence[AnchorScale],
    input_height: int,
    input_width: int,
    num_classes: int,
    *,
    apply_sigmoid: bool = True,
    layout: str = "nhwc",
    min_score: Optional[float] = None,
    workers: int = 1,
) -> List[Candidate]:
    """
    Decode every scale and concatenate the results in scale order.

    Scales share nothing mutable, so with `workers > 1` they are decoded on a
    thread pool; the output order is the same either way.
    """

    if not (len(tensors) == len(params) == len(anchors)):
        raise ConfigurationError(
            f"Got {len(tensors)} tensors, {len(params)} calibration records and {len(anchors)} anchor scales"
        )
    if input_height <= 0 or input_width <= 0:
        raise ConfigurationError(f"Input size must be positive, got {input_width}x{input_height}")

    def run(job: Tuple[np.ndarray, QuantParams, AnchorScale]) -> List[Candidate]:
        raw, qp, scale = job
        return decode_scale(
            raw,
            qp,
            scale,
            input_height,
            input_width,
            num_classes,
            apply_sigmoid=apply_sigmoid,
            layout=layout,
            min_score=min_score,
        )

    jobs = list(zip(tensors, params, anchors))
    if workers > 1 and len(jobs) > 1:
        with ThreadPoolExecutor(max_workers=min(workers, len(jobs))) as pool:
            per_scale = list(pool.map(run, jobs))
    else:
        per_scale = [run(job) for job in jobs]

    merged: List[Candidate] = []
    for cands in per_scale:
        merged.extend(cands)
    return merged
