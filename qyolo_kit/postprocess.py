from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .anchors import DEFAULT_ANCHORS, AnchorScale
from .config import QuantYoloPostConfig
from .decode import decode_scales
from .errors import ConfigurationError
from .metadata import COCO_80_CLASSES, ClassNames, class_name
from .nms import nms_per_class
from .quant import QuantParams
from .types import Box, Candidate, Detection, DetectionSet


logger = logging.getLogger(__name__)


def filter_by_confidence(candidates: Iterable[Candidate], threshold: float) -> List[Candidate]:
    """Keep candidates scoring at least `threshold`, in their original order."""
    return [c for c in candidates if c.score >= threshold]


def _check_ratio(scale_w: float, scale_h: float) -> None:
    if not (scale_w > 0 and scale_h > 0 and np.isfinite(scale_w) and np.isfinite(scale_h)):
        raise ConfigurationError(f"Scale factors must be positive and finite, got ({scale_w}, {scale_h})")


def original_size(input_size: Tuple[int, int], ratio: Tuple[float, float]) -> Tuple[int, int]:
    """
    Recover (width, height) of the source image from the model input size and
    the resize ratio (resized / original).
    """

    in_w, in_h = input_size
    scale_w, scale_h = ratio
    _check_ratio(scale_w, scale_h)
    return int(round(in_w / scale_w)), int(round(in_h / scale_h))


def rescale_box(box: Box, scale_w: float, scale_h: float, orig_size: Tuple[int, int]) -> Box:
    """
    Map an xyxy box from resized-input space back to the original image.

    `scale_w`/`scale_h` are resized / original, so coordinates are divided by
    them. The result is clamped to [0, w - 1] x [0, h - 1].
    """

    _check_ratio(scale_w, scale_h)
    orig_w, orig_h = orig_size
    max_x = max(orig_w - 1, 0)
    max_y = max(orig_h - 1, 0)

    x1, y1, x2, y2 = box
    return (
        float(np.clip(x1 / scale_w, 0, max_x)),
        float(np.clip(y1 / scale_h, 0, max_y)),
        float(np.clip(x2 / scale_w, 0, max_x)),
        float(np.clip(y2 / scale_h, 0, max_y)),
    )


class QuantYoloPostprocessor:
    """
    Post-process for quantized YOLOv5-style exports with three output heads.

    Pipeline per frame:
    - decode each scale (dequantize -> logistic -> grid/anchor geometry)
    - drop candidates under `conf_threshold`
    - per-class NMS
    - map survivors back to original image pixels
    - truncate to `max_detections`, keeping NMS survival order

    Outputs are expected small -> large (stride 8, 16, 32 for the default
    anchors), each with its own calibration record.
    """

    def __init__(
        self,
        cfg: QuantYoloPostConfig = QuantYoloPostConfig(),
        anchors: Sequence[AnchorScale] = DEFAULT_ANCHORS,
        class_names: ClassNames = COCO_80_CLASSES,
    ):
        self.cfg = cfg
        self.anchors = tuple(anchors)
        self.class_names = class_names

    def process(
        self,
        outputs: Sequence[np.ndarray],
        quant_params: Sequence[QuantParams],
        input_size: Tuple[int, int],
        ratio: Tuple[float, float] = (1.0, 1.0),
        orig_size: Optional[Tuple[int, int]] = None,
    ) -> DetectionSet:
        """
        Args:
            outputs: raw integer tensors, one per anchor scale
            quant_params: zero point/scale for each tensor, same order
            input_size: (width, height) of the model input
            ratio: (scale_w, scale_h) = resized / original
            orig_size: (width, height) of the source image; derived from
                input_size and ratio when omitted
        """

        if len(outputs) != len(self.anchors):
            raise ConfigurationError(f"Expected {len(self.anchors)} output tensors, got {len(outputs)}")
        if len(quant_params) != len(outputs):
            raise ConfigurationError(
                f"Expected {len(outputs)} calibration records, got {len(quant_params)}"
            )

        in_w, in_h = input_size
        scale_w, scale_h = ratio
        _check_ratio(scale_w, scale_h)
        if orig_size is None:
            orig_size = original_size(input_size, ratio)

        candidates = decode_scales(
            outputs,
            quant_params,
            self.anchors,
            in_h,
            in_w,
            self.cfg.num_classes,
            apply_sigmoid=self.cfg.apply_sigmoid,
            layout=self.cfg.layout,
            min_score=self.cfg.conf_threshold,
            workers=self.cfg.workers,
        )
        candidates = filter_by_confidence(candidates, self.cfg.conf_threshold)
        kept = nms_per_class(candidates, self.cfg.nms_threshold)

        result = DetectionSet(capacity=self.cfg.max_detections)
        for cand in kept:
            if result.is_full:
                result.dropped = len(kept) - len(result)
                break
            x1, y1, x2, y2 = rescale_box(cand.as_xyxy(), scale_w, scale_h, orig_size)
            result.add(
                Detection(
                    x1=x1,
                    y1=y1,
                    x2=x2,
                    y2=y2,
                    score=cand.score,
                    label=class_name(self.class_names, cand.class_id),
                    class_id=cand.class_id,
                )
            )

        if result.dropped:
            logger.debug("detection capacity %d reached, dropped %d", self.cfg.max_detections, result.dropped)
        logger.debug("%d candidates -> %d after NMS -> %d returned", len(candidates), len(kept), len(result))
        return result


def _calibration(
    zero_points: Optional[Sequence[int]],
    scales: Optional[Sequence[float]],
    quant_params: Optional[Sequence[QuantParams]],
) -> List[QuantParams]:
    if quant_params is not None:
        if zero_points is not None or scales is not None:
            raise ConfigurationError("Pass either zero_points/scales or quant_params, not both")
        return list(quant_params)
    if zero_points is None or scales is None:
        raise ConfigurationError("zero_points and scales are required when quant_params is not given")
    if len(zero_points) != len(scales):
        raise ConfigurationError(f"Got {len(zero_points)} zero points but {len(scales)} scales")
    return [QuantParams(zero_point=int(zp), scale=float(s)) for zp, s in zip(zero_points, scales)]


def decode_detections(
    tensor_small: np.ndarray,
    tensor_medium: np.ndarray,
    tensor_large: np.ndarray,
    input_height: int,
    input_width: int,
    conf_threshold: float,
    nms_threshold: float,
    scale_w: float,
    scale_h: float,
    zero_points: Optional[Sequence[int]] = None,
    scales: Optional[Sequence[float]] = None,
    *,
    quant_params: Optional[Sequence[QuantParams]] = None,
    anchors: Sequence[AnchorScale] = DEFAULT_ANCHORS,
    class_names: ClassNames = COCO_80_CLASSES,
    num_classes: Optional[int] = None,
    max_detections: int = 64,
    apply_sigmoid: bool = True,
    layout: str = "nhwc",
    workers: int = 1,
) -> DetectionSet:
    """
    Decode one frame's three quantized YOLO heads into detections in original
    image pixels.

    `num_classes` defaults to the size of `class_names`.

    Thresholds are not range-checked: a `conf_threshold` above 1 returns an
    empty set and an `nms_threshold` of 1 or more suppresses nothing.

    A zero logit decodes to 0.5 objectness and 0.5 class score, so an
    all-zero frame scores 0.25 everywhere. It comes back empty only when
    `conf_threshold` is above 0.25; at or below that, every cell is reported
    (up to `max_detections`).
    """

    cfg = QuantYoloPostConfig(
        conf_threshold=conf_threshold,
        nms_threshold=nms_threshold,
        max_detections=max_detections,
        num_classes=num_classes if num_classes is not None else len(class_names),
        apply_sigmoid=apply_sigmoid,
        layout=layout,
        workers=workers,
    )
    post = QuantYoloPostprocessor(cfg, anchors=anchors, class_names=class_names)
    return post.process(
        (tensor_small, tensor_medium, tensor_large),
        _calibration(zero_points, scales, quant_params),
        input_size=(input_width, input_height),
        ratio=(scale_w, scale_h),
    )
