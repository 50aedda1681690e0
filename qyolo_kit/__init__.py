"""
Post-processing for quantized three-scale YOLO exports.

Turns the raw integer output heads of an NPU-compiled YOLOv5-style model
(RKNN and similar) into labelled boxes in original image pixels. Inference,
image loading and drawing stay with the caller; only NumPy is required.
"""

from .anchors import DEFAULT_ANCHORS, AnchorScale, load_anchor_scales
from .config import QuantYoloPostConfig, load_post_config
from .decode import decode_scale, decode_scales
from .errors import ConfigurationError
from .metadata import COCO_80_CLASSES, load_class_names
from .nms import NMSConfig, iou, nms, nms_per_class
from .postprocess import (
    QuantYoloPostprocessor,
    decode_detections,
    filter_by_confidence,
    original_size,
    rescale_box,
)
from .quant import QuantParams, dequantize, dequantize_array, quantize, sigmoid
from .types import Candidate, Detection, DetectionSet

__all__ = [
    "DEFAULT_ANCHORS",
    "AnchorScale",
    "load_anchor_scales",
    "QuantYoloPostConfig",
    "load_post_config",
    "decode_scale",
    "decode_scales",
    "ConfigurationError",
    "COCO_80_CLASSES",
    "load_class_names",
    "NMSConfig",
    "iou",
    "nms",
    "nms_per_class",
    "QuantYoloPostprocessor",
    "decode_detections",
    "filter_by_confidence",
    "original_size",
    "rescale_box",
    "QuantParams",
    "dequantize",
    "dequantize_array",
    "quantize",
    "sigmoid",
    "Candidate",
    "Detection",
    "DetectionSet",
]
