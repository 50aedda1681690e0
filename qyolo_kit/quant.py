from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np


ArrayLike = Union[int, float, np.ndarray]


@dataclass(frozen=True)
class QuantParams:
    """
    Per-tensor affine calibration: real = (raw - zero_point) * scale.
    """

    zero_point: int
    scale: float


def dequantize(raw_value: int, zero_point: int, scale: float) -> float:
    """Affine dequantization of a single raw value: (raw - zero_point) * scale."""
    return (int(raw_value) - int(zero_point)) * float(scale)


def dequantize_array(raw: np.ndarray, params: QuantParams) -> np.ndarray:
    # Widen before subtracting so int8/uint8 buffers cannot wrap around.
    return (np.asarray(raw).astype(np.float32) - np.float32(params.zero_point)) * np.float32(params.scale)


def quantize(value: ArrayLike, zero_point: int, scale: float, dtype=np.int8) -> np.ndarray:
    """
    Inverse of `dequantize`, saturated to the range of `dtype`.
    """

    info = np.iinfo(dtype)
    q = np.round(np.asarray(value, dtype=np.float64) / scale) + zero_point
    return np.clip(q, info.min, info.max).astype(dtype)


def sigmoid(x: ArrayLike) -> np.ndarray:
    x = np.asarray(x, dtype=np.float32)
    # exp(-x) overflows to inf for very negative x, which still yields 0.0
    with np.errstate(over="ignore"):
        return 1.0 / (1.0 + np.exp(-x))
