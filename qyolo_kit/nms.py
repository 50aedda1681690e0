from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from .types import Box, Candidate


@dataclass
class NMSConfig:
    iou_threshold: float = 0.6


def _areas(boxes: np.ndarray) -> np.ndarray:
    w = np.maximum(0.0, boxes[:, 2] - boxes[:, 0])
    h = np.maximum(0.0, boxes[:, 3] - boxes[:, 1])
    return w * h


def iou_one_to_many(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    """
    IoU between one xyxy box and an (N,4) array of boxes.
    Pairs with zero union (degenerate boxes) give 0.0.
    """

    box = np.asarray(box, dtype=np.float64).reshape(1, 4)
    others = np.asarray(others, dtype=np.float64).reshape(-1, 4)

    xx1 = np.maximum(box[0, 0], others[:, 0])
    yy1 = np.maximum(box[0, 1], others[:, 1])
    xx2 = np.minimum(box[0, 2], others[:, 2])
    yy2 = np.minimum(box[0, 3], others[:, 3])

    w = np.maximum(0.0, xx2 - xx1)
    h = np.maximum(0.0, yy2 - yy1)
    inter = w * h
    union = _areas(box)[0] + _areas(others) - inter

    out = np.zeros_like(inter)
    np.divide(inter, union, out=out, where=union > 0)
    return out


def iou(a: Box, b: Box) -> float:
    return float(iou_one_to_many(np.asarray(a), np.asarray(b))[0])


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of boxes to keep, highest score first. Equal scores keep
    their input order.
    """

    boxes = np.asarray(boxes, dtype=np.float64)
    scores = np.asarray(scores, dtype=np.float64)
    if boxes.size == 0:
        return np.empty((0,), dtype=np.int32)

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []

    while order.size > 0:
        i = order[0]
        keep.append(int(i))

        overlap = iou_one_to_many(boxes[i], boxes[order[1:]])
        inds = np.where(overlap <= cfg.iou_threshold)[0]
        order = order[inds + 1]

    return np.array(keep, dtype=np.int32)


def nms_per_class(candidates: Sequence[Candidate], iou_threshold: float) -> List[Candidate]:
    """
    Run NMS independently for each class and concatenate the survivors.

    Classes are visited in order of first appearance in `candidates`; there is
    no re-ranking across classes, and a box of one class never suppresses a
    box of another.
    """

    groups: Dict[int, List[int]] = {}
    for idx, cand in enumerate(candidates):
        groups.setdefault(cand.class_id, []).append(idx)

    cfg = NMSConfig(iou_threshold=iou_threshold)
    kept: List[Candidate] = []
    for idx in groups.values():
        group = [candidates[i] for i in idx]
        boxes = np.array([c.as_xyxy() for c in group], dtype=np.float64)
        scores = np.array([c.score for c in group], dtype=np.float64)
        kept.extend(group[i] for i in nms(boxes, scores, cfg))
    return kept
