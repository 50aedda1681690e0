from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping, Sequence, Union


ClassNames = Union[Mapping[int, str], Sequence[str]]


COCO_80_CLASSES = (
    "person", "bicycle", "car", "motorbike", "aeroplane", "bus", "train", "truck",
    "boat", "traffic light", "fire hydrant", "stop sign", "parking meter", "bench",
    "bird", "cat", "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra",
    "giraffe", "backpack", "umbrella", "handbag", "tie", "suitcase", "frisbee",
    "skis", "snowboard", "sports ball", "kite", "baseball bat", "baseball glove",
    "skateboard", "surfboard", "tennis racket", "bottle", "wine glass", "cup",
    "fork", "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange",
    "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair", "sofa",
    "pottedplant", "bed", "diningtable", "toilet", "tvmonitor", "laptop", "mouse",
    "remote", "keyboard", "cell phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "book", "clock", "vase", "scissors", "teddy bear", "hair drier",
    "toothbrush",
)


def class_name(names: ClassNames, class_id: int) -> str:
    """
    Resolve a class index; unknown indices render as the bare number.
    """

    if isinstance(names, Mapping):
        return names.get(class_id, str(class_id))
    if 0 <= class_id < len(names):
        return names[class_id]
    return str(class_id)


def load_class_names(metadata_path: Union[str, Path]) -> Dict[int, str]:
    """
    Load class names from either of the two formats shipped with models:

    - a metadata file with a `names:` mapping

        names:
          0: person
          1: bicycle

    - a plain label list with one name per line (line number = class index),
      like `coco_80_labels_list.txt`.

    Parsed by hand to keep PyYAML out of the dependencies.
    """

    mapped: Dict[int, str] = {}
    listed: Dict[int, str] = {}
    has_block = False
    in_block = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for idx, raw in enumerate(f):
            text = raw.strip()
            if not text or text.startswith("#"):
                continue
            if text == "names:":
                has_block = in_block = True
                continue
            key, sep, label = text.partition(":")
            is_entry = bool(sep) and key.strip().isdigit()
            if in_block and not is_entry and raw[:1] not in (" ", "\t"):
                # a new top-level key closes the mapping
                in_block = False
            if not in_block:
                listed[idx] = text
            elif is_entry:
                mapped[int(key)] = label.strip().strip("'\"")

    return mapped if has_block else listed
