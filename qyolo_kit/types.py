from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Tuple


Box = Tuple[float, float, float, float]


@dataclass(frozen=True)
class Candidate:
    """
    Decoded box in resized-input coordinates, before filtering and NMS.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: int

    def as_xyxy(self) -> Box:
        return self.x1, self.y1, self.x2, self.y2


@dataclass
class Detection:
    """
    Final detection in original image pixel coordinates.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    label: str
    class_id: Optional[int] = None

    def as_xyxy(self) -> Box:
        return self.x1, self.y1, self.x2, self.y2


@dataclass
class DetectionSet:
    """
    Ordered, bounded collection of detections.

    Items past `capacity` are dropped silently; the first `capacity` items in
    insertion order are the ones kept.
    """

    capacity: int = 64
    items: List[Detection] = field(default_factory=list)
    dropped: int = 0

    def __post_init__(self) -> None:
        if self.capacity < 0:
            raise ValueError("capacity must be >= 0")
        if len(self.items) > self.capacity:
            self.dropped += len(self.items) - self.capacity
            del self.items[self.capacity :]

    def add(self, det: Detection) -> bool:
        if len(self.items) >= self.capacity:
            self.dropped += 1
            return False
        self.items.append(det)
        return True

    def extend(self, dets: Iterable[Detection]) -> None:
        for det in dets:
            self.add(det)

    @property
    def is_full(self) -> bool:
        return len(self.items) >= self.capacity

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Detection]:
        return iter(self.items)

    def __getitem__(self, idx: int) -> Detection:
        return self.items[idx]
