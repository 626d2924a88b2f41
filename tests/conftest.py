"""Shared fixtures: synthetic frames and detector output."""

from typing import Iterable, Optional, Tuple

import numpy as np
import pytest

from cardcam.geometry import BoundingBox, FrameDimensions


def encode_boxes(
    boxes: Iterable[Tuple[BoundingBox, float]],
    dims: FrameDimensions,
    num_candidates: int = 16,
    predictions_major: bool = False,
) -> np.ndarray:
    """Raw YOLO output containing *boxes* (original-frame pixels) and filler.

    Filler candidates have confidence 0.05 so the decoder drops them.
    """
    rows = np.zeros((num_candidates, 5), dtype=np.float32)
    rows[:, :4] = 0.5
    rows[:, 4] = 0.05
    size = dims.input_size
    for i, (box, conf) in enumerate(boxes):
        cx, cy = dims.to_canvas(*box.center)
        rows[i] = (cx / size, cy / size, box.width * dims.scale / size, box.height * dims.scale / size, conf)
    arr = rows if predictions_major else rows.T
    return arr[np.newaxis]


@pytest.fixture
def dims_720p():
    return FrameDimensions.for_frame(1280, 720, 640)


@pytest.fixture
def frame_720p():
    rng = np.random.default_rng(0)
    return rng.integers(0, 256, size=(720, 1280, 3), dtype=np.uint8)


@pytest.fixture
def make_output(dims_720p):
    """``make_output(box, conf)`` -> features-major raw output for a 720p frame."""

    def _make(box: Optional[BoundingBox], conf: float = 0.9, predictions_major: bool = False):
        boxes = [] if box is None else [(box, conf)]
        return encode_boxes(boxes, dims_720p, predictions_major=predictions_major)

    return _make
