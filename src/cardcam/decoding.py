"""Decoding of raw YOLO detector output into card detections.

YOLOv8 single-class exports emit either ``[1, N, F]`` (one row per
prediction) or ``[1, F, N]`` (one row per feature) where the features are
``(cx, cy, w, h, conf, ...)`` normalized to the model input size.

Classes:
    OutputLayout    - Which of the two tensor layouts a model emits
    SingleOutput    - Raw output holding one tensor
    MultipleOutputs - Raw output holding several tensors (first one is used)
    YoloOutputDecoder - Tensor to sorted :class:`Detection` list
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import DecodeError
from .geometry import BoundingBox, Detection, FrameDimensions, GeometryScorer, iou

log = logging.getLogger(__name__)

# Low-pass floor that only bounds the work per frame; the validity
# classifier applies the real threshold.
DEFAULT_CONFIDENCE_FLOOR = 0.4

# cx, cy, w, h, conf
_MIN_FEATURES = 5


class OutputLayout(Enum):
    AUTO = "auto"
    PREDICTIONS_MAJOR = "predictions_major"  # [1, N, F]
    FEATURES_MAJOR = "features_major"  # [1, F, N]


# ---------------------------------------------------------------------------
# Raw output variant
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SingleOutput:
    tensor: Any


@dataclass(frozen=True)
class MultipleOutputs:
    tensors: Tuple[Any, ...]


RawOutput = Union[SingleOutput, MultipleOutputs]


def as_raw_output(value: Any) -> RawOutput:
    """Wrap whatever a model returned into a :data:`RawOutput`.

    Lists and tuples become :class:`MultipleOutputs`; anything else is a
    :class:`SingleOutput`.  Already-wrapped values pass through.
    """
    if isinstance(value, (SingleOutput, MultipleOutputs)):
        return value
    if isinstance(value, (list, tuple)):
        return MultipleOutputs(tuple(value))
    return SingleOutput(value)


def _primary_array(raw: RawOutput) -> np.ndarray:
    if isinstance(raw, MultipleOutputs):
        if not raw.tensors:
            raise DecodeError("model returned no outputs")
        tensor = raw.tensors[0]
    else:
        tensor = raw.tensor

    arr = np.asarray(tensor, dtype=np.float32)
    if arr.ndim == 2:
        arr = arr[np.newaxis]
    if arr.ndim != 3:
        raise DecodeError(f"expected a 3-D output, got shape {arr.shape}")
    return arr


# ---------------------------------------------------------------------------
# YoloOutputDecoder
# ---------------------------------------------------------------------------


class YoloOutputDecoder:
    """Converts raw YOLO output to detections in original-frame pixels.

    Args:
        confidence_floor: Candidates at or below this confidence are skipped.
        layout: Tensor layout.  ``AUTO`` infers it from the inner dimensions:
            predictions-major when ``shape[1] > shape[2]``.  Square shapes
            cannot be told apart; they are logged and read as features-major.
        scorer: Geometry scorer used for ``alignment_score``.
        overlap_threshold: When set, detections overlapping a more confident
            one by more than this IoU are dropped.
    """

    def __init__(
        self,
        confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR,
        layout: OutputLayout = OutputLayout.AUTO,
        scorer: Optional[GeometryScorer] = None,
        overlap_threshold: Optional[float] = None,
    ):
        self.confidence_floor = confidence_floor
        self.layout = layout
        self.scorer = scorer or GeometryScorer()
        self.overlap_threshold = overlap_threshold

    def resolve_layout(self, arr: np.ndarray) -> OutputLayout:
        """Return the concrete layout for a ``[1, A, B]`` array."""
        if self.layout is not OutputLayout.AUTO:
            return self.layout
        dim1, dim2 = arr.shape[1], arr.shape[2]
        if dim1 > dim2:
            return OutputLayout.PREDICTIONS_MAJOR
        if dim1 == dim2:
            log.warning(
                f"Ambiguous detector output shape {arr.shape}; "
                "reading as features-major. Set the output layout explicitly."
            )
        return OutputLayout.FEATURES_MAJOR

    def _candidate_rows(self, arr: np.ndarray) -> np.ndarray:
        """Return an ``(N, F)`` view with one row per prediction."""
        layout = self.resolve_layout(arr)
        rows = arr[0] if layout is OutputLayout.PREDICTIONS_MAJOR else arr[0].T
        if rows.shape[1] < _MIN_FEATURES:
            raise DecodeError(f"need at least {_MIN_FEATURES} features, got {rows.shape[1]}")
        return rows

    def _to_detection(self, row: np.ndarray, dims: FrameDimensions) -> Optional[Detection]:
        cx, cy, w, h, conf = (float(v) for v in row[:_MIN_FEATURES])

        # Normalized -> padded canvas pixels
        size = dims.input_size
        canvas_cx, canvas_cy = cx * size, cy * size
        canvas_w, canvas_h = w * size, h * size

        x1, y1 = dims.to_original(canvas_cx - canvas_w / 2, canvas_cy - canvas_h / 2)
        x2, y2 = dims.to_original(canvas_cx + canvas_w / 2, canvas_cy + canvas_h / 2)

        x1 = min(max(x1, 0.0), dims.original_width)
        y1 = min(max(y1, 0.0), dims.original_height)
        x2 = min(max(x2, 0.0), dims.original_width)
        y2 = min(max(y2, 0.0), dims.original_height)

        box = BoundingBox.from_corners(x1, y1, x2, y2)
        if box.width <= 0 or box.height <= 0:
            return None

        aspect_ratio = box.width / box.height
        return Detection(
            box=box,
            confidence=conf,
            aspect_ratio=aspect_ratio,
            alignment_score=self.scorer.score(
                aspect_ratio, box.area, dims.original_width, dims.original_height
            ),
        )

    def decode(self, raw: Any, dims: FrameDimensions) -> List[Detection]:
        """Decode one frame of model output.

        Never raises: conversion or shape problems are logged and the frame
        is treated as having no detections.

        Args:
            raw: :data:`RawOutput` (or a bare array / list of arrays).
            dims: Letterbox geometry of the frame that was fed to the model.

        Returns:
            Detections sorted by confidence, highest first.
        """
        detections: List[Detection] = []
        try:
            arr = _primary_array(as_raw_output(raw))
            rows = self._candidate_rows(arr)
            keep = rows[rows[:, 4] > self.confidence_floor]
            for row in keep:
                det = self._to_detection(row, dims)
                if det is not None:
                    detections.append(det)
        except DecodeError as e:
            log.error(e.message)
            return []
        except Exception as e:
            log.error(f"Error processing detector output: {e}")
            return []

        detections.sort(key=lambda d: d.confidence, reverse=True)
        if self.overlap_threshold is not None:
            detections = non_max_suppression(detections, self.overlap_threshold)
        log.debug(f"Decoded {len(detections)} detections from {len(rows)} candidates")
        if detections:
            log.debug(f"Detection stats: {detection_stats(detections)}")
        return detections


def non_max_suppression(
    detections: Sequence[Detection], overlap_threshold: float = 0.5
) -> List[Detection]:
    """Drop detections overlapping a higher-confidence one by more than *overlap_threshold* IoU."""
    keep: List[Detection] = []
    for det in sorted(detections, key=lambda d: d.confidence, reverse=True):
        if all(iou(det.box, kept.box) <= overlap_threshold for kept in keep):
            keep.append(det)
    return keep


def detection_stats(detections: Sequence[Detection]) -> Dict[str, float]:
    """Summary statistics for debug logging (empty dict for no detections)."""
    if not detections:
        return {}
    confs = [d.confidence for d in detections]
    return {
        "count": len(detections),
        "avg_confidence": sum(confs) / len(confs),
        "min_confidence": min(confs),
        "max_confidence": max(confs),
        "avg_aspect_ratio": sum(d.aspect_ratio for d in detections) / len(detections),
        "avg_alignment": sum(d.alignment_score for d in detections) / len(detections),
    }
