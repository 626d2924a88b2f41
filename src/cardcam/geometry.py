"""Box geometry and alignment scoring for card detections.

Classes:
    BoundingBox     - Axis-aligned box in original-frame pixels
    FrameDimensions - Letterbox transform between frame and model input
    Detection       - A single scored card candidate
    ScoringParams   - Tunables for the alignment score
    GeometryScorer  - Aspect-ratio / area fitness of a box
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

log = logging.getLogger(__name__)

# ID-1 card format: 85.6mm x 54mm
CARD_ASPECT_RATIO = 1.585


# ---------------------------------------------------------------------------
# BoundingBox
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box, top-left origin, in original-frame pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height > 0 else 0.0

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def to_xyxy(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.x2, self.y2)

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)


def iou(box_a: BoundingBox, box_b: BoundingBox) -> float:
    """Intersection over union of two boxes (0 when the union is empty)."""
    xa = max(box_a.x, box_b.x)
    ya = max(box_a.y, box_b.y)
    xb = min(box_a.x2, box_b.x2)
    yb = min(box_a.y2, box_b.y2)

    inter = max(0.0, xb - xa) * max(0.0, yb - ya)
    union = box_a.area + box_b.area - inter
    return inter / union if union > 0 else 0.0


# ---------------------------------------------------------------------------
# FrameDimensions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FrameDimensions:
    """Letterbox geometry recorded when a frame is prepared for the model.

    ``scale`` maps original pixels to model-input pixels; the scaled frame is
    centered in the ``input_size`` square with ``left_padding`` /
    ``top_padding`` pixels of border.
    """

    input_size: int
    original_width: int
    original_height: int
    scale: float
    top_padding: int
    left_padding: int

    @classmethod
    def for_frame(cls, width: int, height: int, input_size: int = 640) -> "FrameDimensions":
        """Compute the letterbox transform for a ``width`` x ``height`` frame."""
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid frame size {width}x{height}")
        scale = min(input_size / width, input_size / height)
        scaled_w = int(round(width * scale))
        scaled_h = int(round(height * scale))
        return cls(
            input_size=input_size,
            original_width=width,
            original_height=height,
            scale=scale,
            top_padding=(input_size - scaled_h) // 2,
            left_padding=(input_size - scaled_w) // 2,
        )

    @property
    def scaled_size(self) -> Tuple[int, int]:
        """(width, height) of the frame inside the padded square."""
        return (
            int(round(self.original_width * self.scale)),
            int(round(self.original_height * self.scale)),
        )

    @property
    def frame_area(self) -> int:
        return self.original_width * self.original_height

    def to_original(self, x: float, y: float) -> Tuple[float, float]:
        """Map a padded-canvas point back to original-frame pixels."""
        return (
            (x - self.left_padding) / self.scale,
            (y - self.top_padding) / self.scale,
        )

    def to_canvas(self, x: float, y: float) -> Tuple[float, float]:
        """Map an original-frame point into the padded canvas."""
        return (x * self.scale + self.left_padding, y * self.scale + self.top_padding)


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Detection:
    """A single card candidate from one frame."""

    box: BoundingBox
    confidence: float
    aspect_ratio: float
    alignment_score: float

    @property
    def area(self) -> float:
        return self.box.area


# ---------------------------------------------------------------------------
# GeometryScorer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoringParams:
    """Tunables for :class:`GeometryScorer`.

    Area is scored against the fraction of the frame the box covers:
    0 at or below ``area_floor`` (or at or above ``area_ceiling`` when set),
    1.0 strictly inside ``(sweet_min, sweet_max)``, ``partial_area_score``
    anywhere else.
    """

    ideal_aspect_ratio: float = CARD_ASPECT_RATIO
    aspect_ratio_tolerance: float = 0.3
    area_floor: float = 0.02
    sweet_min: float = 0.05
    sweet_max: float = 0.8
    area_ceiling: Optional[float] = None
    partial_area_score: float = 0.5
    # (aspect weight, area weight)
    weights: Tuple[float, float] = (0.5, 0.5)


LENIENT_SCORING = ScoringParams()

STRICT_SCORING = ScoringParams(
    aspect_ratio_tolerance=0.2,
    area_floor=0.03,
    sweet_min=0.08,
    sweet_max=0.7,
    area_ceiling=0.9,
    partial_area_score=0.7,
    weights=(0.6, 0.4),
)


def _positive(value) -> bool:
    try:
        return value is not None and math.isfinite(value) and value > 0
    except TypeError:
        return False


class GeometryScorer:
    """Scores how card-like a box is from its aspect ratio and frame coverage.

    Stateless; never raises.  Any missing, non-finite or non-positive input
    scores 0.

    Args:
        params: Scoring tunables (defaults to :data:`LENIENT_SCORING`).
    """

    def __init__(self, params: Optional[ScoringParams] = None):
        self.params = params or LENIENT_SCORING

    def aspect_score(self, aspect_ratio: float) -> float:
        p = self.params
        error = abs(aspect_ratio - p.ideal_aspect_ratio)
        return max(0.0, 1.0 - error / p.aspect_ratio_tolerance)

    def area_score(self, area_ratio: float) -> float:
        p = self.params
        if area_ratio <= p.area_floor:
            return 0.0
        if p.area_ceiling is not None and area_ratio >= p.area_ceiling:
            return 0.0
        if p.sweet_min < area_ratio < p.sweet_max:
            return 1.0
        return p.partial_area_score

    def score(
        self,
        aspect_ratio: float,
        area: float,
        frame_width: float,
        frame_height: float,
    ) -> float:
        """Combined alignment score in [0, 1].

        Args:
            aspect_ratio: Box width / height.
            area: Box area in original-frame pixels.
            frame_width: Frame width in pixels.
            frame_height: Frame height in pixels.
        """
        if not all(_positive(v) for v in (aspect_ratio, area, frame_width, frame_height)):
            return 0.0

        area_ratio = area / (frame_width * frame_height)
        w_aspect, w_area = self.params.weights
        combined = self.aspect_score(aspect_ratio) * w_aspect + self.area_score(area_ratio) * w_area
        return min(1.0, max(0.0, combined))

    def score_box(self, box: BoundingBox, dims: FrameDimensions) -> float:
        return self.score(box.aspect_ratio, box.area, dims.original_width, dims.original_height)
