"""Validity classification of the best detection in a frame.

Gates run in a fixed order and the first one that fails is the only reason
reported, so the user always gets a single instruction per frame:

    1. confidence        -> LOW_CONFIDENCE
    2. aspect ratio      -> WRONG_SHAPE
    3. area / box size   -> TOO_FAR / TOO_CLOSE
    4. edge distance     -> OFF_CENTER   (optional)
    5. alignment score   -> POOR_ALIGNMENT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from .geometry import Detection
from .profiles import DeviceProfile

log = logging.getLogger(__name__)


class FailureReason(Enum):
    NO_DETECTION = "no-detection"
    LOW_CONFIDENCE = "low-confidence"
    WRONG_SHAPE = "wrong-shape"
    TOO_FAR = "too-far"
    TOO_CLOSE = "too-close"
    OFF_CENTER = "off-center"
    POOR_ALIGNMENT = "poor-alignment"


FEEDBACK: Dict[FailureReason, str] = {
    FailureReason.NO_DETECTION: "No card detected in frame",
    FailureReason.LOW_CONFIDENCE: "Move closer to the camera for better detection",
    FailureReason.WRONG_SHAPE: "Please show an ID card (detected shape is not a valid card)",
    FailureReason.TOO_FAR: "Move closer - card is too far away",
    FailureReason.TOO_CLOSE: "Move back slightly - card is too close",
    FailureReason.OFF_CENTER: "Center the card in the frame",
    FailureReason.POOR_ALIGNMENT: "Hold the card straight and steady",
}


@dataclass(frozen=True)
class Verdict:
    """Outcome of classifying one frame."""

    is_valid: bool
    reason: Optional[FailureReason]
    detail: str
    feedback: str
    alignment_score: float = 0.0
    confidence: float = 0.0
    metrics: Dict[str, float] = field(default_factory=dict)

    @property
    def ready_for_capture(self) -> bool:
        return self.is_valid


def readiness_feedback(alignment_score: float) -> str:
    if alignment_score > 0.8:
        return "Perfect positioning - hold steady"
    if alignment_score > 0.6:
        return "Good positioning - hold steady"
    return "Hold the card steady for capture"


def edge_distance(detection: Detection, frame_width: float, frame_height: float) -> float:
    """Normalized distance from the box center to the nearest frame edge (0-0.5)."""
    cx, cy = detection.box.center
    dx = min(cx, frame_width - cx) / frame_width
    dy = min(cy, frame_height - cy) / frame_height
    return min(dx, dy)


class ValidityClassifier:
    """Applies a :class:`DeviceProfile` to the best detection of a frame.

    Args:
        profile: Thresholds for the active device.
    """

    def __init__(self, profile: DeviceProfile):
        self.profile = profile

    def _fail(self, reason: FailureReason, detail: str, detection: Detection, metrics) -> Verdict:
        return Verdict(
            is_valid=False,
            reason=reason,
            detail=detail,
            feedback=FEEDBACK[reason],
            alignment_score=detection.alignment_score,
            confidence=detection.confidence,
            metrics=metrics,
        )

    def classify(
        self,
        detection: Optional[Detection],
        frame_width: float,
        frame_height: float,
    ) -> Verdict:
        """Classify *detection* against the profile.

        Args:
            detection: Best detection of the frame, or ``None``.
            frame_width: Video frame width in pixels.
            frame_height: Video frame height in pixels.
        """
        if detection is None or frame_width <= 0 or frame_height <= 0:
            return Verdict(
                is_valid=False,
                reason=FailureReason.NO_DETECTION,
                detail="No detection provided",
                feedback=FEEDBACK[FailureReason.NO_DETECTION],
            )

        p = self.profile
        box = detection.box
        area_ratio = box.area / (frame_width * frame_height)
        edge = edge_distance(detection, frame_width, frame_height)
        cx, cy = box.center
        metrics = {
            "confidence": detection.confidence,
            "aspect_ratio": detection.aspect_ratio,
            "area_ratio": area_ratio,
            "edge_distance": edge,
            "center_x": cx / frame_width,
            "center_y": cy / frame_height,
        }

        if detection.confidence < p.confidence_threshold:
            return self._fail(
                FailureReason.LOW_CONFIDENCE,
                f"Low confidence: {detection.confidence:.3f} < {p.confidence_threshold}",
                detection,
                metrics,
            )

        if not (p.aspect_ratio_min <= detection.aspect_ratio <= p.aspect_ratio_max):
            return self._fail(
                FailureReason.WRONG_SHAPE,
                f"Invalid aspect ratio: {detection.aspect_ratio:.2f} "
                f"not in [{p.aspect_ratio_min}, {p.aspect_ratio_max}]",
                detection,
                metrics,
            )

        if area_ratio < p.min_detection_area_ratio or box.width < p.min_box_width or box.height < p.min_box_height:
            return self._fail(
                FailureReason.TOO_FAR,
                f"Too small: {area_ratio:.3f} < {p.min_detection_area_ratio} "
                f"or box {box.width:.0f}x{box.height:.0f} under {p.min_box_width}x{p.min_box_height}",
                detection,
                metrics,
            )
        if area_ratio > p.max_detection_area_ratio:
            return self._fail(
                FailureReason.TOO_CLOSE,
                f"Too large: {area_ratio:.3f} > {p.max_detection_area_ratio}",
                detection,
                metrics,
            )

        if p.check_edge_distance and edge < p.edge_distance_threshold:
            return self._fail(
                FailureReason.OFF_CENTER,
                f"Too close to edge: {edge:.3f} < {p.edge_distance_threshold}",
                detection,
                metrics,
            )

        if detection.alignment_score <= p.alignment_threshold:
            return self._fail(
                FailureReason.POOR_ALIGNMENT,
                f"Poor alignment: {detection.alignment_score:.3f} <= {p.alignment_threshold}",
                detection,
                metrics,
            )

        return Verdict(
            is_valid=True,
            reason=None,
            detail="",
            feedback=readiness_feedback(detection.alignment_score),
            alignment_score=detection.alignment_score,
            confidence=detection.confidence,
            metrics=metrics,
        )
