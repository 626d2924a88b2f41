"""Preview overlay: the best detection drawn on a copy of the frame."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from .geometry import Detection
from .validity import FailureReason, Verdict

log = logging.getLogger(__name__)

Color = Tuple[int, int, int]

# RGB
RED: Color = (255, 68, 68)
ORANGE: Color = (255, 136, 0)
YELLOW: Color = (255, 221, 0)
GREEN: Color = (68, 221, 68)
BRIGHT_GREEN: Color = (0, 221, 136)

_MIN_DRAW_SIZE = 10


def box_color(verdict: Optional[Verdict], alignment_score: float) -> Color:
    """Red for a wrong object, orange for distance, otherwise by alignment."""
    if verdict is not None and not verdict.is_valid:
        if verdict.reason in (FailureReason.TOO_FAR, FailureReason.TOO_CLOSE):
            return ORANGE
        return RED
    if alignment_score > 0.8:
        return BRIGHT_GREEN
    if alignment_score > 0.6:
        return GREEN
    return YELLOW


def _corner_markers(image: np.ndarray, x1: int, y1: int, x2: int, y2: int, color: Color, thickness: int):
    length = max(20, int(min(x2 - x1, y2 - y1) * 0.12))
    for cx, cy, dx, dy in ((x1, y1, 1, 1), (x2, y1, -1, 1), (x1, y2, 1, -1), (x2, y2, -1, -1)):
        cv2.line(image, (cx, cy), (cx + dx * length, cy), color, thickness + 1)
        cv2.line(image, (cx, cy), (cx, cy + dy * length), color, thickness + 1)


def draw_detection(
    frame: np.ndarray,
    detection: Optional[Detection],
    verdict: Optional[Verdict] = None,
    status_text: Optional[str] = None,
    corner_markers: bool = False,
) -> np.ndarray:
    """Return a copy of *frame* with the detection box, label and status line."""
    out = frame.copy()
    h, w = out.shape[:2]
    base = min(w, h)
    thickness = max(2, int(round(base * 0.006)))
    font_scale = max(0.5, base / 1000.0)

    if detection is not None:
        x1, y1, x2, y2 = (int(round(v)) for v in detection.box.to_xyxy())
        x1, x2 = max(0, min(x1, w - 1)), max(0, min(x2, w - 1))
        y1, y2 = max(0, min(y1, h - 1)), max(0, min(y2, h - 1))

        if x2 - x1 >= _MIN_DRAW_SIZE and y2 - y1 >= _MIN_DRAW_SIZE:
            color = box_color(verdict, detection.alignment_score)
            cv2.rectangle(out, (x1, y1), (x2, y2), color, thickness)
            if corner_markers:
                _corner_markers(out, x1, y1, x2, y2, color, thickness)

            label = f"ID card {detection.confidence * 100:.0f}% | align {detection.alignment_score * 100:.0f}%"
            (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, 1)
            ty = y1 - 8 if y1 - th - 8 > 0 else y2 + th + 8
            cv2.rectangle(out, (x1, ty - th - 4), (x1 + tw + 8, ty + baseline), color, cv2.FILLED)
            cv2.putText(out, label, (x1 + 4, ty), cv2.FONT_HERSHEY_SIMPLEX, font_scale, (0, 0, 0), 1, cv2.LINE_AA)

    if status_text:
        cv2.putText(
            out, status_text, (10, h - 12), cv2.FONT_HERSHEY_SIMPLEX, font_scale, (255, 255, 255), 2, cv2.LINE_AA
        )
    return out
