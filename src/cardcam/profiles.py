"""Device parameter profiles and capability probing.

A session picks one :class:`DeviceProfile` up front and keeps it.  Mobile
cameras deliver smaller, noisier card images, so the mobile profile accepts
smaller boxes, looser aspect ratios and fewer confirmation frames.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from .enhancement import EnhancementTier
from .geometry import LENIENT_SCORING, STRICT_SCORING, ScoringParams

log = logging.getLogger(__name__)

_MOBILE_UA = re.compile(r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE)


@dataclass(frozen=True)
class DeviceProfile:
    """Thresholds used by the validity classifier and the debouncer."""

    name: str
    confidence_threshold: float
    min_consecutive_detections: int
    min_detection_area_ratio: float
    max_detection_area_ratio: float
    alignment_threshold: float
    aspect_ratio_min: float
    aspect_ratio_max: float
    edge_distance_threshold: float
    min_box_width: float
    min_box_height: float
    crop_margin: float
    check_edge_distance: bool = True
    scoring: ScoringParams = field(default=LENIENT_SCORING)


MOBILE_PROFILE = DeviceProfile(
    name="mobile",
    confidence_threshold=0.45,
    min_consecutive_detections=3,
    min_detection_area_ratio=0.12,
    max_detection_area_ratio=0.88,
    alignment_threshold=0.25,
    aspect_ratio_min=1.15,
    aspect_ratio_max=2.1,
    edge_distance_threshold=0.08,
    min_box_width=80,
    min_box_height=50,
    crop_margin=0.02,
    scoring=LENIENT_SCORING,
)

DESKTOP_PROFILE = DeviceProfile(
    name="desktop",
    confidence_threshold=0.6,
    min_consecutive_detections=5,
    min_detection_area_ratio=0.25,
    max_detection_area_ratio=0.85,
    alignment_threshold=0.35,
    aspect_ratio_min=1.3,
    aspect_ratio_max=1.9,
    edge_distance_threshold=0.12,
    min_box_width=120,
    min_box_height=75,
    crop_margin=0.04,
    scoring=STRICT_SCORING,
)


class PerformanceTier(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Output resolutions, all ~1.585:1
_MOBILE_RESOLUTIONS = {
    PerformanceTier.LOW: (1024, 646),
    PerformanceTier.MEDIUM: (1280, 808),
    PerformanceTier.HIGH: (1280, 808),
}
_MOBILE_HIGH_DPI_RESOLUTION = (1600, 1010)
_DESKTOP_RESOLUTION = (1920, 1211)

_JPEG_QUALITY = {
    PerformanceTier.LOW: 85,
    PerformanceTier.MEDIUM: 90,
    PerformanceTier.HIGH: 95,
}


@dataclass(frozen=True)
class DeviceCapabilities:
    """Static facts about the capture device, decided once per session."""

    is_mobile: bool = False
    performance_tier: PerformanceTier = PerformanceTier.HIGH
    pixel_ratio: float = 1.0

    @property
    def is_high_dpi(self) -> bool:
        return self.pixel_ratio > 1.5

    @property
    def profile(self) -> DeviceProfile:
        return MOBILE_PROFILE if self.is_mobile else DESKTOP_PROFILE

    @property
    def output_resolution(self) -> Tuple[int, int]:
        """(width, height) of the captured card image."""
        if not self.is_mobile:
            return _DESKTOP_RESOLUTION
        if self.performance_tier is PerformanceTier.HIGH and self.is_high_dpi:
            return _MOBILE_HIGH_DPI_RESOLUTION
        return _MOBILE_RESOLUTIONS[self.performance_tier]

    @property
    def enhancement_tier(self) -> EnhancementTier:
        if self.performance_tier is PerformanceTier.LOW:
            return EnhancementTier.BASIC
        if self.performance_tier is PerformanceTier.MEDIUM:
            return EnhancementTier.MOBILE if self.is_mobile else EnhancementTier.STANDARD
        return EnhancementTier.ADVANCED

    @property
    def jpeg_quality(self) -> int:
        return _JPEG_QUALITY[self.performance_tier]

    @classmethod
    def probe(
        cls,
        user_agent: str = "",
        has_touch_events: bool = False,
        max_touch_points: int = 0,
        viewport: Optional[Tuple[int, int]] = None,
        device_memory_gb: Optional[float] = None,
        hardware_concurrency: Optional[int] = None,
        pixel_ratio: float = 1.0,
    ) -> "DeviceCapabilities":
        """Classify a device from the facts a client can report.

        Args:
            user_agent: Client user-agent string.
            has_touch_events: Whether the client exposes touch events.
            max_touch_points: Reported simultaneous touch points.
            viewport: Optional (width, height); portrait viewports narrower
                than 768 px count as mobile.
            device_memory_gb: Reported device memory.
            hardware_concurrency: Reported CPU cores.
            pixel_ratio: Device pixel ratio.
        """
        is_mobile = (
            has_touch_events
            or max_touch_points > 0
            or bool(_MOBILE_UA.search(user_agent or ""))
        )
        if viewport is not None and not is_mobile:
            vw, vh = viewport
            is_mobile = vw < 768 and vh > vw

        tier = PerformanceTier.HIGH
        if device_memory_gb is not None:
            if device_memory_gb < 4:
                tier = PerformanceTier.LOW
            elif device_memory_gb < 8:
                tier = PerformanceTier.MEDIUM
        if hardware_concurrency is not None and hardware_concurrency < 4 and tier is not PerformanceTier.LOW:
            tier = PerformanceTier.MEDIUM

        caps = cls(is_mobile=is_mobile, performance_tier=tier, pixel_ratio=pixel_ratio)
        log.info(
            f"Device probe: {'mobile' if is_mobile else 'desktop'}, "
            f"tier={tier.value}, resolution={caps.output_resolution}"
        )
        return caps
