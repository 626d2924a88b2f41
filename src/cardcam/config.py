"""Session configuration.

Defaults can be overridden by ``CARDCAM_*`` environment variables via
:meth:`SessionConfig.from_env`; the CLI overlays its own flags on top.

    CARDCAM_MODEL_PATH        detector ONNX file
    CARDCAM_INPUT_SIZE        model input side (640)
    CARDCAM_CONFIDENCE_FLOOR  decoder low-pass floor (0.4)
    CARDCAM_OUTPUT_LAYOUT     auto | predictions_major | features_major
    CARDCAM_CAMERA_INDEX      capture device index
    CARDCAM_CAMERA_WIDTH / CARDCAM_CAMERA_HEIGHT
    CARDCAM_FRAME_INTERVAL    seconds between frame ticks
    CARDCAM_RESET_POLICY      hard | soft_decay
    CARDCAM_AUTO_CAPTURE      1 / 0
    CARDCAM_MOBILE            1 / 0 (force the device class)
    CARDCAM_PERFORMANCE_TIER  low | medium | high
    CARDCAM_PIXEL_RATIO
    CARDCAM_USE_TENSORRT      1 / 0
    CARDCAM_VERIFY_URL        verification service base URL
    CARDCAM_VERIFICATION_ID
    CARDCAM_REQUEST_TIMEOUT   seconds
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

from .debounce import ResetPolicy
from .decoding import DEFAULT_CONFIDENCE_FLOOR, OutputLayout
from .profiles import DeviceCapabilities, PerformanceTier

log = logging.getLogger(__name__)

ENV_PREFIX = "CARDCAM_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


@dataclass
class SessionConfig:
    """Everything a :class:`~cardcam.session.CaptureSession` needs to start."""

    model_path: str = "models/card_detector.onnx"
    input_size: int = 640
    confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR
    output_layout: OutputLayout = OutputLayout.AUTO
    # IoU above which overlapping detections are merged; None keeps them all
    overlap_threshold: Optional[float] = None
    use_tensorrt: bool = True

    camera_index: int = 0
    camera_width: int = 1280
    camera_height: int = 720
    frame_interval: float = 1 / 30

    reset_policy: ResetPolicy = ResetPolicy.HARD
    auto_capture: bool = True

    # Device probe overrides; None means "desktop, high tier"
    mobile: Optional[bool] = None
    performance_tier: Optional[PerformanceTier] = None
    pixel_ratio: float = 1.0

    verify_url: Optional[str] = None
    verification_id: Optional[str] = None
    request_timeout: float = 30.0

    def capabilities(self) -> DeviceCapabilities:
        return DeviceCapabilities(
            is_mobile=bool(self.mobile),
            performance_tier=self.performance_tier or PerformanceTier.HIGH,
            pixel_ratio=self.pixel_ratio,
        )

    def camera_config(self) -> Dict[str, Any]:
        return {"width": self.camera_width, "height": self.camera_height}

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "SessionConfig":
        """Build a config from ``CARDCAM_*`` variables, then apply *overrides*.

        Raises:
            ValueError: If a variable cannot be parsed.
        """
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(f.name, raw)

        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        log.debug(f"Session config: {config}")
        return config


def _coerce(name: str, raw: str) -> Any:
    try:
        if name in ("input_size", "camera_index", "camera_width", "camera_height"):
            return int(raw)
        if name in ("confidence_floor", "overlap_threshold", "frame_interval", "pixel_ratio", "request_timeout"):
            return float(raw)
        if name in ("use_tensorrt", "auto_capture", "mobile"):
            return _parse_bool(raw)
        if name == "output_layout":
            return OutputLayout(raw.strip().lower())
        if name == "reset_policy":
            return ResetPolicy(raw.strip().lower())
        if name == "performance_tier":
            return PerformanceTier(raw.strip().lower())
    except ValueError as e:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from e
    return raw
