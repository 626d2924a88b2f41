"""Cropping, resampling and enhancement of a captured card.

The crop is taken from the full-resolution RGB frame, corrected to the card
aspect ratio, padded by a small margin and resampled to the device output
resolution before the tier's enhancement runs.

Classes:
    CropRegion    - Integer pixel rectangle cut from the source frame
    CapturedImage - Read-only card image plus capture metadata
    CaptureResult - Success flag, image or error
    CardCropper   - Auto and manual capture for one device
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import cv2
import numpy as np

from .enhancement import EnhancementPipeline, EnhancementTier, apply_levels, to_grayscale
from .errors import CaptureError, InvalidCropError
from .geometry import CARD_ASPECT_RATIO, BoundingBox
from .profiles import DeviceCapabilities, DeviceProfile

log = logging.getLogger(__name__)

MANUAL_CAPTURE_WIDTH = 640

# Levels used for the high-contrast variant
_HIGH_CONTRAST_LEVELS = (30, 220)


# ---------------------------------------------------------------------------
# Crop geometry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CropRegion:
    x: int
    y: int
    width: int
    height: int

    def slice(self, frame: np.ndarray) -> np.ndarray:
        return frame[self.y : self.y + self.height, self.x : self.x + self.width]


def compute_crop_region(
    box: BoundingBox,
    frame_width: int,
    frame_height: int,
    margin: float,
    aspect_ratio: float = CARD_ASPECT_RATIO,
) -> CropRegion:
    """Card-shaped crop around *box*, clamped to the frame.

    The height is recomputed from the box width so the crop matches the card
    aspect ratio, centered vertically on the detected box.  ``margin`` is a
    fraction of the (adjusted) box size added on every side.

    Raises:
        InvalidCropError: If nothing of the crop lies inside the frame.
    """
    adjusted_height = box.width / aspect_ratio
    adjusted_y = box.y + (box.height - adjusted_height) / 2.0
    if adjusted_height <= 0:
        adjusted_height = box.height
    if adjusted_y < 0:
        adjusted_y = box.y

    margin_x = box.width * margin
    margin_y = adjusted_height * margin

    crop_x = max(0.0, box.x - margin_x)
    crop_y = max(0.0, adjusted_y - margin_y)
    crop_w = min(box.width + 2 * margin_x, frame_width - crop_x)
    crop_h = min(adjusted_height + 2 * margin_y, frame_height - crop_y)

    x0, y0 = int(round(crop_x)), int(round(crop_y))
    x1 = min(frame_width, int(round(crop_x + crop_w)))
    y1 = min(frame_height, int(round(crop_y + crop_h)))
    if x1 - x0 <= 0 or y1 - y0 <= 0:
        raise InvalidCropError(crop_w, crop_h)
    return CropRegion(x=x0, y=y0, width=x1 - x0, height=y1 - y0)


def resample(image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Bilinear resize to ``(width, height)``; area filter when shrinking."""
    width, height = size
    src_h, src_w = image.shape[:2]
    interpolation = cv2.INTER_AREA if width < src_w and height < src_h else cv2.INTER_LINEAR
    return cv2.resize(image, (width, height), interpolation=interpolation)


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------


def encode_jpeg(image_rgb: np.ndarray, quality: int = 95) -> bytes:
    """Encode an RGB image as JPEG bytes."""
    bgr = cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR)
    ok, buf = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        raise CaptureError("JPEG encoding failed", "ENCODE_FAILED", {"quality": quality})
    return buf.tobytes()


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def to_data_url(data: bytes) -> str:
    return f"data:image/jpeg;base64,{to_base64(data)}"


def _freeze(image: np.ndarray) -> np.ndarray:
    out = np.ascontiguousarray(image, dtype=np.uint8).copy()
    out.setflags(write=False)
    return out


# ---------------------------------------------------------------------------
# CapturedImage / CaptureResult
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CapturedImage:
    """A captured card image.  ``image`` is RGB ``uint8`` and read-only."""

    image: np.ndarray
    device_type: str
    enhancement_tier: Optional[EnhancementTier]
    enhancement_applied: bool
    mode: str = "auto"
    source_box: Optional[BoundingBox] = None
    jpeg_quality: int = 95
    captured_at: float = field(default_factory=time.time)

    @property
    def resolution(self) -> Tuple[int, int]:
        """(width, height)."""
        return (self.image.shape[1], self.image.shape[0])

    @property
    def aspect_ratio(self) -> float:
        w, h = self.resolution
        return w / h

    def to_jpeg(self, quality: Optional[int] = None) -> bytes:
        return encode_jpeg(self.image, quality or self.jpeg_quality)

    def to_base64(self, quality: Optional[int] = None) -> str:
        return to_base64(self.to_jpeg(quality))

    def to_data_url(self, quality: Optional[int] = None) -> str:
        return to_data_url(self.to_jpeg(quality))

    def grayscale(self) -> np.ndarray:
        return grayscale_variant(self.image)

    def high_contrast(self) -> np.ndarray:
        return high_contrast_variant(self.image)

    def metadata(self) -> Dict[str, Any]:
        w, h = self.resolution
        return {
            "resolution": {"width": w, "height": h},
            "device_type": self.device_type,
            "enhancement_tier": self.enhancement_tier.value if self.enhancement_tier else None,
            "enhancement_applied": self.enhancement_applied,
            "mode": self.mode,
            "source_box": list(self.source_box.to_xyxy()) if self.source_box else None,
            "capture_time": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.captured_at)),
        }


@dataclass
class CaptureResult:
    """Outcome of one capture attempt."""

    success: bool
    captured: Optional[CapturedImage] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.captured is not None:
            result["metadata"] = self.captured.metadata()
        if self.error:
            result["error"] = self.error
            result["error_code"] = self.error_code
        return result


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


def grayscale_variant(image: np.ndarray) -> np.ndarray:
    return _freeze(to_grayscale(image))


def high_contrast_variant(image: np.ndarray) -> np.ndarray:
    black, white = _HIGH_CONTRAST_LEVELS
    return _freeze(apply_levels(image, black, white))


def create_variants(image: np.ndarray) -> Dict[str, np.ndarray]:
    """Original plus grayscale and high-contrast copies."""
    return {
        "original": image,
        "grayscale": grayscale_variant(image),
        "high_contrast": high_contrast_variant(image),
    }


# ---------------------------------------------------------------------------
# CardCropper
# ---------------------------------------------------------------------------


class CardCropper:
    """Produces :class:`CapturedImage` objects for one device.

    Args:
        capabilities: Device facts; decide output resolution, enhancement
            tier and JPEG quality.
        profile: Profile whose ``crop_margin`` pads the crop.  Defaults to
            the profile implied by *capabilities*.
        pipeline: Enhancement pipeline override.
    """

    def __init__(
        self,
        capabilities: Optional[DeviceCapabilities] = None,
        profile: Optional[DeviceProfile] = None,
        pipeline: Optional[EnhancementPipeline] = None,
    ):
        self.capabilities = capabilities or DeviceCapabilities()
        self.profile = profile or self.capabilities.profile
        self.pipeline = pipeline or EnhancementPipeline(
            self.capabilities.enhancement_tier, high_dpi=self.capabilities.is_high_dpi
        )

    @property
    def device_type(self) -> str:
        return "mobile" if self.capabilities.is_mobile else "desktop"

    def _enhance(self, image: np.ndarray) -> Tuple[np.ndarray, bool]:
        try:
            return self.pipeline.apply(image), True
        except Exception as e:
            log.warning(f"Enhancement failed, using basic capture: {e}")
            return image, False

    def capture(self, frame: np.ndarray, box: BoundingBox) -> CaptureResult:
        """Crop *box* out of *frame* (RGB), resample and enhance it.

        Never raises; failures come back as an unsuccessful result.
        """
        try:
            if frame is None or frame.ndim != 3 or frame.size == 0:
                raise InvalidCropError(0, 0)
            frame_h, frame_w = frame.shape[:2]
            region = compute_crop_region(box, frame_w, frame_h, self.profile.crop_margin)
            log.debug(f"Crop area: {region.width}x{region.height} at ({region.x}, {region.y})")

            resized = resample(region.slice(frame), self.capabilities.output_resolution)
            enhanced, applied = self._enhance(resized)
        except InvalidCropError as e:
            log.error(f"{e.message}: {e.details}")
            return CaptureResult(success=False, error=e.message, error_code=e.error_code)
        except Exception as e:
            log.error(f"Error during capture: {e}")
            return CaptureResult(
                success=False, error="Capture failed - please try again", error_code="CAPTURE_FAILED"
            )

        captured = CapturedImage(
            image=_freeze(enhanced),
            device_type=self.device_type,
            enhancement_tier=self.pipeline.tier,
            enhancement_applied=applied,
            mode="auto",
            source_box=box,
            jpeg_quality=self.capabilities.jpeg_quality,
        )
        w, h = captured.resolution
        log.info(f"Card captured ({w}x{h}, {self.pipeline.tier.value}, enhanced={applied})")
        return CaptureResult(success=True, captured=captured)

    def capture_manual(self, frame: np.ndarray) -> CaptureResult:
        """Whole frame resized to 640 px wide, keeping the frame aspect ratio."""
        if frame is None or frame.ndim != 3 or frame.size == 0:
            return CaptureResult(success=False, error="No frame available", error_code="FRAME_NOT_READY")

        frame_h, frame_w = frame.shape[:2]
        height = max(1, int(round(MANUAL_CAPTURE_WIDTH * frame_h / frame_w)))
        resized = resample(frame, (MANUAL_CAPTURE_WIDTH, height))
        captured = CapturedImage(
            image=_freeze(resized),
            device_type=self.device_type,
            enhancement_tier=None,
            enhancement_applied=False,
            mode="manual",
            jpeg_quality=self.capabilities.jpeg_quality,
        )
        log.info(f"Card captured manually ({MANUAL_CAPTURE_WIDTH}x{height})")
        return CaptureResult(success=True, captured=captured)
