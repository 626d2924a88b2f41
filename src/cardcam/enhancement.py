"""Image enhancement for captured card crops.

All kernels work on RGB ``uint8`` images (H, W, 3) and return new arrays;
inputs are never modified.

Tiers (cheapest first):
    BASIC    - per-channel contrast stretch around mid-gray
    MOBILE   - stronger contrast + edge-gated 3x3 sharpening
    STANDARD - luma-only unsharp mask in YUV + levels
    ADVANCED - luma unsharp mask + chroma denoise + levels with gamma

Usage:
    from cardcam.enhancement import EnhancementPipeline, EnhancementTier

    pipeline = EnhancementPipeline(EnhancementTier.ADVANCED, high_dpi=True)
    enhanced = pipeline.apply(crop_rgb)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

log = logging.getLogger(__name__)


class EnhancementTier(Enum):
    BASIC = "basic"
    MOBILE = "mobile"
    STANDARD = "standard"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class EnhancementParams:
    """Knobs for :class:`EnhancementPipeline`.

    Steps run in order and are skipped when at their neutral value:
    contrast (1.0), selective sharpening (0.0), the YUV stage
    (``luma_pipeline=False``), levels (0, 255, gamma 1.0).
    """

    contrast: float = 1.0
    sharpen_amount: float = 0.0
    edge_threshold: float = 50.0
    luma_pipeline: bool = False
    unsharp_amount: float = 0.0
    unsharp_radius: float = 0.8
    unsharp_threshold: float = 4.0
    chroma_denoise: float = 0.0
    chroma_similarity: float = 20.0
    black_point: int = 0
    white_point: int = 255
    gamma: float = 1.0

    @property
    def has_levels(self) -> bool:
        return (self.black_point, self.white_point, self.gamma) != (0, 255, 1.0)


def params_for_tier(tier: EnhancementTier, high_dpi: bool = False) -> EnhancementParams:
    """Default parameters for *tier*; ``high_dpi`` sharpens harder at ADVANCED."""
    if tier is EnhancementTier.BASIC:
        return EnhancementParams(contrast=1.1)
    if tier is EnhancementTier.MOBILE:
        return EnhancementParams(contrast=1.25, sharpen_amount=0.4, edge_threshold=50.0)
    if tier is EnhancementTier.STANDARD:
        return EnhancementParams(
            luma_pipeline=True,
            unsharp_amount=0.6,
            unsharp_radius=0.8,
            unsharp_threshold=4,
            black_point=8,
            white_point=248,
        )
    return EnhancementParams(
        luma_pipeline=True,
        unsharp_amount=0.8 if high_dpi else 0.7,
        unsharp_radius=1.0 if high_dpi else 0.8,
        unsharp_threshold=3,
        chroma_denoise=0.3,
        chroma_similarity=20.0,
        black_point=5,
        white_point=250,
        gamma=1.1,
    )


def _to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


# ---------------------------------------------------------------------------
# Colorspace (ITU-R BT.601)
# ---------------------------------------------------------------------------


_RGB_TO_YUV = np.array(
    [
        [0.299, 0.587, 0.114],
        [-0.14713, -0.28886, 0.436],
        [0.615, -0.51499, -0.10001],
    ],
    dtype=np.float64,
)

_YUV_TO_RGB = np.array(
    [
        [1.0, 0.0, 1.13983],
        [1.0, -0.39465, -0.58060],
        [1.0, 2.03211, 0.0],
    ],
    dtype=np.float64,
)


def rgb_to_yuv(image: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split an RGB image into float Y, U, V planes (U and V offset by 128)."""
    yuv = image.astype(np.float64) @ _RGB_TO_YUV.T
    return yuv[..., 0], yuv[..., 1] + 128.0, yuv[..., 2] + 128.0


def yuv_to_rgb(y: np.ndarray, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Inverse of :func:`rgb_to_yuv`, rounded and clamped to ``uint8``."""
    yuv = np.stack([y, u - 128.0, v - 128.0], axis=-1)
    return _to_uint8(yuv @ _YUV_TO_RGB.T)


# ---------------------------------------------------------------------------
# Gaussian blur / unsharp mask
# ---------------------------------------------------------------------------


def gaussian_kernel(size: int, sigma: float) -> np.ndarray:
    """Normalized 1-D Gaussian of odd length *size*."""
    half = size // 2
    x = np.arange(size, dtype=np.float64) - half
    kernel = np.exp(-(x * x) / (2.0 * sigma * sigma))
    return kernel / kernel.sum()


def kernel_size_for_radius(radius: float) -> Tuple[int, float]:
    """(size, sigma) used for a blur of *radius*."""
    sigma = radius * 2.0
    size = max(3, int(sigma * 3) | 1)
    return size, sigma


def gaussian_blur(channel: np.ndarray, radius: float) -> np.ndarray:
    """Separable Gaussian blur of a single plane with edge clamping.

    Each pass is rounded to whole intensities, matching an 8-bit buffer.
    """
    size, sigma = kernel_size_for_radius(radius)
    kernel = gaussian_kernel(size, sigma).astype(np.float32)
    src = channel.astype(np.float32)

    horizontal = cv2.filter2D(src, -1, kernel.reshape(1, -1), borderType=cv2.BORDER_REPLICATE)
    horizontal = np.clip(np.rint(horizontal), 0, 255)
    vertical = cv2.filter2D(horizontal, -1, kernel.reshape(-1, 1), borderType=cv2.BORDER_REPLICATE)
    return np.clip(np.rint(vertical), 0, 255)


def unsharp_mask(
    channel: np.ndarray,
    amount: float,
    radius: float,
    threshold: float,
) -> np.ndarray:
    """Sharpen a plane by adding back ``amount`` x (original - blurred).

    Only pixels whose difference from the blur exceeds *threshold* change,
    which keeps flat regions (and their noise) untouched.
    """
    original = channel.astype(np.float64)
    if amount == 0:
        return original.copy()

    blurred = gaussian_blur(original, radius)
    diff = original - blurred
    sharpened = np.clip(np.rint(original + amount * diff), 0, 255)
    return np.where(np.abs(diff) > threshold, sharpened, original)


# ---------------------------------------------------------------------------
# Chroma denoise
# ---------------------------------------------------------------------------


_SMOOTH_KERNEL = np.array([[1, 2, 1], [2, 4, 2], [1, 2, 1]], dtype=np.float32) / 16.0


def denoise_chroma(channel: np.ndarray, strength: float, similarity: float = 20.0) -> np.ndarray:
    """Blend interior pixels toward their 3x3 weighted average.

    Pixels that differ from the average by *similarity* or more are treated
    as detail and left alone; the one-pixel border is never touched.
    """
    original = channel.astype(np.float64)
    if strength <= 0 or original.shape[0] < 3 or original.shape[1] < 3:
        return original.copy()

    smoothed = cv2.filter2D(original.astype(np.float32), -1, _SMOOTH_KERNEL).astype(np.float64)

    mask = np.abs(original - smoothed) < similarity
    mask[0, :] = mask[-1, :] = False
    mask[:, 0] = mask[:, -1] = False

    blended = original * (1.0 - strength) + smoothed * strength
    return np.where(mask, blended, original)


# ---------------------------------------------------------------------------
# Point operations
# ---------------------------------------------------------------------------


def contrast_stretch(image: np.ndarray, factor: float) -> np.ndarray:
    """Linear contrast around 128, per channel."""
    table = _to_uint8((np.arange(256, dtype=np.float64) - 128.0) * factor + 128.0)
    return cv2.LUT(image, table)


def levels_table(black_point: int, white_point: int, gamma: float = 1.0) -> np.ndarray:
    """256-entry lookup table for a levels adjustment."""
    values = np.arange(256, dtype=np.float64)
    span = float(white_point - black_point)
    normalized = np.clip((values - black_point) / span, 0.0, 1.0)
    if gamma != 1.0:
        normalized = normalized ** (1.0 / gamma)
    table = _to_uint8(normalized * 255.0)
    table[values <= black_point] = 0
    table[values >= white_point] = 255
    return table


def apply_levels(image: np.ndarray, black_point: int, white_point: int, gamma: float = 1.0) -> np.ndarray:
    """Stretch [black_point, white_point] to the full range, optional gamma."""
    if white_point == black_point:
        return image.copy()
    return cv2.LUT(image, levels_table(black_point, white_point, gamma))


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """BT.601 luma replicated into three channels."""
    gray = _to_uint8(image.astype(np.float64) @ _RGB_TO_YUV[0])
    return np.repeat(gray[..., np.newaxis], 3, axis=2)


# ---------------------------------------------------------------------------
# Selective sharpening
# ---------------------------------------------------------------------------


_SHARPEN_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]], dtype=np.float32)


def selective_sharpen(image: np.ndarray, amount: float, edge_threshold: float = 50.0) -> np.ndarray:
    """3x3 sharpening applied only where local edge strength exceeds *edge_threshold*.

    Edge strength is the sum of absolute differences between a pixel and its
    eight neighbours, per channel.  Border pixels are left unchanged.
    """
    h, w = image.shape[:2]
    out = image.copy()
    if amount <= 0 or h < 3 or w < 3:
        return out

    src = image.astype(np.float32)
    center = src[1:-1, 1:-1]
    edge = np.zeros_like(center)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            edge += np.abs(src[1 + dy : h - 1 + dy, 1 + dx : w - 1 + dx] - center)

    sharp = cv2.filter2D(src, -1, _SHARPEN_KERNEL)[1:-1, 1:-1]
    enhanced = _to_uint8(center + (sharp - center) * amount)
    out[1:-1, 1:-1] = np.where(edge > edge_threshold, enhanced, image[1:-1, 1:-1])
    return out


# ---------------------------------------------------------------------------
# EnhancementPipeline
# ---------------------------------------------------------------------------


class EnhancementPipeline:
    """Applies the enhancement steps for one tier to RGB images.

    Args:
        tier: Enhancement tier.
        params: Explicit parameters; overrides the tier defaults.
        high_dpi: Stronger sharpening for high pixel-density devices.
    """

    def __init__(
        self,
        tier: EnhancementTier = EnhancementTier.STANDARD,
        params: Optional[EnhancementParams] = None,
        high_dpi: bool = False,
    ):
        self.tier = tier
        self.params = params or params_for_tier(tier, high_dpi=high_dpi)

    def apply(self, image: np.ndarray) -> np.ndarray:
        """Return an enhanced copy of *image* (RGB ``uint8``)."""
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Expected an RGB image, got shape {image.shape}")

        p = self.params
        out = np.ascontiguousarray(image, dtype=np.uint8)

        if p.contrast != 1.0:
            out = contrast_stretch(out, p.contrast)

        if p.sharpen_amount > 0:
            out = selective_sharpen(out, p.sharpen_amount, p.edge_threshold)

        if p.luma_pipeline:
            y, u, v = rgb_to_yuv(out)
            y = unsharp_mask(y, p.unsharp_amount, p.unsharp_radius, p.unsharp_threshold)
            if p.chroma_denoise > 0:
                u = denoise_chroma(u, p.chroma_denoise, p.chroma_similarity)
                v = denoise_chroma(v, p.chroma_denoise, p.chroma_similarity)
            out = yuv_to_rgb(y, u, v)

        if p.has_levels:
            out = apply_levels(out, p.black_point, p.white_point, p.gamma)

        log.debug(f"{self.tier.value} enhancement applied to {image.shape[1]}x{image.shape[0]}")
        return out
