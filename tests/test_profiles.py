"""Tests for cardcam.profiles module."""

import pytest

from cardcam.enhancement import EnhancementTier
from cardcam.geometry import CARD_ASPECT_RATIO, LENIENT_SCORING, STRICT_SCORING
from cardcam.profiles import (
    DESKTOP_PROFILE,
    MOBILE_PROFILE,
    DeviceCapabilities,
    PerformanceTier,
)

IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15"
DESKTOP_UA = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"


class TestProfiles:
    def test_mobile_is_more_lenient(self):
        assert MOBILE_PROFILE.min_consecutive_detections == 3
        assert DESKTOP_PROFILE.min_consecutive_detections == 5
        assert MOBILE_PROFILE.confidence_threshold < DESKTOP_PROFILE.confidence_threshold
        assert MOBILE_PROFILE.min_detection_area_ratio < DESKTOP_PROFILE.min_detection_area_ratio

    def test_scoring_presets(self):
        assert MOBILE_PROFILE.scoring is LENIENT_SCORING
        assert DESKTOP_PROFILE.scoring is STRICT_SCORING


class TestDeviceProbe:
    def test_mobile_user_agent(self):
        assert DeviceCapabilities.probe(user_agent=IPHONE_UA).is_mobile

    def test_desktop_user_agent(self):
        caps = DeviceCapabilities.probe(user_agent=DESKTOP_UA)
        assert not caps.is_mobile
        assert caps.profile is DESKTOP_PROFILE

    def test_touch_means_mobile(self):
        assert DeviceCapabilities.probe(user_agent=DESKTOP_UA, max_touch_points=5).is_mobile
        assert DeviceCapabilities.probe(has_touch_events=True).is_mobile

    def test_portrait_narrow_viewport(self):
        assert DeviceCapabilities.probe(viewport=(390, 844)).is_mobile
        assert not DeviceCapabilities.probe(viewport=(1920, 1080)).is_mobile

    @pytest.mark.parametrize(
        "memory,cores,tier",
        [
            (None, None, PerformanceTier.HIGH),
            (16, 8, PerformanceTier.HIGH),
            (2, 8, PerformanceTier.LOW),
            (2, 2, PerformanceTier.LOW),
            (6, 8, PerformanceTier.MEDIUM),
            (16, 2, PerformanceTier.MEDIUM),
        ],
    )
    def test_performance_tier(self, memory, cores, tier):
        caps = DeviceCapabilities.probe(device_memory_gb=memory, hardware_concurrency=cores)
        assert caps.performance_tier is tier


class TestDeviceCapabilities:
    @pytest.mark.parametrize(
        "caps,resolution",
        [
            (DeviceCapabilities(is_mobile=False), (1920, 1211)),
            (DeviceCapabilities(is_mobile=True, performance_tier=PerformanceTier.LOW), (1024, 646)),
            (DeviceCapabilities(is_mobile=True, performance_tier=PerformanceTier.MEDIUM), (1280, 808)),
            (DeviceCapabilities(is_mobile=True, performance_tier=PerformanceTier.HIGH), (1280, 808)),
            (
                DeviceCapabilities(is_mobile=True, performance_tier=PerformanceTier.HIGH, pixel_ratio=3.0),
                (1600, 1010),
            ),
        ],
    )
    def test_output_resolution(self, caps, resolution):
        assert caps.output_resolution == resolution
        w, h = resolution
        assert w / h == pytest.approx(CARD_ASPECT_RATIO, abs=0.01)

    def test_enhancement_tier(self):
        low = DeviceCapabilities(performance_tier=PerformanceTier.LOW)
        assert low.enhancement_tier is EnhancementTier.BASIC
        assert DeviceCapabilities(is_mobile=True, performance_tier=PerformanceTier.MEDIUM).enhancement_tier is (
            EnhancementTier.MOBILE
        )
        assert DeviceCapabilities(performance_tier=PerformanceTier.MEDIUM).enhancement_tier is (
            EnhancementTier.STANDARD
        )
        assert DeviceCapabilities().enhancement_tier is EnhancementTier.ADVANCED

    def test_jpeg_quality(self):
        assert DeviceCapabilities(performance_tier=PerformanceTier.LOW).jpeg_quality == 85
        assert DeviceCapabilities(performance_tier=PerformanceTier.MEDIUM).jpeg_quality == 90
        assert DeviceCapabilities().jpeg_quality == 95
