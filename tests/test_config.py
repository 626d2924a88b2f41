"""Tests for cardcam.config module."""

import pytest

from cardcam.config import SessionConfig
from cardcam.debounce import ResetPolicy
from cardcam.decoding import OutputLayout
from cardcam.profiles import DESKTOP_PROFILE, MOBILE_PROFILE, PerformanceTier


class TestSessionConfig:
    def test_defaults(self):
        config = SessionConfig.from_env(environ={})
        assert config.input_size == 640
        assert config.reset_policy is ResetPolicy.HARD
        assert config.output_layout is OutputLayout.AUTO
        assert config.auto_capture

    def test_from_environment(self):
        env = {
            "CARDCAM_MODEL_PATH": "/models/card.onnx",
            "CARDCAM_INPUT_SIZE": "320",
            "CARDCAM_RESET_POLICY": "soft_decay",
            "CARDCAM_OUTPUT_LAYOUT": "predictions_major",
            "CARDCAM_MOBILE": "yes",
            "CARDCAM_PERFORMANCE_TIER": "LOW",
            "CARDCAM_FRAME_INTERVAL": "0.05",
            "CARDCAM_VERIFICATION_ID": "abc",
            "CARDCAM_VERIFY_URL": "https://kyc.example.com/api",
            "CARDCAM_OVERLAP_THRESHOLD": "0.45",
        }
        config = SessionConfig.from_env(environ=env)
        assert config.model_path == "/models/card.onnx"
        assert config.input_size == 320
        assert config.reset_policy is ResetPolicy.SOFT_DECAY
        assert config.output_layout is OutputLayout.PREDICTIONS_MAJOR
        assert config.mobile is True
        assert config.performance_tier is PerformanceTier.LOW
        assert config.frame_interval == 0.05
        assert config.verification_id == "abc"
        assert config.verify_url == "https://kyc.example.com/api"
        assert config.overlap_threshold == 0.45

    def test_overrides_win_and_none_ignored(self):
        env = {"CARDCAM_INPUT_SIZE": "320", "CARDCAM_CAMERA_INDEX": "2"}
        config = SessionConfig.from_env(environ=env, input_size=416, camera_index=None)
        assert config.input_size == 416
        assert config.camera_index == 2

    def test_empty_value_ignored(self):
        assert SessionConfig.from_env(environ={"CARDCAM_INPUT_SIZE": ""}).input_size == 640

    @pytest.mark.parametrize(
        "name,value",
        [
            ("CARDCAM_INPUT_SIZE", "big"),
            ("CARDCAM_AUTO_CAPTURE", "maybe"),
            ("CARDCAM_RESET_POLICY", "sometimes"),
        ],
    )
    def test_invalid_value(self, name, value):
        with pytest.raises(ValueError, match=name):
            SessionConfig.from_env(environ={name: value})

    def test_capabilities(self):
        assert SessionConfig().capabilities().profile is DESKTOP_PROFILE
        mobile = SessionConfig(mobile=True, performance_tier=PerformanceTier.LOW).capabilities()
        assert mobile.profile is MOBILE_PROFILE
        assert mobile.output_resolution == (1024, 646)

    def test_camera_config(self):
        assert SessionConfig(camera_width=640, camera_height=480).camera_config() == {"width": 640, "height": 480}
