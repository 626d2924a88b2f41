"""Tests for cardcam.cli module."""

import argparse
import json

import cv2
import numpy as np
import pytest

from cardcam.cli import _config_from_args, build_parser, main, parse_box
from cardcam.debounce import ResetPolicy
from cardcam.geometry import BoundingBox


class TestParseBox:
    def test_valid(self):
        assert parse_box("400,200,300,189") == BoundingBox(400, 200, 300, 189)

    @pytest.mark.parametrize("value", ["1,2,3", "a,b,c,d", "0,0,0,10"])
    def test_invalid(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_box(value)


class TestParser:
    def test_replay_args(self):
        args = build_parser().parse_args(["replay", "clip.mp4", "--reset-policy", "soft_decay", "--max-frames", "50"])
        assert args.video == "clip.mp4"
        assert args.reset_policy is ResetPolicy.SOFT_DECAY
        assert args.max_frames == 50
        assert args.mobile is None
        assert args.overlap_threshold is None

    def test_overlap_threshold_reaches_config(self):
        args = build_parser().parse_args(["replay", "clip.mp4", "--nms", "0.45"])
        assert _config_from_args(args).overlap_threshold == 0.45

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestEnhanceCommand:
    def test_writes_capture(self, tmp_path, capsys):
        image = tmp_path / "frame.png"
        cv2.imwrite(str(image), np.full((720, 1280, 3), 128, dtype=np.uint8))
        output = tmp_path / "card.jpg"

        code = main(["enhance", str(image), "--box", "400,200,300,189", "--tier", "low", "-o", str(output)])
        assert code == 0
        assert output.read_bytes()[:2] == b"\xff\xd8"
        result = json.loads(capsys.readouterr().out)
        assert result["metadata"]["resolution"] == {"width": 1920, "height": 1211}

    def test_unreadable_image(self, tmp_path):
        assert main(["enhance", str(tmp_path / "missing.png"), "--box", "0,0,10,10"]) == 1
