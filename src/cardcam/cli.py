"""Command-line entry point.

Usage:
    # Live camera with preview window, submit when captured
    cardcam run --camera 0 --preview --verification-id 1234

    # Run the pipeline over a recorded video and save the capture
    cardcam replay clip.mp4 --output card.jpg

    # Offline crop + enhancement of a still image
    cardcam enhance frame.jpg --box 400,200,300,189 --output card.jpg
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import cv2

from .camera import CameraSource
from .capture import CardCropper
from .config import SessionConfig
from .debounce import ResetPolicy
from .decoding import OutputLayout
from .enhancement import EnhancementPipeline, EnhancementTier
from .errors import CardCamError, handle_error
from .geometry import BoundingBox
from .overlay import draw_detection
from .profiles import PerformanceTier
from .session import CaptureSession

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )


def parse_box(value: str) -> BoundingBox:
    """``x,y,w,h`` -> :class:`BoundingBox`."""
    try:
        x, y, w, h = (float(v) for v in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected x,y,w,h, got {value!r}")
    if w <= 0 or h <= 0:
        raise argparse.ArgumentTypeError("box width and height must be positive")
    return BoundingBox(x, y, w, h)


def _add_session_args(parser: argparse.ArgumentParser):
    parser.add_argument("--model", dest="model_path", help="Path to detector ONNX model")
    parser.add_argument("--input-size", type=int, help="Model input size (default: 640)")
    parser.add_argument(
        "--layout",
        dest="output_layout",
        type=OutputLayout,
        choices=list(OutputLayout),
        help="Detector output layout (default: auto)",
    )
    parser.add_argument(
        "--reset-policy",
        type=ResetPolicy,
        choices=list(ResetPolicy),
        help="Debounce counter behaviour on a bad frame (default: hard)",
    )
    parser.add_argument("--mobile", action="store_true", default=None, help="Use the mobile profile")
    parser.add_argument(
        "--tier",
        dest="performance_tier",
        type=PerformanceTier,
        choices=list(PerformanceTier),
        help="Device performance tier (default: high)",
    )
    parser.add_argument("--no-tensorrt", dest="use_tensorrt", action="store_false", default=None)
    parser.add_argument("--nms", dest="overlap_threshold", type=float, help="Merge detections overlapping above this IoU")
    parser.add_argument("--output", "-o", default="card_capture.jpg", help="Where to write the capture")


def _config_from_args(args: argparse.Namespace, **extra) -> SessionConfig:
    keys = (
        "model_path",
        "input_size",
        "output_layout",
        "reset_policy",
        "mobile",
        "performance_tier",
        "use_tensorrt",
        "overlap_threshold",
    )
    overrides = {k: getattr(args, k, None) for k in keys}
    overrides.update(extra)
    return SessionConfig.from_env(**overrides)


def _write_capture(session: CaptureSession, output: str) -> bool:
    if session.captured is None:
        log.warning("No card captured")
        return False
    Path(output).write_bytes(session.captured.to_jpeg())
    log.info(f"Capture written to {output}")
    return True


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_run(args: argparse.Namespace) -> int:
    config = _config_from_args(
        args,
        camera_index=args.camera,
        verify_url=args.verify_url,
        verification_id=args.verification_id,
        auto_capture=False if args.manual else None,
    )
    session = CaptureSession(config=config)
    session.status.subscribe(lambda s: log.info(f"[{s.kind.value}] {s.message}"))

    def preview(frame, sess: CaptureSession):
        best = sess.last_detections[0] if sess.last_detections else None
        shown = draw_detection(frame, best, sess.last_verdict, sess.status.value.message)
        cv2.imshow("cardcam", cv2.cvtColor(shown, cv2.COLOR_RGB2BGR))
        key = cv2.waitKey(1) & 0xFF
        if key == ord("q"):
            sess.stop()
        elif key == ord("c"):
            sess.manual_capture()
        elif key == ord("a"):
            sess.toggle_auto_capture()
        elif key == ord("r"):
            sess.recapture()

    if not session.start():
        session.close()
        return 1
    try:
        try:
            asyncio.run(session.run(stop_after_capture=True, on_frame=preview if args.preview else None))
        except KeyboardInterrupt:
            log.info("Interrupted")
        finally:
            if session.running:
                session.stop()
            if args.preview:
                cv2.destroyAllWindows()

        if not _write_capture(session, args.output):
            return 1
        if session.submitter is not None:
            result = asyncio.run(session.submit())
            print(json.dumps({"success": result.success, "message": result.message, "data": result.payload}, indent=2))
            return 0 if result.success else 1
        return 0
    finally:
        session.close()


def cmd_replay(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    camera = CameraSource(args.video)
    session = CaptureSession(config=config, camera=camera)
    if not session.start():
        session.close()
        return 1
    try:
        asyncio.run(session.process_frames(camera.frames(), max_frames=args.max_frames))
    finally:
        session.close()

    if session.captured is not None:
        print(json.dumps(session.captured.metadata(), indent=2))
    return 0 if _write_capture(session, args.output) else 1


def cmd_enhance(args: argparse.Namespace) -> int:
    bgr = cv2.imread(args.image)
    if bgr is None:
        log.error(f"Could not read image: {args.image}")
        return 1
    frame = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)

    config = _config_from_args(args)
    caps = config.capabilities()
    tier = args.enhancement or caps.enhancement_tier
    cropper = CardCropper(caps, pipeline=EnhancementPipeline(tier, high_dpi=caps.is_high_dpi))
    result = cropper.capture(frame, args.box)
    if not result.success:
        log.error(result.error)
        return 1

    Path(args.output).write_bytes(result.captured.to_jpeg())
    print(json.dumps(result.to_dict(), indent=2))
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cardcam", description="ID card auto-capture assistant")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Live camera capture")
    _add_session_args(run)
    run.add_argument("--camera", type=int, help="Camera device index")
    run.add_argument("--preview", action="store_true", help="Show a preview window (q quit, c capture, a toggle auto, r recapture)")
    run.add_argument("--manual", action="store_true", help="Start with auto-capture disabled")
    run.add_argument("--verify-url", help="Verification service base URL")
    run.add_argument("--verification-id", help="Submit the capture to this verification")
    run.set_defaults(func=cmd_run)

    replay = sub.add_parser("replay", help="Run the pipeline over a video file")
    _add_session_args(replay)
    replay.add_argument("video", help="Path to input video")
    replay.add_argument("--max-frames", type=int, help="Stop after this many frames")
    replay.set_defaults(func=cmd_replay)

    enhance = sub.add_parser("enhance", help="Crop and enhance a card from a still image")
    _add_session_args(enhance)
    enhance.add_argument("image", help="Path to input image")
    enhance.add_argument("--box", type=parse_box, required=True, help="Card box as x,y,w,h in pixels")
    enhance.add_argument(
        "--enhancement",
        type=EnhancementTier,
        choices=list(EnhancementTier),
        help="Enhancement tier (default: from the device tier)",
    )
    enhance.set_defaults(func=cmd_enhance)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        return args.func(args)
    except CardCamError as e:
        handle_error(e)
        return 1
    except ValueError as e:
        log.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
