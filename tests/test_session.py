"""Tests for cardcam.session module."""

import asyncio
import time
from dataclasses import replace

import numpy as np
import pytest

from conftest import encode_boxes

from cardcam.config import SessionConfig
from cardcam.debounce import ResetPolicy
from cardcam.decoding import SingleOutput
from cardcam.errors import CameraUnavailableError
from cardcam.geometry import BoundingBox, FrameDimensions
from cardcam.profiles import MOBILE_PROFILE, DeviceCapabilities, PerformanceTier
from cardcam.session import CaptureSession
from cardcam.status import StatusKind
from cardcam.submission import SubmissionResult
from cardcam.validity import FailureReason

DIMS = FrameDimensions.for_frame(1280, 720, 640)

# Centered card covering ~40% of a 720p frame
GOOD = BoundingBox(258, 119, 764, 482)
# Far too wide for an ID card
WRONG_SHAPE = BoundingBox(190, 210, 900, 300)
# Card-shaped, ~6% of the frame
CARD = BoundingBox(400, 200, 300, 189)


def output_for(box, conf=0.95):
    boxes = [] if box is None else [(box, conf)]
    return SingleOutput(encode_boxes(boxes, DIMS))


class FakeDetector:
    """Returns scripted outputs; the last one repeats."""

    def __init__(self, boxes, delay=0.0):
        self.outputs = [output_for(b) for b in boxes]
        self.delay = delay
        self.calls = 0

    def predict(self, tensor):
        assert tensor.shape == (1, 640, 640, 3)
        if self.delay:
            time.sleep(self.delay)
        out = self.outputs[min(self.calls, len(self.outputs) - 1)]
        self.calls += 1
        return out


class BrokenDetector:
    def predict(self, tensor):
        raise RuntimeError("CUDA error: device lost")


class FakeCamera:
    """Video-file-like source serving *count* copies of one frame."""

    def __init__(self, frame, count=10, fail_opens=0):
        self.frame = frame
        self.remaining = count
        self.fail_opens = fail_opens
        self.opened = False
        self.released = False
        self.is_device = False

    def open(self):
        if self.fail_opens:
            self.fail_opens -= 1
            raise CameraUnavailableError(0, "device busy")
        self.opened = True
        return self

    def read(self):
        if self.remaining <= 0:
            return None
        self.remaining -= 1
        return self.frame

    def release(self):
        self.released = True


class FakeSubmitter:
    def __init__(self, success=True):
        self.success = success
        self.submitted = []
        self.closed = False

    def submit(self, image):
        self.submitted.append(image)
        if self.success:
            return SubmissionResult(success=True, message="Card verified successfully", status_code=200)
        return SubmissionResult(success=False, message="Verification failed: bad", status_code=400)

    def close(self):
        self.closed = True


class FlakySubmitter(FakeSubmitter):
    """Fails the first *failures* submissions, then succeeds."""

    def __init__(self, failures=1):
        super().__init__(success=False)
        self.failures = failures

    def submit(self, image):
        self.success = len(self.submitted) >= self.failures
        return super().submit(image)


class FakeHttpSession:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def frame():
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(720, 1280, 3), dtype=np.uint8)


def make_session(detector, frame, policy=ResetPolicy.HARD, submitter=None, caps=None, profile=None, **camera_kwargs):
    config = SessionConfig(frame_interval=0.005, reset_policy=policy)
    caps = caps or DeviceCapabilities(is_mobile=False, performance_tier=PerformanceTier.LOW)
    return CaptureSession(
        config=config,
        detector=detector,
        camera=FakeCamera(frame, **camera_kwargs),
        capabilities=caps,
        profile=profile,
        submitter=submitter,
    )


def feed(session, frame, n):
    async def _feed():
        return [await session.process_frame(frame) for _ in range(n)]

    return asyncio.run(_feed())


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


class TestSetup:
    def test_start(self, frame):
        session = make_session(FakeDetector([GOOD]), frame)
        assert session.start()
        assert session.detection_active
        assert session.running
        assert session.camera.opened
        assert session.status.value.kind is StatusKind.ACTIVE

    def test_setup_error_then_retry(self, frame):
        session = make_session(FakeDetector([GOOD]), frame, fail_opens=1)
        assert not session.start()
        assert session.status.value.kind is StatusKind.SETUP_ERROR
        assert not session.detection_active

        assert session.start()
        assert session.status.value.kind is StatusKind.ACTIVE

    def test_stop(self, frame):
        session = make_session(FakeDetector([GOOD]), frame)
        session.start()
        feed(session, frame, 2)
        session.stop()
        assert session.camera.released
        assert not session.running
        assert session.last_detections == []
        assert session.debouncer.counter == 0
        assert session.status.value.kind is StatusKind.STOPPED

    def test_stop_discards_frame_in_inference(self, frame):
        session = make_session(FakeDetector([GOOD], delay=0.2), frame)
        session.start()

        async def _restart():
            stale = asyncio.ensure_future(session.process_frame(frame))
            await asyncio.sleep(0.05)
            session.stop()
            session.start()
            fresh = asyncio.ensure_future(session.process_frame(frame))
            stale_outcome = await stale
            busy_while_fresh = session.busy
            fresh_outcome = await fresh
            second = await session.process_frame(frame)
            return stale_outcome, busy_while_fresh, fresh_outcome, second

        stale, busy_while_fresh, fresh, second = asyncio.run(_restart())
        assert stale.skipped
        assert stale.verdict is None
        assert busy_while_fresh
        assert not fresh.skipped
        assert not second.skipped
        assert session.debouncer.counter == 2
        assert session.dims is not None
        assert not session.busy

    def test_close_stops_and_keeps_injected_submitter(self, frame):
        submitter = FakeSubmitter()
        session = make_session(FakeDetector([GOOD]), frame, submitter=submitter)
        session.start()
        session.close()
        assert not session.running
        assert session.camera.released
        assert session.submitter is submitter
        assert not submitter.closed

    def test_close_releases_own_client(self):
        session = CaptureSession(config=SessionConfig(verification_id="abc"))
        http = FakeHttpSession()
        session.submitter.session = http
        session.close()
        assert http.closed
        assert session.submitter is None

    def test_verify_url_from_environment(self):
        env = {"CARDCAM_VERIFICATION_ID": "7", "CARDCAM_VERIFY_URL": "https://kyc.example.com/api/"}
        session = CaptureSession(config=SessionConfig.from_env(environ=env))
        assert session.submitter.endpoint == "https://kyc.example.com/api/verifications/7/verify-card-front/"
        session.close()


# ---------------------------------------------------------------------------
# Auto-capture
# ---------------------------------------------------------------------------


class TestAutoCapture:
    def test_captures_after_consecutive_good_frames(self, frame):
        session = make_session(FakeDetector([GOOD]), frame)
        session.start()

        outcomes = feed(session, frame, 5)
        assert [o.fired for o in outcomes] == [False, False, False, False, True]
        assert outcomes[0].verdict.is_valid

        assert session.ready_to_submit
        assert session.captured.resolution == (1920, 1211)
        assert session.captured.mode == "auto"
        assert not session.detection_active
        assert session.status.value.message == "Card captured successfully!"

    def test_progress_status(self, frame):
        session = make_session(FakeDetector([GOOD]), frame)
        session.start()
        feed(session, frame, 2)
        status = session.status.value
        assert status.kind is StatusKind.DETECTING
        assert status.message == "Card detected - hold steady: 2/5"
        assert status.progress == pytest.approx(0.4)

    def test_wrong_shape_never_captures(self, frame):
        session = make_session(FakeDetector([WRONG_SHAPE]), frame)
        session.start()
        outcomes = feed(session, frame, 12)
        assert not any(o.fired for o in outcomes)
        assert session.last_verdict.reason is FailureReason.WRONG_SHAPE
        assert session.status.value.kind is StatusKind.GUIDANCE
        assert session.captured is None

    def test_hard_reset_on_missed_frame(self, frame):
        boxes = [GOOD] * 4 + [None] + [GOOD] * 2
        session = make_session(FakeDetector(boxes), frame)
        session.start()
        outcomes = feed(session, frame, 7)
        assert not any(o.fired for o in outcomes)
        assert session.debouncer.counter == 2

    def test_soft_decay_on_missed_frame(self, frame):
        boxes = [GOOD] * 4 + [None] + [GOOD] * 2
        session = make_session(FakeDetector(boxes), frame, policy=ResetPolicy.SOFT_DECAY)
        session.start()
        outcomes = feed(session, frame, 7)
        assert [o.fired for o in outcomes] == [False] * 6 + [True]

    def test_no_more_detection_after_capture(self, frame):
        session = make_session(FakeDetector([GOOD]), frame)
        session.start()
        outcomes = feed(session, frame, 8)
        assert sum(o.fired for o in outcomes) == 1
        assert session.status.value.kind is StatusKind.CAPTURED

    def test_detector_failure_is_no_detection(self, frame):
        session = make_session(BrokenDetector(), frame)
        session.start()
        outcome = feed(session, frame, 1)[0]
        assert outcome.detections == []
        assert outcome.verdict.reason is FailureReason.NO_DETECTION
        assert not session.busy

    def test_busy_frame_is_skipped(self, frame):
        session = make_session(FakeDetector([GOOD], delay=0.05), frame)
        session.start()

        async def _both():
            return await asyncio.gather(session.process_frame(frame), session.process_frame(frame))

        first, second = asyncio.run(_both())
        assert not first.skipped
        assert second.skipped
        assert session.detector.calls == 1
        assert not session.busy

    def test_toggle_auto_capture_off(self, frame):
        session = make_session(FakeDetector([GOOD]), frame)
        session.start()
        assert session.toggle_auto_capture() is False
        outcomes = feed(session, frame, 8)
        assert not any(o.fired for o in outcomes)
        assert session.status.value.kind is StatusKind.DETECTING
        assert session.toggle_auto_capture(True) is True

    def test_process_frame_requires_detector(self, frame):
        session = make_session(None, frame)
        with pytest.raises(RuntimeError):
            feed(session, frame, 1)


# ---------------------------------------------------------------------------
# Loops
# ---------------------------------------------------------------------------


class TestLoops:
    def test_process_frames_stops_after_capture(self, frame):
        session = make_session(FakeDetector([GOOD]), frame)
        session.start()
        count = asyncio.run(session.process_frames([frame] * 20))
        assert count == 5
        assert session.captured is not None

    def test_run_captures(self, frame):
        session = make_session(FakeDetector([GOOD]), frame, count=500)
        asyncio.run(session.run(stop_after_capture=True))
        assert session.captured is not None
        assert session.camera.remaining > 0
        assert not session.busy

    def test_run_ends_with_stream(self, frame):
        session = make_session(FakeDetector([None]), frame, count=5)
        seen = []
        asyncio.run(session.run(on_frame=lambda f, s: seen.append(f)))
        assert len(seen) == 5
        assert session.captured is None


# ---------------------------------------------------------------------------
# User actions
# ---------------------------------------------------------------------------


class TestUserActions:
    def test_manual_capture(self, frame):
        session = make_session(FakeDetector([None]), frame)
        session.start()
        asyncio.run(session.process_frames([frame], stop_after_capture=False))

        result = session.manual_capture()
        assert result.success
        assert session.captured.mode == "manual"
        assert session.captured.resolution == (640, 360)
        assert not session.detection_active
        assert session.status.value.message == "Card captured manually"

    def test_manual_capture_without_frame(self, frame):
        session = make_session(FakeDetector([None]), frame)
        assert not session.manual_capture().success
        assert session.status.value.kind is StatusKind.CAPTURE_FAILED

    def test_recapture(self, frame):
        session = make_session(FakeDetector([GOOD]), frame)
        session.start()
        feed(session, frame, 5)
        assert session.captured is not None

        session.recapture()
        assert session.captured is None
        assert session.detection_active
        assert session.status.value.kind is StatusKind.ACTIVE

        outcomes = feed(session, frame, 5)
        assert outcomes[-1].fired

    def test_submit_success(self, frame):
        submitter = FakeSubmitter()
        session = make_session(FakeDetector([GOOD]), frame, submitter=submitter)
        session.start()
        feed(session, frame, 5)

        result = asyncio.run(session.submit())
        assert result.success
        assert submitter.submitted == [session.captured]
        assert session.status.value.kind is StatusKind.SUBMITTED

    def test_submit_failure_keeps_capture(self, frame):
        session = make_session(FakeDetector([GOOD]), frame, submitter=FakeSubmitter(success=False))
        session.start()
        feed(session, frame, 5)

        result = asyncio.run(session.submit())
        assert not result.success
        assert session.captured is not None
        assert session.status.value.kind is StatusKind.SUBMIT_FAILED
        assert session.status.value.message == "Verification failed: bad"

    def test_submit_retry_after_failure(self, frame):
        submitter = FlakySubmitter()
        session = make_session(FakeDetector([GOOD]), frame, submitter=submitter)
        session.start()
        feed(session, frame, 5)

        first = asyncio.run(session.submit())
        assert not first.success
        assert session.status.value.kind is StatusKind.SUBMIT_FAILED

        second = asyncio.run(session.submit())
        assert second.success
        assert len(submitter.submitted) == 2
        assert submitter.submitted[0] is submitter.submitted[1] is session.captured
        assert session.status.value.kind is StatusKind.SUBMITTED

    def test_submit_without_capture(self, frame):
        session = make_session(FakeDetector([GOOD]), frame, submitter=FakeSubmitter())
        result = asyncio.run(session.submit())
        assert not result.success
        assert result.message == "No valid card captured yet."


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


class TestEndToEnd:
    @pytest.fixture
    def mobile(self, frame):
        """Mobile session that accepts a card covering ~6% of the frame."""

        def _make(boxes, **kwargs):
            caps = DeviceCapabilities(is_mobile=True, performance_tier=PerformanceTier.LOW)
            profile = replace(MOBILE_PROFILE, min_detection_area_ratio=0.05)
            session = make_session(FakeDetector(boxes), frame, caps=caps, profile=profile, **kwargs)
            session.start()
            return session

        return _make

    def test_fires_on_third_frame(self, mobile, frame):
        session = mobile([CARD] * 4)
        outcomes = feed(session, frame, 4)
        assert [o.fired for o in outcomes] == [False, False, True, False]

        captured = session.captured
        assert captured.resolution == (1024, 646)
        assert captured.aspect_ratio == pytest.approx(1.585, abs=0.01)
        assert captured.enhancement_applied

    def test_lost_card_resets_immediately(self, mobile, frame):
        session = mobile([CARD] * 2 + [None] * 5)
        feed(session, frame, 2)
        assert session.debouncer.counter == 2
        feed(session, frame, 1)
        assert session.debouncer.counter == 0

    def test_lost_card_decays_under_soft_policy(self, mobile, frame):
        session = mobile([CARD] * 2 + [None] * 5, policy=ResetPolicy.SOFT_DECAY)
        feed(session, frame, 3)
        assert session.debouncer.counter == 1
        feed(session, frame, 1)
        assert session.debouncer.counter == 0
