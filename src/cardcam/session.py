"""Capture session: the per-frame detection loop and its state.

One :class:`CaptureSession` owns everything that lives for a capture
attempt: the device profile, the last letterbox geometry, the debouncer,
the busy flag, the latest detections and the captured image.

Only one frame is processed at a time.  The loop ticks every
``frame_interval`` seconds; a tick that arrives while inference is still
running is skipped, never queued.

Usage:
    session = CaptureSession(config=SessionConfig.from_env())
    if session.start():
        await session.run(stop_after_capture=True)
    result = await session.submit()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import numpy as np

from .camera import CameraSource
from .capture import CapturedImage, CaptureResult, CardCropper
from .config import SessionConfig
from .debounce import CaptureDebouncer
from .decoding import YoloOutputDecoder
from .errors import FrameError, SetupError
from .geometry import Detection, FrameDimensions, GeometryScorer
from .inference import CardDetector, OnnxCardDetector, preprocess_frame
from .profiles import DeviceCapabilities, DeviceProfile
from .status import StatusChannel, StatusKind
from .submission import SubmissionAdapter, SubmissionResult, VerificationClient
from .validity import ValidityClassifier, Verdict

log = logging.getLogger(__name__)


@dataclass
class FrameOutcome:
    """What happened to one processed frame."""

    detections: List[Detection] = field(default_factory=list)
    verdict: Optional[Verdict] = None
    fired: bool = False
    capture: Optional[CaptureResult] = None
    skipped: bool = False

    @property
    def best(self) -> Optional[Detection]:
        return self.detections[0] if self.detections else None


FrameCallback = Callable[[np.ndarray, "CaptureSession"], None]


class CaptureSession:
    """Runs detection on camera frames and captures the card once it is steady.

    Args:
        config: Session configuration.
        detector: Model adapter; built from ``config.model_path`` on
            :meth:`start` when omitted.
        camera: Frame source; built from ``config.camera_index`` on
            :meth:`start` when omitted.
        capabilities: Device facts; default from *config*.
        profile: Threshold profile override; default from *capabilities*.
        submitter: Verification adapter; built from ``config.verify_url``
            when a verification id is configured.
        status: Status channel to publish on.
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        detector: Optional[CardDetector] = None,
        camera: Optional[CameraSource] = None,
        capabilities: Optional[DeviceCapabilities] = None,
        profile: Optional[DeviceProfile] = None,
        submitter: Optional[SubmissionAdapter] = None,
        status: Optional[StatusChannel] = None,
    ):
        self.config = config or SessionConfig()
        self.detector = detector
        self.camera = camera
        self.capabilities = capabilities or self.config.capabilities()
        self.profile = profile or self.capabilities.profile
        self.status = status or StatusChannel()

        # A client built here is closed by close(); an injected one is not
        self._owns_submitter = False
        if submitter is None and self.config.verification_id:
            submitter = VerificationClient(
                self.config.verification_id,
                base_url=self.config.verify_url,
                timeout=self.config.request_timeout,
            )
            self._owns_submitter = True
        self.submitter = submitter

        self.decoder = YoloOutputDecoder(
            confidence_floor=self.config.confidence_floor,
            layout=self.config.output_layout,
            scorer=GeometryScorer(self.profile.scoring),
            overlap_threshold=self.config.overlap_threshold,
        )
        self.classifier = ValidityClassifier(self.profile)
        self.debouncer = CaptureDebouncer(
            self.profile.min_consecutive_detections,
            alignment_threshold=self.profile.alignment_threshold,
            policy=self.config.reset_policy,
        )
        self.cropper = CardCropper(self.capabilities, self.profile)

        self.auto_capture = self.config.auto_capture
        self.detection_active = False
        self.dims: Optional[FrameDimensions] = None
        self.last_frame: Optional[np.ndarray] = None
        self.last_detections: List[Detection] = []
        self.last_verdict: Optional[Verdict] = None
        self.captured: Optional[CapturedImage] = None

        self._busy = False
        self._running = False
        self._inflight: Optional[asyncio.Task] = None
        # Bumped by stop(); frames started under an older value are discarded
        self._generation = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def running(self) -> bool:
        return self._running

    @property
    def ready_to_submit(self) -> bool:
        return self.captured is not None

    # ------------------------------------------------------------------
    # Setup / teardown
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Load the model and open the camera.

        Setup failures publish ``SETUP_ERROR`` and return ``False``; the
        session stays usable so ``start()`` can be retried.
        """
        self.status.publish(StatusKind.LOADING, "Loading card detection model...")
        try:
            if self.detector is None:
                self.detector = OnnxCardDetector(
                    self.config.model_path, use_tensorrt=self.config.use_tensorrt
                )
            if self.camera is None:
                self.camera = CameraSource(self.config.camera_index, self.config.camera_config())
            self.camera.open()
        except SetupError as e:
            log.error(f"{e.error_code}: {e.message}")
            self.status.publish(StatusKind.SETUP_ERROR, e.message)
            return False

        self.detection_active = True
        self.debouncer.reset()
        self._running = True
        self.status.publish(
            StatusKind.ACTIVE,
            "Auto-capture active: position the card in the frame"
            if self.auto_capture
            else "Camera active: press capture when ready",
        )
        log.info(f"Capture session started ({self.profile.name} profile)")
        return True

    def stop(self):
        """Halt the loop, release the camera and clear per-session state.

        A frame still in inference finishes in its worker thread, but its
        result is discarded.
        """
        self._generation += 1
        self._running = False
        self.detection_active = False
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
        if self.camera is not None:
            self.camera.release()
        self.last_detections = []
        self.last_verdict = None
        self.dims = None
        self._busy = False
        self.debouncer.reset()
        self.status.publish(StatusKind.STOPPED, "Camera stopped")
        log.info("Capture session stopped")

    def close(self):
        """Stop if running and close the verification client this session built."""
        if self._running:
            self.stop()
        if self._owns_submitter and self.submitter is not None:
            self.submitter.close()
            self.submitter = None
            self._owns_submitter = False

    # ------------------------------------------------------------------
    # Per-frame processing
    # ------------------------------------------------------------------

    async def process_frame(self, frame: np.ndarray) -> FrameOutcome:
        """Detect, classify and debounce one RGB frame.

        Returns a skipped outcome when another frame is still in flight, or
        when the session was stopped while this frame was in inference.
        """
        if self._busy:
            return FrameOutcome(skipped=True)
        if self.detector is None:
            raise RuntimeError("No detector; call start() first")

        self._busy = True
        generation = self._generation
        tensor = raw = None
        outcome = FrameOutcome()
        try:
            frame_h, frame_w = frame.shape[:2]
            try:
                tensor, dims = preprocess_frame(frame, self.config.input_size)
                raw = await asyncio.to_thread(self.detector.predict, tensor)
            except FrameError as e:
                log.warning(e.message)
            except Exception as e:
                log.error(f"Detection error: {e}")

            if generation != self._generation:
                log.debug("Dropping result of a frame from a stopped session")
                return FrameOutcome(skipped=True)
            if raw is not None:
                self.dims = dims
                outcome.detections = self.decoder.decode(raw, dims)

            self.last_detections = outcome.detections
            verdict = self.classifier.classify(outcome.best, frame_w, frame_h)
            outcome.verdict = self.last_verdict = verdict

            if self.detection_active and self.auto_capture:
                outcome.fired = self.debouncer.update(verdict.is_valid, verdict.alignment_score)
                if outcome.fired:
                    outcome.capture = self._auto_capture(frame, outcome.best)
                else:
                    self._publish_progress(verdict)
            elif self.detection_active:
                self._publish_guidance(verdict)
        finally:
            tensor = raw = None
            if generation == self._generation:
                self._busy = False
        return outcome

    def _publish_guidance(self, verdict: Verdict):
        kind = StatusKind.DETECTING if verdict.is_valid else StatusKind.GUIDANCE
        self.status.publish(kind, verdict.feedback)

    def _publish_progress(self, verdict: Verdict):
        if not verdict.is_valid or self.debouncer.counter == 0:
            self.status.publish(StatusKind.GUIDANCE, verdict.feedback)
            return
        n, m = self.debouncer.counter, self.debouncer.min_consecutive
        self.status.publish(
            StatusKind.DETECTING,
            f"Card detected - hold steady: {n}/{m}",
            progress=self.debouncer.progress,
        )

    def _auto_capture(self, frame: np.ndarray, detection: Detection) -> CaptureResult:
        result = self.cropper.capture(frame, detection.box)
        if result.success:
            self.captured = result.captured
            self.detection_active = False
            self.last_detections = []
            self.status.publish(StatusKind.CAPTURED, "Card captured successfully!")
        else:
            self.debouncer.rearm()
            self.status.publish(StatusKind.CAPTURE_FAILED, result.error or "Capture failed")
        return result

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _process_tick(self, frame: np.ndarray):
        try:
            await self.process_frame(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Frame processing failed: {e}")

    async def run(
        self,
        stop_after_capture: bool = False,
        max_frames: Optional[int] = None,
        on_frame: Optional[FrameCallback] = None,
    ):
        """Drive the session from its camera until stopped.

        Args:
            stop_after_capture: Leave the loop once a card is captured.
            max_frames: Leave the loop after this many frames were read.
            on_frame: Called with every frame read (e.g. a preview window).
        """
        if not self._running and not self.start():
            return

        frames = 0
        try:
            while self._running:
                frame = self.camera.read()
                if frame is None:
                    if not self.camera.is_device:
                        log.info("End of video stream")
                        break
                    await asyncio.sleep(self.config.frame_interval)
                    continue

                frames += 1
                self.last_frame = frame
                if on_frame is not None:
                    on_frame(frame, self)

                if self.detection_active and not self._busy:
                    self._inflight = asyncio.ensure_future(self._process_tick(frame))

                if stop_after_capture and self.captured is not None:
                    break
                if max_frames is not None and frames >= max_frames:
                    break
                await asyncio.sleep(self.config.frame_interval)
        finally:
            if self._inflight is not None:
                await asyncio.gather(self._inflight, return_exceptions=True)
                self._inflight = None

    async def process_frames(
        self,
        frames: Iterable[np.ndarray],
        stop_after_capture: bool = True,
        max_frames: Optional[int] = None,
    ) -> int:
        """Process every frame of *frames* in order, without skipping.

        Used for recorded video where there is no real-time budget.

        Returns:
            Number of frames processed.
        """
        count = 0
        for frame in frames:
            self.last_frame = frame
            if self.detection_active:
                await self.process_frame(frame)
            count += 1
            if stop_after_capture and self.captured is not None:
                break
            if max_frames is not None and count >= max_frames:
                break
        log.info(f"Processed {count} frames, captured={self.captured is not None}")
        return count

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def manual_capture(self) -> CaptureResult:
        """Capture the whole current frame without waiting for the debouncer."""
        if self.last_frame is None:
            self.status.publish(StatusKind.CAPTURE_FAILED, "No frame available")
            return CaptureResult(success=False, error="No frame available", error_code="FRAME_NOT_READY")

        result = self.cropper.capture_manual(self.last_frame)
        if result.success:
            self.captured = result.captured
            self.detection_active = False
            self.debouncer.reset()
            self.status.publish(StatusKind.CAPTURED, "Card captured manually")
        return result

    def recapture(self):
        """Discard the current capture and resume detection."""
        self.captured = None
        self.debouncer.rearm()
        self.detection_active = self._running
        self.status.publish(StatusKind.ACTIVE, "Position the card in the frame")

    def toggle_auto_capture(self, enabled: Optional[bool] = None) -> bool:
        """Flip (or set) auto-capture; returns the new value."""
        self.auto_capture = (not self.auto_capture) if enabled is None else enabled
        self.debouncer.reset()
        log.info(f"Auto-capture {'enabled' if self.auto_capture else 'disabled'}")
        return self.auto_capture

    async def submit(self) -> SubmissionResult:
        """Send the captured card to the verification backend.

        The capture is kept on failure so the user can retry.
        """
        if self.captured is None:
            self.status.publish(StatusKind.SUBMIT_FAILED, "No valid card captured yet.")
            return SubmissionResult(success=False, message="No valid card captured yet.")
        if self.submitter is None:
            self.status.publish(StatusKind.SUBMIT_FAILED, "No verification backend configured")
            return SubmissionResult(success=False, message="No verification backend configured")

        self.status.publish(StatusKind.SUBMITTING, "Submitting for verification...")
        result = await asyncio.to_thread(self.submitter.submit, self.captured)
        if result.success:
            self.status.publish(StatusKind.SUBMITTED, result.message)
        else:
            self.status.publish(StatusKind.SUBMIT_FAILED, result.message)
        return result
