"""Error types shared across the capture pipeline.

Every error carries a machine-readable ``error_code`` and a ``details``
dict so the CLI and the submission layer can report it consistently.

Taxonomy:
    SetupError   - camera or model unavailable (terminal for the session)
    FrameError   - transient per-frame failure (frame is skipped)
    CaptureError - crop/enhancement failed (capture not produced)
    SubmissionError - verification backend unreachable or rejected the image
"""

import logging
from typing import Any, Dict, Optional, Union

log = logging.getLogger(__name__)


class CardCamError(Exception):
    """Base exception for capture assistant errors."""

    def __init__(self, message: str, error_code: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to JSON-serializable dict."""
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Setup errors
# ---------------------------------------------------------------------------


class SetupError(CardCamError):
    """Camera or model could not be brought up."""


class CameraUnavailableError(SetupError):
    def __init__(self, source: Union[int, str], reason: Optional[str] = None):
        super().__init__(
            message=f"Camera {source!r} is not available",
            error_code="CAMERA_UNAVAILABLE",
            details={
                "source": source,
                "reason": reason,
                "suggestion": "Check the camera connection and that no other app holds it",
            },
        )


class ModelLoadError(SetupError):
    def __init__(self, model_path: str, reason: Optional[str] = None):
        super().__init__(
            message=f"Failed to load detector model: {model_path}",
            error_code="MODEL_LOAD_FAILED",
            details={"model_path": model_path, "reason": reason},
        )


# ---------------------------------------------------------------------------
# Per-frame errors
# ---------------------------------------------------------------------------


class FrameError(CardCamError):
    """Transient failure while processing a single frame."""


class FrameNotReadyError(FrameError):
    def __init__(self, shape: Any = None):
        super().__init__(
            message="Frame not ready or has invalid dimensions",
            error_code="FRAME_NOT_READY",
            details={"shape": shape},
        )


class DecodeError(FrameError):
    def __init__(self, reason: str):
        super().__init__(
            message=f"Could not decode detector output: {reason}",
            error_code="DECODE_FAILED",
            details={"reason": reason},
        )


# ---------------------------------------------------------------------------
# Capture errors
# ---------------------------------------------------------------------------


class CaptureError(CardCamError):
    """The captured crop could not be produced."""


class InvalidCropError(CaptureError):
    def __init__(self, crop_width: float, crop_height: float):
        super().__init__(
            message="Capture failed - invalid crop area",
            error_code="INVALID_CROP",
            details={"crop_width": crop_width, "crop_height": crop_height},
        )


# ---------------------------------------------------------------------------
# Submission errors
# ---------------------------------------------------------------------------


class SubmissionError(CardCamError):
    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(
            message=f"Verification failed: {reason}",
            error_code="SUBMISSION_FAILED",
            details={"reason": reason, "status_code": status_code},
        )


def handle_error(error: BaseException) -> Dict[str, Any]:
    """Log *error* and convert it to the JSON error form.

    Known :class:`CardCamError` subclasses keep their code and details;
    anything else is reported as ``UNEXPECTED_ERROR`` with its traceback
    logged.
    """
    if isinstance(error, CardCamError):
        log.error(f"{error.error_code}: {error.message}")
        if error.details:
            log.debug(f"Error details: {error.details}")
        return error.to_dict()

    log.exception(f"Unexpected error: {error}")
    return {
        "success": False,
        "error": "An unexpected error occurred",
        "error_code": "UNEXPECTED_ERROR",
        "details": {
            "error_type": type(error).__name__,
            "error_message": str(error),
        },
    }
