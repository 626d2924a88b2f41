"""Delivery of a captured card image to the verification backend.

The backend expects a JSON body ``{"card_front": <base64 JPEG>}`` posted to
``{base_url}/verifications/{verification_id}/verify-card-front/``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import requests

from .capture import CapturedImage
from .errors import SubmissionError

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000/api/v1/video-kyc"


@dataclass
class SubmissionResult:
    success: bool
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)
    status_code: Optional[int] = None


class SubmissionAdapter(Protocol):
    def submit(self, image: CapturedImage) -> SubmissionResult:
        ...


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body.get("error") or "Unknown error")
    return "Unknown error"


class VerificationClient:
    """Posts captured card fronts to the verification service.

    Args:
        verification_id: Verification the card belongs to.
        base_url: Service base URL.  Defaults to :data:`DEFAULT_BASE_URL`.
        timeout: Request timeout in seconds.
        session: Optional pre-configured ``requests.Session``.
    """

    def __init__(
        self,
        verification_id: str,
        base_url: Optional[str] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.verification_id = verification_id
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.last_status_code: Optional[int] = None
        log.info(f"Verification client initialized with base URL: {self.base_url}")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/verifications/{self.verification_id}/verify-card-front/"

    def verify_card_front(self, image_b64: str) -> Dict[str, Any]:
        """POST a base64 JPEG and return the decoded JSON response.

        Raises:
            SubmissionError: On network failure, non-2xx status or a
                non-JSON success body.
        """
        try:
            response = self.session.post(
                self.endpoint,
                json={"card_front": image_b64},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.error(f"Failed to submit card front: {e}")
            raise SubmissionError(str(e)) from e

        self.last_status_code = response.status_code
        if not response.ok:
            raise SubmissionError(_error_message(response), response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise SubmissionError("invalid JSON response", response.status_code) from e

    def submit(self, image: CapturedImage) -> SubmissionResult:
        """Encode and submit *image*; failures come back as an unsuccessful result."""
        if image is None or image.image.size == 0:
            return SubmissionResult(success=False, message="No valid card captured yet.")

        try:
            payload = self.verify_card_front(image.to_base64())
        except SubmissionError as e:
            log.warning(e.message)
            return SubmissionResult(
                success=False,
                message=e.message,
                status_code=e.details.get("status_code"),
            )
        except Exception as e:
            log.error(f"Error preparing image: {e}")
            return SubmissionResult(success=False, message="Error preparing image.")

        log.info(f"Verification {self.verification_id} accepted card front")
        return SubmissionResult(
            success=True,
            message="Card verified successfully",
            payload=payload if isinstance(payload, dict) else {"data": payload},
            status_code=self.last_status_code,
        )

    def close(self):
        self.session.close()
