"""Frame preprocessing and ONNX Runtime card detector.

The detector is a single-class YOLOv8 export (see
``scripts/export_detector.py``).  Frames are letterboxed into a square
``input_size`` canvas; the :class:`FrameDimensions` returned alongside the
tensor is what the decoder needs to map boxes back to frame pixels.

Classes:
    CardDetector     - Protocol for anything with ``predict(tensor) -> RawOutput``
    OnnxCardDetector - YOLOv8 ONNX via ONNX Runtime with TRT EP + CUDA EP fallback

Usage:
    from cardcam.inference import OnnxCardDetector, preprocess_frame

    detector = OnnxCardDetector("models/card_detector.onnx")
    tensor, dims = preprocess_frame(frame_rgb)
    raw = detector.predict(tensor)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

import cv2
import numpy as np

from .decoding import MultipleOutputs, RawOutput, SingleOutput
from .errors import FrameNotReadyError, ModelLoadError
from .geometry import FrameDimensions

log = logging.getLogger(__name__)

DEFAULT_INPUT_SIZE = 640


# ---------------------------------------------------------------------------
# Preprocessing
# ---------------------------------------------------------------------------


def preprocess_frame(
    frame_rgb: np.ndarray, input_size: int = DEFAULT_INPUT_SIZE
) -> Tuple[np.ndarray, FrameDimensions]:
    """Letterbox an RGB frame into a model input tensor.

    The frame is resized (bilinear) to fit inside ``input_size`` x
    ``input_size`` keeping its aspect ratio, then centered on a black canvas.

    Args:
        frame_rgb: (H, W, 3) RGB ``uint8`` frame.
        input_size: Side of the square model input.

    Returns:
        ``(tensor, dims)`` where tensor is (1, input_size, input_size, 3)
        float32 in [0, 1].

    Raises:
        FrameNotReadyError: If the frame is missing or has no pixels.
    """
    if frame_rgb is None or frame_rgb.ndim != 3 or frame_rgb.shape[0] == 0 or frame_rgb.shape[1] == 0:
        raise FrameNotReadyError(shape=None if frame_rgb is None else tuple(frame_rgb.shape))

    h, w = frame_rgb.shape[:2]
    dims = FrameDimensions.for_frame(w, h, input_size)
    scaled_w, scaled_h = dims.scaled_size

    resized = cv2.resize(frame_rgb, (scaled_w, scaled_h), interpolation=cv2.INTER_LINEAR)
    canvas = np.zeros((input_size, input_size, 3), dtype=np.float32)
    top, left = dims.top_padding, dims.left_padding
    canvas[top : top + scaled_h, left : left + scaled_w] = resized[..., :3].astype(np.float32) / 255.0
    return canvas[np.newaxis], dims


# ---------------------------------------------------------------------------
# Detector protocol
# ---------------------------------------------------------------------------


class CardDetector(Protocol):
    def predict(self, tensor: np.ndarray) -> RawOutput:
        ...


# ---------------------------------------------------------------------------
# YOLOv8 card detector - ONNX Runtime with TensorRT EP
# ---------------------------------------------------------------------------


class OnnxCardDetector:
    """YOLOv8 card detector via ONNX Runtime.

    Provider chain is TensorRT (engines cached on disk after the first run),
    then CUDA, then CPU; ONNX Runtime silently skips providers that are not
    installed.

    Args:
        model_path: Path to the detector ``.onnx`` file.
        use_tensorrt: Put the TensorRT EP first in the provider chain.
        trt_cache_dir: Directory for the TRT engine cache.  Defaults to a
            ``trt_cache`` folder next to the ONNX file.
        providers: Explicit provider list; overrides the default chain.

    Raises:
        ModelLoadError: If the file is missing or the session cannot be built.
    """

    def __init__(
        self,
        model_path: str,
        use_tensorrt: bool = True,
        trt_cache_dir: Optional[str] = None,
        providers: Optional[List] = None,
    ):
        import onnxruntime as ort

        model_p = Path(model_path)
        if not model_p.is_file():
            raise ModelLoadError(str(model_path), "file not found")

        if providers is None:
            providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
            if use_tensorrt:
                if trt_cache_dir is None:
                    trt_cache_dir = str(model_p.parent / "trt_cache")
                Path(trt_cache_dir).mkdir(parents=True, exist_ok=True)
                trt_options = {
                    "trt_fp16_enable": True,
                    "trt_engine_cache_enable": True,
                    "trt_engine_cache_path": trt_cache_dir,
                    "trt_max_workspace_size": str(1 << 30),  # 1 GB
                }
                providers.insert(0, ("TensorrtExecutionProvider", trt_options))

        available = set(ort.get_available_providers())
        providers = [p for p in providers if (p[0] if isinstance(p, tuple) else p) in available]

        sess_options = ort.SessionOptions()
        sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL

        log.info(f"Loading card detector {model_p.name}...")
        try:
            self.session = ort.InferenceSession(
                str(model_p), sess_options=sess_options, providers=providers
            )
        except Exception as e:
            raise ModelLoadError(str(model_path), str(e)) from e

        model_input = self.session.get_inputs()[0]
        self.input_name = model_input.name
        shape = model_input.shape
        # (1, 3, H, W) exports need the NHWC tensor transposed
        self.channels_first = len(shape) == 4 and shape[1] == 3
        self.input_size = shape[2] if isinstance(shape[2], int) else DEFAULT_INPUT_SIZE

        log.info(f"Active providers: {self.session.get_providers()}")

    def predict(self, tensor: np.ndarray) -> RawOutput:
        """Run the detector on a (1, H, W, 3) tensor from :func:`preprocess_frame`."""
        batch = np.ascontiguousarray(tensor, dtype=np.float32)
        if self.channels_first:
            batch = np.ascontiguousarray(batch.transpose(0, 3, 1, 2))
        outputs = self.session.run(None, {self.input_name: batch})
        if len(outputs) == 1:
            return SingleOutput(outputs[0])
        return MultipleOutputs(tuple(outputs))
