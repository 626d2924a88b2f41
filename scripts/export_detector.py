#!/usr/bin/env python3
"""Export the YOLOv8 card detector for ONNX Runtime.

The exported model is what ``cardcam.inference.OnnxCardDetector`` loads.
ONNX Runtime's TensorRT EP builds and caches the engine on the first run,
so there is no separate ``.engine`` export step.

Usage:
    # Default paths
    python scripts/export_detector.py

    # Custom weights / output
    python scripts/export_detector.py --weights runs/detect/card_detector/weights/best.pt \\
        --output models/card_detector.onnx
"""

import argparse
import shutil
import sys
from pathlib import Path


def export_yolo_onnx(weights_path: str, imgsz: int = 640, half: bool = False, simplify: bool = True) -> Path:
    """Export a YOLO model to ONNX via ultralytics.

    Args:
        weights_path: Path to .pt weights.
        imgsz: Input image size.
        half: Use FP16 weights.
        simplify: Run the ONNX graph simplifier.

    Returns:
        Path to the exported .onnx file.
    """
    from ultralytics import YOLO

    model = YOLO(weights_path)
    onnx_path = model.export(format="onnx", imgsz=imgsz, half=half, simplify=simplify, dynamic=False)
    print(f"  Exported: {onnx_path}")
    return Path(onnx_path)


def check_onnx_io(onnx_path: Path) -> None:
    """Print the model's input/output shapes as ONNX Runtime sees them.

    A ``[1, 5, 8400]`` output is features-major; ``[1, 8400, 5]`` is
    predictions-major.  Pass ``--layout`` to cardcam if the output is square.
    """
    import onnxruntime as ort

    session = ort.InferenceSession(str(onnx_path), providers=["CPUExecutionProvider"])
    for inp in session.get_inputs():
        print(f"  input  {inp.name}: {inp.shape}")
    for out in session.get_outputs():
        print(f"  output {out.name}: {out.shape}")


def main():
    parser = argparse.ArgumentParser(description="Export the card detector to ONNX")
    parser.add_argument(
        "--weights",
        default="runs/detect/card_detector/weights/best.pt",
        help="Path to YOLOv8 card detector weights",
    )
    parser.add_argument(
        "--output",
        default="models/card_detector.onnx",
        help="Where to place the exported model",
    )
    parser.add_argument(
        "--imgsz",
        type=int,
        default=640,
        help="YOLO input image size (default: 640)",
    )
    parser.add_argument(
        "--half",
        action="store_true",
        help="Export FP16 weights",
    )
    args = parser.parse_args()

    project_root = Path(__file__).resolve().parent.parent

    def resolve(p: str) -> Path:
        return Path(p) if Path(p).is_absolute() else project_root / p

    weights = resolve(args.weights)
    if not weights.exists():
        print(f"Weights not found at {weights}")
        sys.exit(1)

    print("=" * 60)
    print("Card Detector Export")
    print("=" * 60)

    exported = export_yolo_onnx(str(weights), imgsz=args.imgsz, half=args.half)
    output = resolve(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    if exported.resolve() != output.resolve():
        shutil.copy2(exported, output)
        print(f"  Copied to: {output}")

    check_onnx_io(output)
    print("\nRun with: cardcam run --model " + str(output))


if __name__ == "__main__":
    main()
