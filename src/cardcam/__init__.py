"""
CardCam - ID Card Auto-Capture Assistant

Runs a YOLO card detector over a live camera feed, waits until the card
is held steady and well aligned, then crops, enhances and submits a still
image for verification.
"""

__version__ = "0.1.0"
