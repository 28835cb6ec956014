"""Detector component package."""

from .camera import CameraManager
from .errors import CaptureOpenError, ModelLoadError
from .pipeline import YoloDetector, load_class_names, parse_detections
from .trigger import ActuationGate, ActuationOutcome, Detection, GateConfig, GateState
from .ui import DetectorUI

__all__ = [
    "CameraManager",
    "CaptureOpenError",
    "ModelLoadError",
    "YoloDetector",
    "load_class_names",
    "parse_detections",
    "ActuationGate",
    "ActuationOutcome",
    "Detection",
    "GateConfig",
    "GateState",
    "DetectorUI",
]
