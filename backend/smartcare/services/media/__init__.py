"""
Media Module

Local capture with staged fallback and toggleable tracks.
"""
from .capture import (
    MediaCapture,
    MediaCaptureError,
    DeviceBusyError,
    OverconstrainedError,
    PermissionDeniedError,
    VideoConstraints,
    AudioConstraints,
    classify_capture_error,
)
from .tracks import MediaStream, ToggleableTrack

__all__ = [
    "MediaCapture",
    "MediaCaptureError",
    "DeviceBusyError",
    "OverconstrainedError",
    "PermissionDeniedError",
    "VideoConstraints",
    "AudioConstraints",
    "classify_capture_error",
    "MediaStream",
    "ToggleableTrack",
]
