"""
Media Capture - local camera/microphone acquisition with staged fallback.

Order of attempts:
1. Video + audio with the preferred constraints
2. Audio only (camera busy, constraints unsatisfiable or permission denied)
3. Empty stream, so the call can still proceed receive-only

Any other failure propagates to the caller.
"""
import errno
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from smartcare.config import constants
from smartcare.config.settings import settings
from .tracks import MediaStream, ToggleableTrack

logger = logging.getLogger(__name__)


class MediaCaptureError(Exception):
    """Base exception for media capture errors"""
    pass


class DeviceBusyError(MediaCaptureError):
    """Raised when the capture device is in use by another process"""
    pass


class OverconstrainedError(MediaCaptureError):
    """Raised when no device mode satisfies the requested constraints"""
    pass


class PermissionDeniedError(MediaCaptureError):
    """Raised when access to the capture device is denied"""
    pass


# Failures that trigger the audio-only / empty-stream fallback
FALLBACK_ERRORS = (DeviceBusyError, OverconstrainedError, PermissionDeniedError)


@dataclass
class VideoConstraints:
    width: int = constants.VIDEO_IDEAL_WIDTH
    height: int = constants.VIDEO_IDEAL_HEIGHT
    aspect_ratio: float = constants.VIDEO_ASPECT_RATIO
    facing_mode: str = constants.VIDEO_FACING_MODE
    frame_rate: int = constants.VIDEO_IDEAL_FRAMERATE
    max_frame_rate: int = constants.VIDEO_MAX_FRAMERATE

    def to_options(self) -> Dict[str, str]:
        return {
            "video_size": f"{self.width}x{self.height}",
            "framerate": str(self.frame_rate),
        }


@dataclass
class AudioConstraints:
    echo_cancellation: bool = constants.AUDIO_ECHO_CANCELLATION
    noise_suppression: bool = constants.AUDIO_NOISE_SUPPRESSION
    auto_gain_control: bool = constants.AUDIO_AUTO_GAIN_CONTROL

    def to_options(self) -> Dict[str, str]:
        # Processing flags are honoured by the selected source (e.g. a
        # PulseAudio echo-cancel source); ffmpeg itself takes no options here
        return {}


DeviceOpener = Callable[[str, str, Optional[str], Dict[str, str]], MediaStreamTrack]


def open_capture_device(
    kind: str,
    device: str,
    format: Optional[str],
    options: Dict[str, str],
) -> MediaStreamTrack:
    """Open one capture device with aiortc's MediaPlayer and return its track."""
    player = MediaPlayer(device, format=format, options=options or None)
    track = player.video if kind == "video" else player.audio
    if track is None:
        raise OverconstrainedError(f"Device {device} provides no {kind}")
    return track


def classify_capture_error(exc: BaseException) -> Optional[Type[MediaCaptureError]]:
    """
    Map a capture failure to a fallback-eligible error class.

    Returns:
        The MediaCaptureError subclass, or None if the error must propagate.
    """
    if isinstance(exc, FALLBACK_ERRORS):
        return type(exc)
    if isinstance(exc, PermissionError):
        return PermissionDeniedError
    code = getattr(exc, "errno", None)
    if code == errno.EBUSY:
        return DeviceBusyError
    if code in (errno.EACCES, errno.EPERM):
        return PermissionDeniedError
    if code in (errno.EINVAL, errno.ERANGE):
        return OverconstrainedError
    return None


class MediaCapture:
    """Acquires the local media stream for a room session."""

    def __init__(self, open_device: Optional[DeviceOpener] = None):
        self.open_device = open_device or open_capture_device

    async def request(
        self,
        video: Optional[VideoConstraints] = None,
        audio: Optional[AudioConstraints] = None,
    ) -> MediaStream:
        """
        Open the requested devices.

        Either all requested tracks are returned or none are: a failure on
        the second device stops the first before re-raising.
        """
        tracks: List[MediaStreamTrack] = []
        try:
            if video is not None:
                source = self.open_device(
                    "video", settings.VIDEO_DEVICE, settings.VIDEO_FORMAT, video.to_options()
                )
                tracks.append(ToggleableTrack(source, label="camera"))
            if audio is not None:
                source = self.open_device(
                    "audio", settings.AUDIO_DEVICE, settings.AUDIO_FORMAT, audio.to_options()
                )
                tracks.append(ToggleableTrack(source, label="microphone"))
        except Exception:
            MediaStream(tracks).stop()
            raise
        return MediaStream(tracks)

    async def acquire(self) -> MediaStream:
        """
        Acquire camera and microphone, degrading instead of failing.

        Returns:
            A stream with video+audio, audio only, or no tracks at all.

        Raises:
            Any capture error that is not busy/overconstrained/denied.
        """
        try:
            stream = await self.request(video=VideoConstraints(), audio=AudioConstraints())
            logger.info("[Media] Acquired camera and microphone")
            return stream
        except Exception as e:
            reason = classify_capture_error(e)
            if reason is None:
                raise
            logger.warning(f"[Media] Camera/microphone unavailable ({reason.__name__}): {e}")

        try:
            stream = await self.request(audio=AudioConstraints())
            logger.info("[Media] Falling back to audio-only")
            return stream
        except Exception as e:
            logger.warning(f"[Media] Audio-only capture failed, joining receive-only: {e}")
            return MediaStream.empty()

    async def acquire_display(self) -> MediaStreamTrack:
        """Capture the screen for screen-share. Failures propagate."""
        source = self.open_device(
            "video", settings.DISPLAY_DEVICE, settings.DISPLAY_FORMAT, {}
        )
        return ToggleableTrack(source, label="screen")
