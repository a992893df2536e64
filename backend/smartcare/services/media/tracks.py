"""
Local media tracks.

aiortc tracks have no ``enabled`` switch, so every captured track is
wrapped in a ToggleableTrack: while disabled it keeps the frame cadence but
emits silence (audio) or black frames (video), which is what a muted
microphone or a turned-off camera looks like to the remote side.
"""
import logging
from typing import List, Optional

import av
import numpy as np
from aiortc import MediaStreamTrack

logger = logging.getLogger(__name__)


def silence_like(frame: av.AudioFrame) -> av.AudioFrame:
    samples = np.zeros_like(frame.to_ndarray())
    blank = av.AudioFrame.from_ndarray(samples, format=frame.format.name, layout=frame.layout.name)
    blank.sample_rate = frame.sample_rate
    blank.pts = frame.pts
    blank.time_base = frame.time_base
    return blank


def black_like(frame: av.VideoFrame) -> av.VideoFrame:
    pixels = np.zeros((frame.height, frame.width, 3), dtype=np.uint8)
    blank = av.VideoFrame.from_ndarray(pixels, format="rgb24")
    blank.pts = frame.pts
    blank.time_base = frame.time_base
    return blank


class ToggleableTrack(MediaStreamTrack):
    """Relays a source track and blanks its frames while disabled."""

    def __init__(self, source: MediaStreamTrack, label: str = ""):
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.label = label
        self.enabled = True

        @source.on("ended")
        def _on_source_ended():
            if self.readyState != "ended":
                self.stop()

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame
        if self.kind == "audio":
            return silence_like(frame)
        return black_like(frame)

    def stop(self):
        super().stop()
        if self.source.readyState != "ended":
            self.source.stop()


class MediaStream:
    """A set of tracks: the local capture of a session, or the remote party's media."""

    def __init__(self, tracks: Optional[List[MediaStreamTrack]] = None):
        self._tracks: List[MediaStreamTrack] = list(tracks or [])

    @classmethod
    def empty(cls) -> "MediaStream":
        return cls()

    def add_track(self, track: MediaStreamTrack) -> None:
        self._tracks.append(track)

    def get_tracks(self) -> List[MediaStreamTrack]:
        return list(self._tracks)

    def get_audio_tracks(self) -> List[MediaStreamTrack]:
        return [t for t in self._tracks if t.kind == "audio"]

    def get_video_tracks(self) -> List[MediaStreamTrack]:
        return [t for t in self._tracks if t.kind == "video"]

    @property
    def has_audio(self) -> bool:
        return bool(self.get_audio_tracks())

    @property
    def has_video(self) -> bool:
        return bool(self.get_video_tracks())

    def stop(self) -> None:
        """Stop every track, releasing the capture devices."""
        for track in self._tracks:
            try:
                track.stop()
            except Exception as e:
                logger.debug(f"[Media] Error stopping {track.kind} track: {e}")
