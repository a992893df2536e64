"""
Call Controls - the in-call buttons of one room session.

Mute and camera toggles flip the ``enabled`` switch of the local
ToggleableTracks. Screen-share hot-swaps the track behind the video sender
without renegotiating, and swaps the camera back when the display capture
ends on its own.
"""
import logging
from typing import Optional

from .coordinator import RoomSessionCoordinator

logger = logging.getLogger(__name__)

PIN_TARGETS = ("remote", "local")


class CallControls:
    """UI state and media switches layered over a RoomSessionCoordinator."""

    def __init__(self, session: RoomSessionCoordinator):
        self.session = session
        self.muted = False
        self.camera_off = False
        self.sharing = False
        self.pinned = "remote"
        self.fullscreen = False

    def toggle_mute(self) -> bool:
        tracks = self.session.local_stream.get_audio_tracks() if self.session.local_stream else []
        for track in tracks:
            track.enabled = not track.enabled
        self.muted = bool(tracks) and not tracks[0].enabled
        return self.muted

    def toggle_camera(self) -> bool:
        tracks = self.session.local_stream.get_video_tracks() if self.session.local_stream else []
        for track in tracks:
            track.enabled = not track.enabled
        self.camera_off = bool(tracks) and not tracks[0].enabled
        return self.camera_off

    def _camera_track(self):
        if self.session.local_stream is None:
            return None
        tracks = self.session.local_stream.get_video_tracks()
        return tracks[0] if tracks else None

    def _restore_camera(self, sender) -> None:
        camera = self._camera_track()
        if sender is not None and camera is not None:
            sender.replaceTrack(camera)

    async def start_screen_share(self) -> bool:
        """
        Send the screen instead of the camera.

        Returns:
            True if sharing started. A cancelled or failed display capture
            leaves the call untouched.
        """
        if self.sharing or self.session.peer is None:
            return False
        try:
            screen = await self.session.media.acquire_display()
        except Exception as e:
            logger.info(f"[Room] Screen share not started: {e}")
            return False

        sender = self.session.peer.video_sender()
        if sender is not None:
            sender.replaceTrack(screen)
        self.session.screen_track = screen
        self.sharing = True

        @screen.on("ended")
        def _on_ended():
            if self.session.screen_track is not screen:
                return
            self._restore_camera(sender)
            self.session.screen_track = None
            self.sharing = False

        logger.info(f"[Room] Screen share started in room {self.session.room_id}")
        return True

    async def stop_screen_share(self) -> None:
        screen = self.session.screen_track
        sender = self.session.peer.video_sender() if self.session.peer is not None else None
        self._restore_camera(sender)
        self.session.screen_track = None
        self.sharing = False
        if screen is not None:
            screen.stop()

    def toggle_pin(self, target: Optional[str] = None) -> str:
        """Pin ``target`` to the main stage, or swap if none is given."""
        if target is None:
            target = "local" if self.pinned == "remote" else "remote"
        if target not in PIN_TARGETS:
            raise ValueError(f"Unknown pin target: {target}")
        self.pinned = target
        return self.pinned

    def toggle_fullscreen(self) -> bool:
        self.fullscreen = not self.fullscreen
        return self.fullscreen
