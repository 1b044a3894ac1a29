"""Headless audio player: pydub decoding, playback on the event loop clock."""

import asyncio
import logging
import os

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from story_cut_player.constants import PLAYER_TICK_SECONDS
from story_cut_player.errors import AudioPlaybackError
from story_cut_player.models import AudioHandle

logger = logging.getLogger(__name__)


def _is_remote(url: str) -> bool:
    return "://" in url and not url.startswith("file://")


class PydubPlayer:
    """Plays audio handles without an output device.

    Local files are decoded with pydub to learn their real duration (a
    decode failure raises AudioPlaybackError). Remote URLs are not fetched;
    they play for the caller's fallback duration. Playback advances the
    handle position on the loop clock; a paused handle holds until its
    playback is cancelled.
    """

    def __init__(self, tick: float = PLAYER_TICK_SECONDS):
        self.tick = tick

    async def load(self, handle: AudioHandle) -> float | None:
        """Decode the handle once and return its duration in seconds, if known."""
        if handle.duration_seconds is not None:
            return handle.duration_seconds
        if _is_remote(handle.url):
            return None
        path = handle.url[len("file://"):] if handle.url.startswith("file://") else handle.url
        if not os.path.exists(path):
            raise AudioPlaybackError(f"Audio file not found: {path}")
        try:
            audio = await asyncio.to_thread(AudioSegment.from_file, path)
        except CouldntDecodeError as e:
            raise AudioPlaybackError(f"Could not decode {path}: {e}") from e
        except Exception as e:
            # ffprobe output without an audio stream surfaces as IndexError/KeyError
            raise AudioPlaybackError(f"Could not read audio from {path}: {e!r}") from e
        handle.duration_seconds = len(audio) / 1000.0
        return handle.duration_seconds

    async def play(self, handle: AudioHandle, fallback_duration: float | None = None) -> None:
        """Play from the current position; returns when playback ends."""
        duration = await self.load(handle)
        if duration is None:
            duration = fallback_duration or 0.0
        loop = asyncio.get_running_loop()
        handle.paused = False
        last = loop.time()
        while handle.position < duration:
            await asyncio.sleep(min(self.tick, duration - handle.position))
            now = loop.time()
            if not handle.paused:
                handle.position = min(duration, handle.position + (now - last))
            last = now
        logger.debug("Finished playing %s", handle.url)

    def pause(self, handle: AudioHandle) -> None:
        handle.paused = True

    def rewind(self, handle: AudioHandle) -> None:
        handle.position = 0.0
