"""Speech synthesis via edge-tts, and temporary audio files for playback."""

import logging
import os
import tempfile

import edge_tts

from story_cut_player.constants import TTS_RATE
from story_cut_player.errors import SynthesisError
from story_cut_player.models import AudioHandle

logger = logging.getLogger(__name__)


async def synthesize(text: str, voice_id: str, rate: str = TTS_RATE) -> bytes:
    """Synthesize text with an edge-tts voice and return the MP3 bytes.

    Not retried: any failure, including empty output, raises SynthesisError.
    """
    audio = bytearray()
    try:
        communicate = edge_tts.Communicate(text, voice_id, rate=rate)
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio.extend(chunk["data"])
    except Exception as e:
        raise SynthesisError(f"TTS failed for voice {voice_id}: {e}") from e

    if not audio:
        raise SynthesisError(f"TTS produced no audio for: {text[:50]}...")
    logger.debug("Synthesized %d bytes with %s", len(audio), voice_id)
    return bytes(audio)


def write_temp_audio(data: bytes, suffix: str = ".mp3") -> AudioHandle:
    """Write audio bytes to a temporary file owned by the returned handle.

    The file is deleted when the handle is released.
    """
    fd, path = tempfile.mkstemp(prefix="storycut_", suffix=suffix)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    return AudioHandle(url=path, temporary=True)
