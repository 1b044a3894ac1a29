"""Shared fixtures for story cut player tests."""

import asyncio
import itertools
from unittest.mock import AsyncMock

import pytest
from pydub import AudioSegment

from story_cut_player.errors import AudioPlaybackError
from story_cut_player.models import AudioHandle, Contribution, TextState, VisualState
from story_cut_player.presenter import Presenter
from story_cut_player.voices import ContributionIndex, ResolutionContext


@pytest.fixture
def tiny_mp3(tmp_path):
    """Generate a 100ms silent MP3 for testing."""
    path = tmp_path / "test.mp3"
    silence = AudioSegment.silent(duration=100)
    silence.export(str(path), format="mp3")
    return path


@pytest.fixture
def sample_script():
    """A short cut with every line kind."""
    return (
        "[[HOLD]] <COLOR:#000000,duration=0.01>\n"
        "\n"
        "[[MEDIA]] id=photo-1 <duration=0.01> <FADE-IN:duration=1.0>\n"
        "\n"
        "[NARRATOR] Hello world. This is a test.\n"
        "\n"
        "[Amy] I remember the lake house every summer.\n"
        "\n"
        "[EMBER VOICE] What a lovely memory.\n"
    )


@pytest.fixture
def contributions():
    return ContributionIndex([
        Contribution(id="msg-1", speaker="Amy", user_id="user-amy",
                     transcript="I remember the lake house every summer.",
                     audio_url="https://audio.example/msg-1.mp3"),
        Contribution(id="msg-2", speaker="Bob", user_id="user-bob",
                     transcript="We fished off the dock.", audio_url=""),
    ])


_memory_ids = itertools.count(1)


def memory_audio(data: bytes) -> AudioHandle:
    """store_audio replacement that keeps synthesized audio off disk."""
    return AudioHandle(url=f"memory://{next(_memory_ids)}")


@pytest.fixture
def fake_synthesize():
    return AsyncMock(return_value=b"audio")


@pytest.fixture
def make_context(fake_synthesize, contributions):
    """Factory for a ResolutionContext with sensible test defaults."""
    def _make(**overrides):
        kwargs = dict(
            synthesize=fake_synthesize,
            narrator_voice_id="en-US-GuyNeural",
            ember_voice_id="en-US-AriaNeural",
            contributions=contributions,
            find_personal_voice={"user-amy": "voice-amy"}.get,
            store_audio=memory_audio,
        )
        kwargs.update(overrides)
        return ResolutionContext(**kwargs)
    return _make


class FakePlayer:
    """Player double: fixed duration, optional failures, records calls."""

    def __init__(self, duration=0.02, fail_urls=()):
        self.duration = duration
        self.fail_urls = set(fail_urls)
        self.played = []
        self.paused = []
        self.loaded = []

    async def load(self, handle):
        self.loaded.append(handle)
        if handle.url in self.fail_urls:
            raise AudioPlaybackError(f"cannot decode {handle.url}")
        return self.duration

    async def play(self, handle, fallback_duration=None):
        if handle.url in self.fail_urls:
            raise AudioPlaybackError(f"cannot decode {handle.url}")
        self.played.append(handle.url)
        handle.position = self.duration / 2
        await asyncio.sleep(self.duration)
        handle.position = self.duration

    def pause(self, handle):
        handle.paused = True
        self.paused.append(handle.url)

    def rewind(self, handle):
        handle.position = 0.0


@pytest.fixture
def fake_player():
    return FakePlayer()


class RecordingPresenter(Presenter):
    """Presenter that records every callback in order."""

    def __init__(self):
        self.events = []

    def on_visual_state(self, state: VisualState) -> None:
        self.events.append(("visual", state))

    def on_text_state(self, state: TextState) -> None:
        self.events.append(("text", state))

    def on_loading_state(self, is_loading: bool, message: str = "") -> None:
        self.events.append(("loading", is_loading, message))

    def on_playback_finished(self) -> None:
        self.events.append(("finished",))

    def on_playback_error(self, error: Exception) -> None:
        self.events.append(("error", error))

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


@pytest.fixture
def presenter():
    return RecordingPresenter()
