"""Data models for story cut playback."""

import logging
import os
from dataclasses import dataclass, field

from story_cut_player.constants import EMBER_TAG, NARRATOR_TAG

logger = logging.getLogger(__name__)


def role_for_tag(speaker_tag: str) -> str:
    """Map a voice tag to its role: ember, narrator or contributor."""
    if speaker_tag == EMBER_TAG:
        return "ember"
    if speaker_tag == NARRATOR_TAG:
        return "narrator"
    return "contributor"


@dataclass(frozen=True)
class MediaRef:
    id: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class Segment:
    kind: str                          # "voice", "media" or "hold"
    speaker_tag: str                   # voice tag, or "MEDIA"/"HOLD" for directives
    display_content: str               # content with action tokens, for display/editing
    audio_content: str = ""            # content to synthesize or match; voice only
    visual_actions: tuple[str, ...] = ()
    media_ref: MediaRef | None = None
    explicit_duration: float | None = None
    preference: str | None = None      # inline preference from a tagged voice line
    message_id: str | None = None      # explicit contribution id from a tagged voice line

    @property
    def speaker_role(self) -> str:
        return role_for_tag(self.speaker_tag)


@dataclass(frozen=True)
class ZoomTarget:
    type: str = "center"               # "center", "person" or "custom"
    person_id: str | None = None
    coordinates: tuple[float, float] | None = None


@dataclass(frozen=True)
class ZoomScale:
    start: float = 1.0
    end: float = 1.0


@dataclass(frozen=True)
class VisualAction:
    kind: str                          # "color", "fade", "pan", "zoom", "zoom_target" or "duration"
    color: str | None = None           # "#rrggbb"
    transparency: float | None = None
    direction: str | None = None       # "in"/"out" for fade and zoom, "left"/"right" for pan
    duration: float | None = None
    distance: int | None = None        # pan distance, percent
    scale: float | None = None
    start_scale: float | None = None   # legacy Z-OUT
    end_scale: float | None = None
    target: ZoomTarget | None = None


@dataclass(frozen=True)
class Contribution:
    """One stored contributor message, optionally with recorded audio."""
    id: str
    speaker: str
    user_id: str = ""
    transcript: str = ""
    audio_url: str = ""


@dataclass
class AudioHandle:
    """Playable audio reference owned by one playback session.

    Temporary handles point at a file the engine created and delete it
    on release.
    """
    url: str
    temporary: bool = False
    duration_seconds: float | None = None
    position: float = 0.0
    paused: bool = False
    released: bool = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        if self.temporary:
            try:
                os.remove(self.url)
            except FileNotFoundError:
                logger.debug("Temporary audio already gone: %s", self.url)


@dataclass(frozen=True)
class AudioResolution:
    source_type: str                   # "recorded", "personalVoice" or "genericSynthesis"
    handle: AudioHandle
    text_used: str
    voice_id: str | None = None
    contribution_id: str | None = None

    def release(self) -> None:
        self.handle.release()


@dataclass(frozen=True)
class TimelineStep:
    type: str                          # "hold", "media" or "voice"
    duration_seconds: float = 0.0
    visual_actions: tuple[str, ...] = ()
    media_ref: MediaRef | None = None
    media_url: str | None = None
    resolution: AudioResolution | None = None
    segment: Segment | None = None


@dataclass(frozen=True)
class VisualState:
    overlay_color: str | None = None
    overlay_transparency: float | None = None
    background_image_url: str | None = None
    zoom_scale: ZoomScale = field(default_factory=ZoomScale)
    media_color: str | None = None
    effects: tuple[VisualAction, ...] = ()   # fade, pan and zoom_target actions to animate


@dataclass(frozen=True)
class TextState:
    display_text: str
    speaker_tag: str
    sentence_index: int
    sentence_count: int
