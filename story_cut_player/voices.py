"""Audio resolution: recorded audio, personal voice, or attributed synthesis."""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from story_cut_player.constants import (
    DEFAULT_PREFERENCE,
    PREFERENCES,
    SEGMENT_KEY_TEXT_LENGTH,
    SIMILARITY_MIN_WORD_LENGTH,
    SIMILARITY_MIN_MATCHING_WORDS,
    SIMILARITY_MIN_OVERLAP,
)
from story_cut_player.errors import MissingVoiceError
from story_cut_player.models import AudioHandle, AudioResolution, Contribution, Segment
from story_cut_player.tts import write_temp_audio

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[\w']+")

# English edge-tts voices offered for narrator and ember roles
VOICE_POOL = [
    "en-US-AriaNeural",
    "en-US-DavisNeural",
    "en-US-GuyNeural",
    "en-US-JennyNeural",
    "en-US-SaraNeural",
    "en-GB-SoniaNeural",
    "en-GB-RyanNeural",
    "en-AU-NatashaNeural",
    "en-AU-WilliamNeural",
    "en-CA-ClaraNeural",
    "en-CA-LiamNeural",
    "en-IE-EmilyNeural",
]


def load_cast(script_path: str) -> dict:
    """Load .cast.json sidecar file if it exists.

    Returns cast dict or empty dict if not found or malformed.
    """
    base = os.path.splitext(script_path)[0]
    cast_path = base + ".cast.json"
    if not os.path.exists(cast_path):
        return {}
    try:
        with open(cast_path) as f:
            return json.load(f)
    except json.JSONDecodeError:
        logger.warning("Malformed cast file: %s, using no cast", cast_path)
        return {}


def content_matches(segment_text: str, transcript: str) -> bool:
    """Legacy similarity test between a script line and a stored transcript.

    Exact (case-insensitive) match, containment either way, or enough shared
    significant words. Thresholds live in constants and are tunables.
    """
    line = segment_text.lower().strip()
    message = transcript.lower().strip()
    if not line or not message:
        return False
    if line == message or line in message or message in line:
        return True

    significant = [w for w in _WORD_RE.findall(message) if len(w) >= SIMILARITY_MIN_WORD_LENGTH]
    if not significant:
        return False
    line_words = _WORD_RE.findall(line)
    matching = [w for w in significant if any(w in lw for lw in line_words)]
    return (
        len(matching) >= SIMILARITY_MIN_MATCHING_WORDS
        and len(matching) / len(significant) >= SIMILARITY_MIN_OVERLAP
    )


class ContributionIndex:
    """Stored contributions, addressable by id and by speaker."""

    def __init__(self, contributions=()):
        self._items: list[Contribution] = list(contributions)
        self._by_id = {c.id: i for i, c in enumerate(self._items)}

    def __len__(self):
        return len(self._items)

    def get(self, contribution_id: str) -> Contribution | None:
        idx = self._by_id.get(contribution_id)
        return self._items[idx] if idx is not None else None

    def user_for_speaker(self, speaker_tag: str) -> str | None:
        for c in self._items:
            if c.speaker == speaker_tag and c.user_id:
                return c.user_id
        return None

    def find_recording(
        self,
        speaker_tag: str,
        message_id: str | None = None,
        text: str = "",
        consumed: set[str] | None = None,
    ) -> Contribution | None:
        """Find the recorded contribution behind a script line.

        With a message id the lookup is by id only. Without one, the first
        unconsumed recording by the same speaker whose transcript matches
        the text wins.
        """
        if message_id:
            c = self.get(message_id)
            return c if c is not None and c.audio_url else None

        consumed = consumed if consumed is not None else set()
        for c in self._items:
            if c.speaker != speaker_tag or not c.audio_url or c.id in consumed:
                continue
            if content_matches(text, c.transcript):
                logger.warning(
                    "Matched %s line to contribution %s by content similarity; "
                    "script line carries no message id",
                    speaker_tag, c.id,
                )
                return c
        return None


@dataclass
class ResolutionContext:
    """Everything the resolver consults for one story cut.

    Passed explicitly on every call; the consumed set keeps one
    contribution from backing two script lines.
    """
    synthesize: Callable[[str, str], Awaitable[bytes]]
    narrator_voice_id: str | None = None
    ember_voice_id: str | None = None
    contributions: ContributionIndex = field(default_factory=ContributionIndex)
    find_personal_voice: Callable[[str], str | None] | None = None
    speaker_ids: dict[str, str] = field(default_factory=dict)
    cut_id: str = ""
    preference_store: object | None = None
    preference_overrides: dict[str, str] = field(default_factory=dict)
    store_audio: Callable[[bytes], AudioHandle] = write_temp_audio
    consumed: set[str] = field(default_factory=set)

    def find_recording(self, segment: Segment) -> Contribution | None:
        recording = self.contributions.find_recording(
            segment.speaker_tag,
            message_id=segment.message_id,
            text=segment.audio_content,
            consumed=self.consumed,
        )
        if recording is not None:
            self.consumed.add(recording.id)
        return recording

    def personal_voice_for(self, segment: Segment, recording: Contribution | None) -> str | None:
        if self.find_personal_voice is None:
            return None
        user_id = None
        if recording is not None and recording.user_id:
            user_id = recording.user_id
        elif segment.message_id and self.contributions.get(segment.message_id):
            user_id = self.contributions.get(segment.message_id).user_id
        if not user_id:
            user_id = self.speaker_ids.get(segment.speaker_tag) or self.contributions.user_for_speaker(segment.speaker_tag)
        if not user_id:
            return None
        return self.find_personal_voice(user_id)


def segment_key(segment: Segment) -> str:
    """Stable key for a voice segment's stored audio preference."""
    if segment.message_id:
        return segment.message_id
    return f"{segment.speaker_tag}:{segment.audio_content[:SEGMENT_KEY_TEXT_LENGTH]}"


def preference_for(segment: Segment, context: ResolutionContext) -> str:
    """Preference for a contributor line.

    Inline tag preference, then per-call override, then stored preference.
    """
    if segment.preference:
        return segment.preference
    key = segment_key(segment)
    if key in context.preference_overrides:
        return context.preference_overrides[key]
    if context.preference_store is not None:
        stored = context.preference_store.get_stored_preference(context.cut_id, key)
        if stored in PREFERENCES:
            return stored
    return DEFAULT_PREFERENCE


async def _synthesized(
    context: ResolutionContext,
    text: str,
    voice_id: str,
    source_type: str,
    contribution_id: str | None = None,
) -> AudioResolution:
    data = await context.synthesize(text, voice_id)
    return AudioResolution(
        source_type=source_type,
        handle=context.store_audio(data),
        text_used=text,
        voice_id=voice_id,
        contribution_id=contribution_id,
    )


async def resolve(segment: Segment, preference: str, context: ResolutionContext) -> AudioResolution:
    """Resolve a voice segment to exactly one playable audio source.

    Ember and narrator lines always synthesize with their assigned voice.
    Contributor lines try the preferred source and fall back to the
    narrator (or ember) voice reading an attributed line.
    Raises MissingVoiceError when no usable voice id exists; synthesis
    errors propagate unchanged.
    """
    role = segment.speaker_role
    if role in ("ember", "narrator"):
        voice_id = context.ember_voice_id if role == "ember" else context.narrator_voice_id
        if not voice_id:
            raise MissingVoiceError(f"No {role} voice id configured for this story cut")
        return await _synthesized(context, segment.audio_content, voice_id, "genericSynthesis")

    recording = context.find_recording(segment)

    if preference == "recorded" and recording is not None:
        logger.info("Using recorded audio for %s (%s)", segment.speaker_tag, recording.id)
        return AudioResolution(
            source_type="recorded",
            handle=AudioHandle(url=recording.audio_url),
            text_used=recording.transcript or segment.audio_content,
            contribution_id=recording.id,
        )

    if preference == "personal":
        voice_id = context.personal_voice_for(segment, recording)
        if voice_id:
            text = recording.transcript if recording is not None and recording.transcript else segment.audio_content
            logger.info("Using personal voice %s for %s", voice_id, segment.speaker_tag)
            return await _synthesized(
                context, text, voice_id, "personalVoice",
                contribution_id=recording.id if recording is not None else None,
            )

    if preference != "text":
        logger.info("No %s audio for %s, falling back to text response", preference, segment.speaker_tag)

    voice_id = context.narrator_voice_id or context.ember_voice_id
    if not voice_id:
        raise MissingVoiceError(f"No voice available for text response from {segment.speaker_tag}")
    text = f'{segment.speaker_tag} said, "{segment.audio_content}"'
    return await _synthesized(context, text, voice_id, "genericSynthesis")


async def resolve_segment(segment: Segment, context: ResolutionContext) -> AudioResolution:
    """Resolve a voice segment using its effective preference."""
    preference = DEFAULT_PREFERENCE
    if segment.speaker_role == "contributor":
        preference = preference_for(segment, context)
    return await resolve(segment, preference, context)


def context_from_cast(cast: dict, synthesize, preference_store=None) -> ResolutionContext:
    """Build a ResolutionContext from cast file data."""
    contributions = ContributionIndex(
        Contribution(
            id=str(entry["id"]),
            speaker=entry.get("speaker", ""),
            user_id=str(entry.get("user_id") or ""),
            transcript=entry.get("transcript", ""),
            audio_url=entry.get("audio_url") or "",
        )
        for entry in cast.get("contributions", [])
    )
    personal_voices = cast.get("personal_voices", {})
    return ResolutionContext(
        synthesize=synthesize,
        narrator_voice_id=cast.get("narrator_voice_id"),
        ember_voice_id=cast.get("ember_voice_id"),
        contributions=contributions,
        find_personal_voice=personal_voices.get,
        speaker_ids=dict(cast.get("speakers", {})),
        cut_id=cast.get("cut_id", ""),
        preference_store=preference_store,
    )
