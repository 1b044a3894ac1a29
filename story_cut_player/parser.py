"""Parse story cut script text into segments."""

import logging
import re

from story_cut_player.constants import NO_MESSAGE_IDS, PREFERENCES, PREFERENCE_ALIASES
from story_cut_player.errors import ParseWarning
from story_cut_player.effects import decode
from story_cut_player.models import MediaRef, Segment

logger = logging.getLogger(__name__)

# [[MEDIA]] id=abc <FADE-IN:duration=2>  /  [[HOLD]] <COLOR:#000000,duration=2.0>
_DIRECTIVE_RE = re.compile(r"^\[\[(MEDIA|HOLD)\]\]\s*(.*)$")

# [[MEDIA] ... or [[HOLD ... : directive tag without its closing brackets
_MALFORMED_DIRECTIVE_RE = re.compile(r"\[\[(MEDIA|HOLD)(?!\]\])")

# [NARRATOR] text  /  [Amy | recorded | msg-1] <text>
_VOICE_RE = re.compile(r"^\[([^\]]+)\]\s*(.*)$")

_ACTION_TOKEN_RE = re.compile(r"<([^>]*)>")
_MEDIA_ID_RE = re.compile(r"id=([A-Za-z0-9\-_]+)")
_MEDIA_NAME_RE = re.compile(r'name="([^"]+)"')
_DURATION_RE = re.compile(r"duration\s*=\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
_LEADING_TAG_RE = re.compile(r"^\[[^\]]*\]\s*")


def _is_media_reference(token_body: str) -> bool:
    return token_body.startswith("id=") or token_body.startswith("name=")


def _extract_actions(content: str) -> tuple[list[str], str]:
    """Pull visual action tokens out of content.

    Returns (actions, remaining content). <id=...> and <name=...> are media
    references, not actions, and stay in the remaining content.
    """
    actions = []

    def _take(match):
        body = match.group(1).strip()
        if _is_media_reference(body):
            return match.group(0)
        if body:
            actions.append(body)
        return " "

    remaining = _ACTION_TOKEN_RE.sub(_take, content)
    return actions, re.sub(r"\s+", " ", remaining).strip()


def _explicit_duration(actions: list[str]) -> float | None:
    for action in actions:
        match = _DURATION_RE.search(action)
        if match:
            return float(match.group(1))
    return None


def _parse_media_ref(reference: str) -> MediaRef | None:
    reference = reference.strip()
    if not reference:
        return None
    id_match = _MEDIA_ID_RE.search(reference)
    if id_match:
        return MediaRef(id=id_match.group(1))
    name_match = _MEDIA_NAME_RE.search(reference)
    if name_match:
        return MediaRef(name=name_match.group(1))
    # Legacy: a bare token is an id
    return MediaRef(id=reference.strip("<>").strip())


def _parse_directive(kind: str, payload: str) -> Segment | None:
    actions, reference = _extract_actions(payload)
    media_ref = _parse_media_ref(reference)
    if media_ref is None and not actions:
        return None
    return Segment(
        kind=kind.lower(),
        speaker_tag=kind,
        display_content=payload,
        visual_actions=tuple(actions),
        media_ref=media_ref,
        explicit_duration=_explicit_duration(actions),
    )


def _normalize_preference(value: str) -> str | None:
    value = value.strip().lower()
    value = PREFERENCE_ALIASES.get(value, value)
    return value if value in PREFERENCES else None


def _parse_tag(tag: str) -> tuple[str, str | None, str | None]:
    """Split a voice tag into (speaker, preference, message id).

    Plain tags carry only the speaker; tagged lines use
    "NAME | preference | messageId".
    """
    if "|" not in tag:
        return tag.strip(), None, None
    parts = [p.strip() for p in tag.split("|")]
    speaker = parts[0]
    preference = _normalize_preference(parts[1]) if len(parts) > 1 else None
    message_id = parts[2] if len(parts) > 2 else ""
    if message_id.lower() in NO_MESSAGE_IDS:
        message_id = None
    return speaker, preference, message_id


def _unwrap_tagged_content(content: str) -> str:
    """Tagged lines wrap their text in <...>; unwrap unless it is an action."""
    if content.startswith("<") and content.endswith(">") and content.count("<") == 1:
        inner = content[1:-1].strip()
        if not _is_media_reference(inner) and decode(inner) is None:
            return inner
    return content


def _parse_voice(tag: str, content: str) -> Segment | None:
    speaker, preference, message_id = _parse_tag(tag)
    if not speaker:
        return None
    if "|" in tag:
        content = _unwrap_tagged_content(content)
    actions, text = _extract_actions(content)
    text = _LEADING_TAG_RE.sub("", text).strip()
    if not text:
        return None
    return Segment(
        kind="voice",
        speaker_tag=speaker,
        display_content=content,
        audio_content=text,
        visual_actions=tuple(actions),
        preference=preference,
        message_id=message_id,
    )


def _dedupe(segments: list[Segment]) -> list[Segment]:
    """Drop exact repeats of (kind, speaker tag, display content), keeping the first."""
    seen = set()
    unique = []
    for seg in segments:
        key = (seg.kind, seg.speaker_tag, seg.display_content)
        if key in seen:
            logger.warning("Removing duplicate segment: [%s] %s", seg.speaker_tag, seg.display_content[:50])
            continue
        seen.add(key)
        unique.append(seg)
    return unique


def parse_script(text: str, warnings: list[ParseWarning] | None = None) -> list[Segment]:
    """Parse script text into an ordered list of Segments.

    One segment per content line. Malformed or empty lines are dropped;
    each drop is logged and, when a list is given, recorded in `warnings`.
    Exact duplicates are removed after parsing.
    """
    if not text:
        return []

    def _drop(line_number, line, reason):
        warning = ParseWarning(line_number, line, reason)
        logger.warning("Skipping script %s", warning)
        if warnings is not None:
            warnings.append(warning)

    segments = []
    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue

        if _MALFORMED_DIRECTIVE_RE.search(line):
            _drop(line_number, line, "malformed directive tag")
            continue

        directive = _DIRECTIVE_RE.match(line)
        if directive:
            seg = _parse_directive(directive.group(1), directive.group(2).strip())
            if seg is None:
                _drop(line_number, line, f"empty {directive.group(1)} directive")
            else:
                segments.append(seg)
            continue

        voice = _VOICE_RE.match(line)
        if not voice:
            _drop(line_number, line, "not a script line")
            continue
        if voice.group(1).strip() in ("MEDIA", "HOLD", "[MEDIA", "[HOLD"):
            _drop(line_number, line, "directive tag needs double brackets")
            continue

        seg = _parse_voice(voice.group(1), voice.group(2).strip())
        if seg is None:
            _drop(line_number, line, "empty voice line")
        else:
            segments.append(seg)

    return _dedupe(segments)
