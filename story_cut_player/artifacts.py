"""JSON artifacts on disk: stored audio preferences and timeline dumps."""

import json
import logging
import os

from story_cut_player.constants import PREFERENCE_ALIASES, PREFERENCES
from story_cut_player.effects import decode_segment_actions
from story_cut_player.models import TimelineStep, VisualAction

logger = logging.getLogger(__name__)


def write_artifact(directory: str, filename: str, data) -> str:
    """Write JSON artifact to directory/filename.

    Returns path to the written file.
    """
    os.makedirs(directory or ".", exist_ok=True)
    path = os.path.join(directory, filename)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    return path


def load_artifact(directory: str, filename: str) -> dict | None:
    """Read JSON artifact. Returns None if file doesn't exist."""
    path = os.path.join(directory, filename)
    if not os.path.exists(path):
        return None
    with open(path) as f:
        return json.load(f)


class JsonPreferenceStore:
    """Per-story-cut audio preferences kept in one JSON file.

    Layout: {cut_id: {segment_key: "recorded" | "personal" | "text"}}.
    A missing or malformed file reads as empty.
    """

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> dict:
        directory, filename = os.path.split(self.path)
        try:
            data = load_artifact(directory, filename)
        except json.JSONDecodeError:
            logger.warning("Malformed preferences file: %s, ignoring", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def get_stored_preference(self, cut_id: str, key: str) -> str | None:
        return self._load().get(cut_id, {}).get(key)

    def set_stored_preference(self, cut_id: str, key: str, preference: str) -> str:
        """Store a preference, accepting "synth" for "personal". Returns the stored value."""
        preference = PREFERENCE_ALIASES.get(preference.lower(), preference.lower())
        if preference not in PREFERENCES:
            raise ValueError(f"Unknown audio preference: {preference}")
        data = self._load()
        data.setdefault(cut_id, {})[key] = preference
        directory, filename = os.path.split(self.path)
        write_artifact(directory, filename, data)
        logger.info("Stored preference %s for %s in cut %r", preference, key, cut_id)
        return preference


def _action_to_dict(action: VisualAction) -> dict:
    data = {"kind": action.kind}
    for name in ("color", "transparency", "direction", "duration", "distance",
                 "scale", "start_scale", "end_scale"):
        value = getattr(action, name)
        if value is not None:
            data[name] = value
    if action.target is not None:
        data["target"] = {"type": action.target.type}
        if action.target.person_id:
            data["target"]["person_id"] = action.target.person_id
        if action.target.coordinates:
            data["target"]["coordinates"] = list(action.target.coordinates)
    return data


def timeline_to_dict(steps: list[TimelineStep]) -> list[dict]:
    """Serializable summary of a built timeline."""
    out = []
    for step in steps:
        entry = {
            "type": step.type,
            "visual_actions": [_action_to_dict(a) for a in decode_segment_actions(step.visual_actions)],
        }
        if step.type == "voice":
            entry["speaker"] = step.segment.speaker_tag
            entry["source_type"] = step.resolution.source_type
            entry["text_used"] = step.resolution.text_used
            entry["audio"] = step.resolution.handle.url
            if step.resolution.voice_id:
                entry["voice_id"] = step.resolution.voice_id
            if step.resolution.contribution_id:
                entry["contribution_id"] = step.resolution.contribution_id
        else:
            entry["duration_seconds"] = step.duration_seconds
            if step.media_url:
                entry["media_url"] = step.media_url
        out.append(entry)
    return out
