"""Visual actions: decode <...> effect tokens and derive visual state per step."""

import logging
import re
from dataclasses import replace

from story_cut_player.constants import (
    DEFAULT_TRANSPARENCY,
    DEFAULT_FADE_DURATION,
    MIN_FADE_DURATION,
    DEFAULT_PAN_DISTANCE,
    DEFAULT_PAN_DURATION,
    DEFAULT_ZOOM_SCALE,
    DEFAULT_ZOOM_DURATION,
    LEGACY_ZOOM_DEFAULT,
    LEGACY_ZOOM_MIN_START,
    LEGACY_ZOOM_START_FACTOR,
    ROLE_OVERLAY_COLORS,
)
from story_cut_player.models import (
    Segment,
    TimelineStep,
    VisualAction,
    VisualState,
    ZoomScale,
    ZoomTarget,
)

logger = logging.getLogger(__name__)

_NUMBER = r"(-?\d+(?:\.\d+)?)"

_COLOR_RE = re.compile(r"^COLOR\s*[:=]\s*#?([0-9a-f]{6}|[0-9a-f]{3})$", re.IGNORECASE)
_TRAN_RE = re.compile(rf"^TRAN\s*[:=]\s*{_NUMBER}$", re.IGNORECASE)
_DURATION_ONLY_RE = re.compile(rf"^duration\s*=\s*{_NUMBER}$", re.IGNORECASE)
_KIND_RE = re.compile(r"^(Z-OUT|FADE-IN|FADE-OUT|PAN-LEFT|PAN-RIGHT|ZOOM-IN|ZOOM-OUT)(?::(.*))?$", re.IGNORECASE)
_TARGET_RE = re.compile(r"target=(center|person|custom)(?::([^:]+))?", re.IGNORECASE)

# "target=custom:100" waiting for the y coordinate that a comma split cut off
_OPEN_CUSTOM_TARGET_RE = re.compile(rf"target=custom:{_NUMBER}$", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(rf"^{_NUMBER}$")

# Effects that animate the picture rather than tint it
ANIMATED_KINDS = ("fade", "pan", "zoom_target")


def _param(name: str, text: str) -> float | None:
    match = re.search(rf"{name}\s*=\s*{_NUMBER}", text, re.IGNORECASE)
    return float(match.group(1)) if match else None


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _normalize_hex(digits: str) -> str:
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return "#" + digits.lower()


def _split_effects(token: str) -> list[str]:
    """Split a token on commas, keeping custom target coordinates together."""
    parts = []
    for part in token.split(","):
        part = part.strip()
        if not part:
            continue
        if parts and _OPEN_CUSTOM_TARGET_RE.search(parts[-1]) and _BARE_NUMBER_RE.match(part):
            parts[-1] = f"{parts[-1]},{part}"
        else:
            parts.append(part)
    return parts


def _parse_target(params: str) -> ZoomTarget:
    match = _TARGET_RE.search(params)
    if not match:
        return ZoomTarget()
    target_type = match.group(1).lower()
    value = (match.group(2) or "").strip()
    if target_type == "person" and value:
        return ZoomTarget(type="person", person_id=value)
    if target_type == "custom":
        coords = value.split(",")
        if len(coords) == 2:
            try:
                return ZoomTarget(type="custom", coordinates=(float(coords[0]), float(coords[1])))
            except ValueError:
                pass
        logger.debug("Bad custom zoom target %r, using center", value)
    return ZoomTarget()


def _decode_effect(part: str) -> VisualAction | None:
    """Decode one comma-free effect, or None when unrecognized."""
    color = _COLOR_RE.match(part)
    if color:
        return VisualAction(
            kind="color",
            color=_normalize_hex(color.group(1)),
            transparency=DEFAULT_TRANSPARENCY,
        )

    duration_only = _DURATION_ONLY_RE.match(part)
    if duration_only:
        return VisualAction(kind="duration", duration=max(0.0, float(duration_only.group(1))))

    match = _KIND_RE.match(part)
    if not match:
        return None
    name = match.group(1).upper()
    params = match.group(2) or ""

    if name == "Z-OUT":
        end = _param("scale", params)
        if end is None:
            start, end = LEGACY_ZOOM_DEFAULT
        else:
            start = max(LEGACY_ZOOM_MIN_START, end * LEGACY_ZOOM_START_FACTOR)
        return VisualAction(kind="zoom", start_scale=start, end_scale=end)

    direction = name.split("-", 1)[1].lower()
    duration = _param("duration", params)

    if name.startswith("FADE"):
        if duration is None:
            duration = DEFAULT_FADE_DURATION
        return VisualAction(kind="fade", direction=direction, duration=max(MIN_FADE_DURATION, duration))

    if name.startswith("PAN"):
        distance = _param("distance", params)
        return VisualAction(
            kind="pan",
            direction=direction,
            distance=int(distance) if distance is not None else DEFAULT_PAN_DISTANCE,
            duration=duration if duration is not None else DEFAULT_PAN_DURATION,
        )

    scale = _param("scale", params)
    return VisualAction(
        kind="zoom_target",
        direction=direction,
        scale=scale if scale is not None else DEFAULT_ZOOM_SCALE,
        duration=duration if duration is not None else DEFAULT_ZOOM_DURATION,
        target=_parse_target(params),
    )


def decode_all(token: str) -> list[VisualAction]:
    """Decode every effect in a token, in order.

    TRAN attaches to the preceding COLOR; a bare duration= attaches to the
    preceding effect, or stands alone as a "duration" action. Unknown parts
    are skipped.
    """
    token = token.strip()
    if token.startswith("<") and token.endswith(">"):
        token = token[1:-1]

    actions: list[VisualAction] = []
    for part in _split_effects(token):
        tran = _TRAN_RE.match(part)
        if tran:
            if actions and actions[-1].kind == "color":
                actions[-1] = replace(actions[-1], transparency=_clamp(float(tran.group(1))))
            continue

        action = _decode_effect(part)
        if action is None:
            logger.debug("Ignoring unrecognized visual action: %s", part)
            continue
        if action.kind == "duration" and actions:
            actions[-1] = replace(actions[-1], duration=action.duration)
            continue
        actions.append(action)
    return actions


def decode(token: str) -> VisualAction | None:
    """Decode a token into its first visual action, or None if unrecognized."""
    actions = decode_all(token)
    return actions[0] if actions else None


def decode_segment_actions(tokens) -> list[VisualAction]:
    """Decode all raw action tokens of a segment or step."""
    actions = []
    for token in tokens:
        actions.extend(decode_all(token))
    return actions


def _first(actions: list[VisualAction], kind: str) -> VisualAction | None:
    for action in actions:
        if action.kind == kind:
            return action
    return None


def voice_overlay(segment: Segment) -> tuple[str, float]:
    """Overlay color and transparency for a voice segment.

    Role default unless the segment carries a COLOR action.
    """
    color = _first(decode_segment_actions(segment.visual_actions), "color")
    if color:
        return color.color, color.transparency
    return ROLE_OVERLAY_COLORS[segment.speaker_role], DEFAULT_TRANSPARENCY


def next_visual_state(current: VisualState, step: TimelineStep) -> VisualState:
    """Visual state to show while a step runs, derived from the previous one."""
    actions = decode_segment_actions(step.visual_actions)
    animated = tuple(a for a in actions if a.kind in ANIMATED_KINDS)
    legacy_zoom = _first(actions, "zoom")
    zoom_scale = ZoomScale(legacy_zoom.start_scale, legacy_zoom.end_scale) if legacy_zoom else current.zoom_scale

    if step.type == "voice":
        color, transparency = voice_overlay(step.segment)
        return replace(
            current,
            overlay_color=color,
            overlay_transparency=transparency,
            zoom_scale=zoom_scale,
            effects=animated or current.effects,
        )

    color = _first(actions, "color")
    if step.type == "hold":
        return replace(
            current,
            overlay_color=None,
            overlay_transparency=color.transparency if color else None,
            media_color=color.color if color else None,
            background_image_url=None if color else current.background_image_url,
            zoom_scale=zoom_scale,
            effects=animated,
        )

    # media
    return replace(
        current,
        overlay_color=color.color if color else None,
        overlay_transparency=color.transparency if color else None,
        media_color=None,
        background_image_url=step.media_url or current.background_image_url,
        zoom_scale=zoom_scale,
        effects=animated,
    )
