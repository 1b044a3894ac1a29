"""Assemble parsed segments and resolved audio into one playback timeline."""

import inspect
import logging

from story_cut_player.constants import DEFAULT_HOLD_DURATION, DEFAULT_MEDIA_DURATION
from story_cut_player.models import MediaRef, Segment, TimelineStep
from story_cut_player.sentences import estimate_speech_duration

logger = logging.getLogger(__name__)


def step_duration(segment: Segment) -> float:
    """Seconds a hold/media segment blocks the timeline. Never negative."""
    if segment.explicit_duration is not None:
        return max(0.0, segment.explicit_duration)
    if segment.kind == "hold":
        return DEFAULT_HOLD_DURATION
    return DEFAULT_MEDIA_DURATION


def media_resolver(media: dict):
    """Media lookup over a {id-or-name: url} mapping, as found in cast files."""
    def _resolve(ref: MediaRef) -> str | None:
        key = ref.id if ref.id is not None else ref.name
        return media.get(key)
    return _resolve


async def _resolve_media(resolve_media, ref: MediaRef) -> str | None:
    url = resolve_media(ref)
    if inspect.isawaitable(url):
        url = await url
    return url


async def build_timeline(segments: list[Segment], resolve_fn, resolve_media=None) -> list[TimelineStep]:
    """Build the ordered timeline for a story cut.

    Every voice segment is resolved up front, in order, before playback.
    If any resolution fails, audio already resolved is released and the
    error propagates.
    """
    steps = []
    resolutions = []
    try:
        for seg in segments:
            if seg.kind == "voice":
                resolution = await resolve_fn(seg)
                resolutions.append(resolution)
                steps.append(TimelineStep(type="voice", visual_actions=seg.visual_actions,
                                          resolution=resolution, segment=seg))
                continue

            media_url = None
            if seg.kind == "media" and seg.media_ref is not None and resolve_media is not None:
                media_url = await _resolve_media(resolve_media, seg.media_ref)
                if media_url is None:
                    logger.warning("Media reference not found: %s", seg.media_ref)
            steps.append(TimelineStep(
                type=seg.kind,
                duration_seconds=step_duration(seg),
                visual_actions=seg.visual_actions,
                media_ref=seg.media_ref,
                media_url=media_url,
                segment=seg,
            ))
    except BaseException:
        for resolution in resolutions:
            resolution.release()
        raise

    logger.info("Built timeline: %d steps (%d voice)", len(steps), len(resolutions))
    return steps


def voice_step_duration(step: TimelineStep) -> float:
    """Known audio duration of a voice step, else the text-length estimate."""
    handle = step.resolution.handle
    if handle.duration_seconds is not None:
        return handle.duration_seconds
    return estimate_speech_duration(step.resolution.text_used)


def estimate_timeline_duration(steps: list[TimelineStep]) -> float:
    """Total expected seconds for a timeline."""
    total = 0.0
    for step in steps:
        if step.type == "voice":
            total += voice_step_duration(step)
        else:
            total += step.duration_seconds
    return total
