"""Sentence splitting and timed sentence display during a voice step."""

import asyncio
import re

from story_cut_player.constants import MIN_ESTIMATED_DURATION, SECONDS_PER_CHARACTER

# A clause up to its terminal punctuation (and any closing quotes), or trailing text without one
_SENTENCE_RE = re.compile(r"""[^.!?]*[.!?]+['")\]]*|[^.!?]+$""")


def split_sentences(text: str) -> list[str]:
    """Split text into sentences, keeping . ! ? with the clause before it.

    Text without terminal punctuation is a single sentence.
    """
    if not text or not text.strip():
        return []
    sentences = [s.strip() for s in _SENTENCE_RE.findall(text)]
    return [s for s in sentences if s]


def estimate_speech_duration(text: str) -> float:
    """Rough seconds needed to speak text when the audio length is unknown."""
    return max(MIN_ESTIMATED_DURATION, len(text.strip()) * SECONDS_PER_CHARACTER)


def sentence_timings(sentences: list[str], total_duration: float) -> list[tuple[str, float, float]]:
    """(sentence, start offset, duration) slices proportional to sentence length."""
    total_chars = sum(len(s) for s in sentences)
    if not total_chars:
        return []
    timings = []
    start = 0.0
    for sentence in sentences:
        duration = total_duration * len(sentence) / total_chars
        timings.append((sentence, start, duration))
        start += duration
    return timings


class TimerGroup:
    """Loop timers that can be cancelled together.

    A timer leaves the group once it fires, so `pending` counts only timers
    that are still waiting.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._handles: list[asyncio.TimerHandle] = []

    @property
    def pending(self) -> int:
        return len(self._handles)

    def call_later(self, delay: float, callback, *args) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        handle = None

        def _fire():
            if handle in self._handles:
                self._handles.remove(handle)
            callback(*args)

        handle = loop.call_later(max(0.0, delay), _fire)
        self._handles.append(handle)
        return handle

    def cancel(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()


def schedule(text: str, estimated_duration: float | None, on_sentence, loop=None) -> TimerGroup:
    """Show text sentence by sentence over a voice step.

    The first sentence is shown immediately; each later one fires at its
    cumulative offset. `on_sentence(text, index, count)` receives each.
    Returns a TimerGroup that cancels every pending swap at once.
    """
    timers = TimerGroup(loop)
    sentences = split_sentences(text)
    if not sentences:
        return timers
    if estimated_duration is None:
        estimated_duration = estimate_speech_duration(text)

    count = len(sentences)
    for index, (sentence, start, _) in enumerate(sentence_timings(sentences, estimated_duration)):
        if index == 0:
            on_sentence(sentence, index, count)
        else:
            timers.call_later(start, on_sentence, sentence, index, count)
    return timers
