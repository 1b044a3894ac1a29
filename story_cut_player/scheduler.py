"""Playback scheduler: runs a story cut timeline one step at a time."""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from functools import partial

from story_cut_player.assembly import build_timeline
from story_cut_player.constants import LOADING_MESSAGE
from story_cut_player.effects import next_visual_state
from story_cut_player.errors import AudioPlaybackError
from story_cut_player.models import AudioResolution, TextState, TimelineStep, VisualState
from story_cut_player.parser import parse_script
from story_cut_player.player import PydubPlayer
from story_cut_player.presenter import Presenter
from story_cut_player.sentences import TimerGroup, estimate_speech_duration, schedule
from story_cut_player.voices import resolve_segment

logger = logging.getLogger(__name__)


class PlaybackState(enum.Enum):
    IDLE = "idle"
    BUILDING = "building"
    PLAYING = "playing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class PlaybackSession:
    """Runtime state of one play() call, owned by the scheduler."""
    steps: list[TimelineStep] = field(default_factory=list)
    index: int = 0
    open_resolutions: list[AudioResolution] = field(default_factory=list)
    cancelled: bool = False
    step_timers: TimerGroup = field(default_factory=TimerGroup)
    sentence_timers: TimerGroup | None = None
    current: AudioResolution | None = None
    waiter: asyncio.Future | None = None
    visual: VisualState = field(default_factory=VisualState)

    @property
    def pending_timers(self) -> int:
        pending = self.step_timers.pending
        if self.sentence_timers is not None:
            pending += self.sentence_timers.pending
        return pending


def _resolve_later(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class PlaybackScheduler:
    """Builds and plays a timeline, one session at a time.

    Idle -> Building -> Playing -> Completed | Cancelled | Failed.
    Steps run strictly in order; stop() cancels synchronously from any
    state and releases every audio handle the session holds.
    """

    def __init__(self, presenter: Presenter | None = None, player=None):
        self.presenter = presenter or Presenter()
        self.player = player or PydubPlayer()
        self.state = PlaybackState.IDLE
        self.session: PlaybackSession | None = None

    def _set_state(self, state: PlaybackState) -> None:
        logger.info("Playback %s -> %s", self.state.value, state.value)
        self.state = state

    async def _suspend(self, session: PlaybackSession, awaitable):
        """Await one suspension point; stop() cancels it through session.waiter."""
        session.waiter = asyncio.ensure_future(awaitable)
        try:
            return await session.waiter
        finally:
            session.waiter = None

    async def play(self, segments, resolve_fn, resolve_media=None) -> PlaybackState:
        """Resolve every segment, then play the timeline to the end.

        Returns the final state. Build failures notify the presenter once,
        leave no visual state behind, and are re-raised.
        """
        if self.state in (PlaybackState.BUILDING, PlaybackState.PLAYING):
            raise RuntimeError("A story cut is already playing")

        session = PlaybackSession()
        self.session = session
        self._set_state(PlaybackState.BUILDING)
        self.presenter.on_loading_state(True, LOADING_MESSAGE)

        try:
            session.steps = await self._suspend(session, build_timeline(segments, resolve_fn, resolve_media))
        except asyncio.CancelledError:
            if not session.cancelled:
                self.stop()
                raise
            return self.state
        except Exception as e:
            self._fail(session, e)
            raise

        self.presenter.on_loading_state(False, "")
        session.open_resolutions = [s.resolution for s in session.steps if s.type == "voice"]
        self._set_state(PlaybackState.PLAYING)

        try:
            while session.index < len(session.steps):
                if session.cancelled:
                    break
                await self._run_step(session, session.steps[session.index])
                session.index += 1
        except asyncio.CancelledError:
            if not session.cancelled:
                self.stop()
                raise
        except Exception as e:
            if session.cancelled:
                raise
            self._fail(session, e)
            raise

        if session.cancelled:
            return self.state
        self._complete(session)
        return self.state

    async def _run_step(self, session: PlaybackSession, step: TimelineStep) -> None:
        session.visual = next_visual_state(session.visual, step)
        self.presenter.on_visual_state(session.visual)
        # A presenter may stop playback from inside its callback
        if session.cancelled:
            return

        if step.type != "voice":
            done = asyncio.get_running_loop().create_future()
            session.step_timers.call_later(step.duration_seconds, _resolve_later, done)
            await self._suspend(session, done)
            return

        resolution = step.resolution
        handle = resolution.handle
        estimate = estimate_speech_duration(resolution.text_used)
        session.current = resolution
        try:
            duration = await self._suspend(session, self.player.load(handle))
            session.sentence_timers = schedule(
                resolution.text_used,
                duration if duration is not None else estimate,
                partial(self._show_sentence, session, step.segment.speaker_tag),
            )
            await self._suspend(session, self.player.play(handle, fallback_duration=estimate))
        except AudioPlaybackError as e:
            logger.warning("Skipping %s line after playback error: %s", step.segment.speaker_tag, e)
        finally:
            if not session.cancelled:
                if session.sentence_timers is not None:
                    session.sentence_timers.cancel()
                    session.sentence_timers = None
                resolution.release()
                if resolution in session.open_resolutions:
                    session.open_resolutions.remove(resolution)
                session.current = None

    def _show_sentence(self, session: PlaybackSession, speaker_tag: str, text: str, index: int, count: int) -> None:
        if session.cancelled:
            return
        self.presenter.on_text_state(TextState(text, speaker_tag, index, count))

    def _complete(self, session: PlaybackSession) -> None:
        session.visual = VisualState()
        self.presenter.on_visual_state(session.visual)
        self._set_state(PlaybackState.COMPLETED)
        self.session = None
        self.presenter.on_playback_finished()

    def _fail(self, session: PlaybackSession, error: Exception) -> None:
        logger.error("Story cut failed while %s: %s", self.state.value, error)
        was_building = self.state == PlaybackState.BUILDING
        session.cancelled = True
        session.step_timers.cancel()
        if session.sentence_timers is not None:
            session.sentence_timers.cancel()
            session.sentence_timers = None
        for resolution in session.open_resolutions:
            resolution.release()
        session.open_resolutions.clear()
        session.current = None
        self._set_state(PlaybackState.FAILED)
        self.session = None
        if was_building:
            self.presenter.on_loading_state(False, "")
        self.presenter.on_visual_state(VisualState())
        self.presenter.on_playback_error(error)

    def stop(self) -> None:
        """Cancel playback now: timers, in-flight audio, and every handle."""
        session = self.session
        if session is None or session.cancelled:
            return
        session.cancelled = True
        session.step_timers.cancel()
        if session.sentence_timers is not None:
            session.sentence_timers.cancel()
        if session.current is not None:
            self.player.pause(session.current.handle)
            self.player.rewind(session.current.handle)
        for resolution in session.open_resolutions:
            resolution.release()
        session.open_resolutions.clear()
        if session.waiter is not None and not session.waiter.done():
            session.waiter.cancel()
        was_building = self.state == PlaybackState.BUILDING
        self._set_state(PlaybackState.CANCELLED)
        self.session = None
        if was_building:
            self.presenter.on_loading_state(False, "")
        self.presenter.on_visual_state(VisualState())


async def play_script(text: str, context, presenter: Presenter | None = None, player=None,
                      resolve_media=None) -> PlaybackState:
    """Parse, resolve and play a script in one call."""
    scheduler = PlaybackScheduler(presenter, player)
    segments = parse_script(text)
    return await scheduler.play(segments, partial(resolve_segment, context=context), resolve_media)
