"""Tests for the playback scheduler."""

import asyncio
from functools import partial

import pytest

from conftest import FakePlayer
from story_cut_player.errors import SynthesisError
from story_cut_player.models import VisualState
from story_cut_player.parser import parse_script
from story_cut_player.scheduler import PlaybackScheduler, PlaybackState, play_script
from story_cut_player.voices import resolve_segment


async def _wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def _play(scheduler, script, context):
    return scheduler.play(parse_script(script), partial(resolve_segment, context=context))


def test_end_to_end_hold_then_narrator(make_context, presenter):
    """Hold shows black; narrator line shows a blue overlay and two sentences."""
    script = "[[HOLD]] <COLOR:#000000,duration=0.02>\n\n[NARRATOR] Hello world. This is a test."
    scheduler = PlaybackScheduler(presenter, FakePlayer(duration=0.05))

    state = asyncio.run(_play(scheduler, script, make_context()))

    assert state == PlaybackState.COMPLETED
    assert scheduler.state == PlaybackState.COMPLETED
    visuals = [e[1] for e in presenter.of("visual")]
    assert visuals[0].media_color == "#000000"
    assert visuals[1].overlay_color == "#0000ff"
    assert visuals[1].overlay_transparency == 0.2
    assert visuals[-1] == VisualState()
    texts = [e[1] for e in presenter.of("text")]
    assert [t.display_text for t in texts] == ["Hello world.", "This is a test."]
    assert all(t.speaker_tag == "NARRATOR" and t.sentence_count == 2 for t in texts)
    assert presenter.events[0] == ("loading", True, "Preparing story...")
    assert presenter.events[-1] == ("finished",)


def test_steps_run_in_order(make_context, presenter):
    player = FakePlayer()
    script = "[NARRATOR] One.\n[[HOLD]] <duration=0>\n[EMBER VOICE] Two.\n[Amy] I remember the lake house every summer."
    asyncio.run(_play(PlaybackScheduler(presenter, player), script, make_context()))
    assert len(player.played) == 3
    assert player.played[-1] == "https://audio.example/msg-1.mp3"
    assert [e[1].display_text for e in presenter.of("text")] == [
        "One.", "Two.", "I remember the lake house every summer.",
    ]
    assert all(h.released for h in player.loaded)


def test_stop_mid_voice_cleans_up(make_context, presenter):
    """stop() clears timers, rewinds audio, releases handles, silences callbacks."""
    player = FakePlayer(duration=1.0)
    scheduler = PlaybackScheduler(presenter, player)
    script = "[NARRATOR] One. Two. Three.\n[NARRATOR] Never reached."

    async def run():
        task = asyncio.create_task(_play(scheduler, script, make_context()))
        await _wait_until(lambda: presenter.of("text"))
        session = scheduler.session
        handle = session.current.handle
        assert session.pending_timers == 2
        scheduler.stop()
        assert session.pending_timers == 0
        assert handle.position == 0.0
        assert handle.paused
        assert all(step.resolution.handle.released for step in session.steps)
        events_at_stop = len(presenter.events)
        state = await asyncio.wait_for(task, timeout=1.0)
        await asyncio.sleep(0.05)
        return state, events_at_stop

    state, events_at_stop = asyncio.run(run())
    assert state == PlaybackState.CANCELLED
    assert scheduler.session is None
    assert len(presenter.events) == events_at_stop
    assert presenter.of("finished") == []
    assert len(presenter.of("text")) == 1


def test_stop_during_hold(make_context, presenter):
    scheduler = PlaybackScheduler(presenter, FakePlayer())

    async def run():
        task = asyncio.create_task(_play(scheduler, "[[HOLD]] <duration=30>\n[NARRATOR] Hi.", make_context()))
        await _wait_until(lambda: presenter.of("visual"))
        session = scheduler.session
        scheduler.stop()
        assert session.pending_timers == 0
        assert session.steps[1].resolution.handle.released
        return await asyncio.wait_for(task, timeout=1.0)

    assert asyncio.run(run()) == PlaybackState.CANCELLED
    assert presenter.of("finished") == []


def test_stop_during_build(make_context, fake_synthesize, presenter):
    started = []

    async def stalled(text, voice_id):
        started.append(text)
        await asyncio.sleep(60)

    fake_synthesize.side_effect = stalled
    scheduler = PlaybackScheduler(presenter, FakePlayer())

    async def run():
        task = asyncio.create_task(_play(scheduler, "[NARRATOR] Hi.", make_context()))
        await _wait_until(lambda: started)
        assert scheduler.state == PlaybackState.BUILDING
        scheduler.stop()
        return await asyncio.wait_for(task, timeout=1.0)

    assert asyncio.run(run()) == PlaybackState.CANCELLED
    assert presenter.of("error") == []
    assert presenter.of("loading")[-1] == ("loading", False, "")
    assert presenter.events[-1] == ("visual", VisualState())


def test_stop_is_idempotent_when_idle(presenter):
    scheduler = PlaybackScheduler(presenter, FakePlayer())
    scheduler.stop()
    assert scheduler.state == PlaybackState.IDLE
    assert presenter.events == []


def test_playback_error_advances(make_context, presenter):
    """A handle that fails to play is skipped; the cut still completes."""
    player = FakePlayer(fail_urls={"https://audio.example/msg-1.mp3"})
    script = "[Amy] I remember the lake house every summer.\n[NARRATOR] After."

    state = asyncio.run(_play(PlaybackScheduler(presenter, player), script, make_context()))

    assert state == PlaybackState.COMPLETED
    assert len(player.played) == 1
    assert all(h.released for h in player.loaded)
    assert presenter.of("error") == []
    assert presenter.of("finished") == [("finished",)]


def test_build_failure_reports_once(make_context, fake_synthesize, presenter):
    fake_synthesize.side_effect = [b"one", SynthesisError("quota exceeded")]
    context = make_context()
    created = []
    store = context.store_audio

    def tracking_store(data):
        created.append(store(data))
        return created[-1]
    context.store_audio = tracking_store
    scheduler = PlaybackScheduler(presenter, FakePlayer())

    with pytest.raises(SynthesisError):
        asyncio.run(_play(scheduler, "[NARRATOR] One.\n[NARRATOR] Two.", context))

    assert scheduler.state == PlaybackState.FAILED
    assert all(h.released for h in created)
    assert [e[0] for e in presenter.events] == ["loading", "loading", "visual", "error"]
    assert presenter.events[1] == ("loading", False, "")
    assert presenter.events[2] == ("visual", VisualState())
    assert isinstance(presenter.events[3][1], SynthesisError)


def test_play_while_playing_rejected(make_context, presenter):
    scheduler = PlaybackScheduler(presenter, FakePlayer(duration=0.2))

    async def run():
        task = asyncio.create_task(_play(scheduler, "[NARRATOR] Hi.", make_context()))
        await _wait_until(lambda: scheduler.state == PlaybackState.PLAYING)
        with pytest.raises(RuntimeError):
            await _play(scheduler, "[NARRATOR] Again.", make_context())
        scheduler.stop()
        await task

    asyncio.run(run())


def test_play_script_helper(make_context, presenter):
    state = asyncio.run(play_script("[NARRATOR] Hi.", make_context(), presenter, FakePlayer()))
    assert state == PlaybackState.COMPLETED


class _NoStreamPlayer(FakePlayer):
    """Player whose decoder chokes on one url with a non-playback error."""

    def __init__(self, bad_url, **kwargs):
        super().__init__(**kwargs)
        self.bad_url = bad_url

    async def load(self, handle):
        self.loaded.append(handle)
        if handle.url == self.bad_url:
            raise IndexError("list index out of range")
        return self.duration


def _tracking_resolver(context, resolutions):
    async def resolve(segment):
        resolution = await resolve_segment(segment, context=context)
        resolutions.append(resolution)
        return resolution
    return resolve


def test_unexpected_player_error_fails_and_recovers(make_context, presenter):
    """An unexpected error mid-playback releases everything and leaves the scheduler reusable."""
    player = _NoStreamPlayer("https://audio.example/msg-1.mp3")
    scheduler = PlaybackScheduler(presenter, player)
    resolutions = []
    script = "[Amy] I remember the lake house every summer.\n[NARRATOR] After."

    with pytest.raises(IndexError):
        asyncio.run(scheduler.play(parse_script(script), _tracking_resolver(make_context(), resolutions)))

    assert scheduler.state == PlaybackState.FAILED
    assert scheduler.session is None
    assert len(resolutions) == 2
    assert all(r.handle.released for r in resolutions)
    assert player.played == []
    errors = presenter.of("error")
    assert len(errors) == 1 and isinstance(errors[0][1], IndexError)
    assert presenter.events[-2] == ("visual", VisualState())
    assert presenter.of("finished") == []
    assert presenter.of("loading") == [("loading", True, "Preparing story..."), ("loading", False, "")]

    state = asyncio.run(_play(scheduler, "[NARRATOR] Again.", make_context()))
    assert state == PlaybackState.COMPLETED


def test_presenter_error_during_playback_fails(make_context, presenter):
    """A presenter callback that raises mid-cut is reported once and cancels pending timers."""
    scheduler = PlaybackScheduler(presenter, FakePlayer(duration=0.05))
    resolutions = []
    calls = []
    record = presenter.on_text_state

    def broken_text_state(state):
        record(state)
        calls.append(state)
        if len(calls) == 2:
            raise RuntimeError("display gone")
    presenter.on_text_state = broken_text_state

    async def run():
        task = asyncio.create_task(scheduler.play(
            parse_script("[NARRATOR] Hi.\n[[HOLD]] <duration=0.01>\n[NARRATOR] Second line."),
            _tracking_resolver(make_context(), resolutions)))
        with pytest.raises(RuntimeError, match="display gone"):
            await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(run())
    assert scheduler.state == PlaybackState.FAILED
    assert all(r.handle.released for r in resolutions)
    assert len(presenter.of("error")) == 1
    assert len(presenter.of("text")) == 2
