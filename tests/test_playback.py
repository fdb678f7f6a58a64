import asyncio

import pytest

from conftest import FakeRenderer, FakeTime, make_keyframe
from errors import ClockBusyError
from events import Finished, FrameUpdated, Paused, Played, Stopped, TimeUpdated
from playback import PlaybackClock
from timeline import Timeline


def _timeline():
    timeline = Timeline()
    timeline.add(make_keyframe(0.0, height=0.0))
    timeline.add(make_keyframe(2.0, height=2000.0))
    return timeline


def _clock(renderer=None, fake_time=None, **kwargs):
    kwargs.setdefault("duration", 2.0)
    kwargs.setdefault("fps", 30)
    return PlaybackClock(
        _timeline(),
        renderer or FakeRenderer(),
        time_source=fake_time or FakeTime(),
        drive_loop=False,
        **kwargs,
    )


def _collect(clock, *event_types):
    seen = []
    for event_type in event_types:
        clock.events.subscribe(event_type, seen.append)
    return seen


async def _simulate(clock, fake_time, until_ms, step_ms=5):
    ms = 0
    while ms < until_ms:
        ms += step_ms
        fake_time.now = ms / 1000.0
        await clock.tick()


def test_playback_without_loop_ends_exactly_at_duration():
    fake_time = FakeTime()
    clock = _clock(fake_time=fake_time)
    finished = _collect(clock, Finished)

    async def scenario():
        await clock.play()
        await _simulate(clock, fake_time, until_ms=2600)

    asyncio.run(scenario())

    assert clock.current_time == 2.0
    assert len(finished) == 1
    assert clock.is_playing is False


def test_finish_publishes_time_update_before_finished():
    fake_time = FakeTime()
    clock = _clock(fake_time=fake_time, duration=0.1, fps=10)
    seen = _collect(clock, TimeUpdated, Finished, Paused)

    async def scenario():
        await clock.play()
        await _simulate(clock, fake_time, until_ms=500)

    asyncio.run(scenario())

    tail = [type(e) for e in seen[-3:]]
    assert tail == [Paused, TimeUpdated, Finished]


def test_looping_playback_wraps_and_never_finishes():
    fake_time = FakeTime()
    clock = _clock(fake_time=fake_time, loop=True)
    finished = _collect(clock, Finished)

    async def scenario():
        await clock.play()
        await _simulate(clock, fake_time, until_ms=5000)

    asyncio.run(scenario())

    assert 0.0 <= clock.current_time < clock.duration
    assert finished == []
    assert clock.is_playing is True


def test_tick_advances_one_frame_even_after_long_stall():
    fake_time = FakeTime()
    clock = _clock(fake_time=fake_time, fps=10)
    frames = _collect(clock, FrameUpdated)

    async def scenario():
        await clock.play()
        assert await clock.tick(0.05) is False
        assert await clock.tick(0.35) is True

    asyncio.run(scenario())

    assert clock.current_time == pytest.approx(0.1)
    assert frames == [FrameUpdated(clock.current_time, 1)]


def test_tick_carries_remainder_forward():
    fake_time = FakeTime()
    clock = _clock(fake_time=fake_time, fps=10)

    async def scenario():
        await clock.play()
        await clock.tick(0.13)  # 30 ms carried over
        moved = await clock.tick(0.205)
        return moved

    assert asyncio.run(scenario()) is True
    assert clock.current_time == pytest.approx(0.2)


def test_tick_updates_renderer_from_timeline():
    renderer = FakeRenderer()
    fake_time = FakeTime()
    clock = _clock(renderer=renderer, fake_time=fake_time, fps=10)

    async def scenario():
        await clock.play()
        await clock.tick(0.1)

    asyncio.run(scenario())

    assert renderer.pose == clock.timeline.sample(clock.current_time)
    assert renderer.fov == renderer.pose.fov


def test_play_and_pause_toggle_interactive_control_once():
    renderer = FakeRenderer()
    clock = _clock(renderer=renderer)
    seen = _collect(clock, Played, Paused)

    async def scenario():
        await clock.play()
        await clock.play()
        assert renderer.interactive is False
        await clock.pause()
        await clock.pause()

    asyncio.run(scenario())

    assert [type(e) for e in seen] == [Played, Paused]
    assert renderer.interactive is True


def test_stop_rewinds_to_start():
    clock = _clock()
    seen = _collect(clock, Stopped)

    async def scenario():
        await clock.seek(1.5)
        await clock.play()
        await clock.stop()

    asyncio.run(scenario())

    assert clock.current_time == 0.0
    assert clock.is_playing is False
    assert seen == [Stopped(0.0)]


def test_seek_clamps_and_updates_pose_while_paused():
    renderer = FakeRenderer()
    clock = _clock(renderer=renderer)

    async def scenario():
        await clock.seek(-3)
        assert clock.current_time == 0.0
        await clock.seek(99)
        assert clock.current_time == 2.0
        await clock.seek(1.0)

    asyncio.run(scenario())

    assert renderer.pose.height == pytest.approx(1000.0)


def test_step_forward_and_backward_move_one_frame():
    clock = _clock(fps=25)

    async def scenario():
        await clock.step_forward()
        await clock.step_forward()
        await clock.step_backward()

    asyncio.run(scenario())

    assert clock.current_time == pytest.approx(0.04)
    assert clock.current_frame == 1


def test_config_changes_keep_current_time():
    clock = _clock()

    async def scenario():
        await clock.seek(1.5)

    asyncio.run(scenario())
    clock.set_fps(60)
    assert clock.current_time == 1.5
    assert clock.frame_interval_ms == pytest.approx(1000 / 60)
    clock.set_duration(1.0)
    assert clock.current_time == 1.0
    assert clock.total_frames == 60
    with pytest.raises(ValueError):
        clock.set_fps(0)


def test_hold_excludes_other_writers_and_restores_state():
    fake_time = FakeTime()
    clock = _clock(fake_time=fake_time)

    async def scenario():
        await clock.seek(0.5)
        await clock.play()
        async with clock.hold():
            assert clock.is_playing is False
            assert await clock.tick(1.0) is False
            with pytest.raises(ClockBusyError):
                await clock.play()
            with pytest.raises(ClockBusyError):
                await clock.seek(1.0)
            with pytest.raises(ClockBusyError):
                async with clock.hold():
                    pass
        assert clock.is_held is False

    asyncio.run(scenario())

    assert clock.current_time == 0.5
    assert clock.is_playing is True


def test_hold_restores_state_when_block_raises():
    clock = _clock()

    async def scenario():
        await clock.play()
        with pytest.raises(RuntimeError):
            async with clock.hold():
                raise RuntimeError("export blew up")

    asyncio.run(scenario())

    assert clock.is_playing is True
    assert clock.is_held is False


def test_run_loop_drives_playback_to_the_end():
    clock = PlaybackClock(_timeline(), FakeRenderer(), duration=0.05, fps=100)
    finished = _collect(clock, Finished)

    async def scenario():
        await clock.play()
        for _ in range(100):
            if not clock.is_playing:
                break
            await asyncio.sleep(0.01)

    asyncio.run(scenario())

    assert finished and clock.current_time == 0.05
