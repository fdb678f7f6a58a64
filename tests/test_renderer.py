import asyncio

import pytest

from conftest import FakeRenderer, make_keyframe
from errors import CaptureError
from renderer import NullRenderer, render_timeline_frames
from timeline import Timeline


def _timeline():
    timeline = Timeline()
    timeline.add(make_keyframe(0.0, height=0.0))
    timeline.add(make_keyframe(1.0, height=100.0, fov=30.0))
    return timeline


def test_render_timeline_frames_writes_ceil_frames(tmp_path):
    timeline = _timeline()
    renderer = FakeRenderer()
    progress = []

    count = asyncio.run(
        render_timeline_frames(
            timeline.sample, renderer, tmp_path, duration=1.05, fps=10,
            on_frame=lambda i, total: progress.append((i, total)),
        )
    )

    assert count == 11
    assert sorted(p.name for p in tmp_path.glob("frame_*.png"))[-1] == "frame_000010.png"
    assert progress[-1] == (10, 11)
    poses = [args for name, args in renderer.calls if name == "set_pose"]
    assert poses[5] == timeline.sample(0.5)


def test_render_timeline_frames_clears_stale_frames(tmp_path):
    (tmp_path / "frame_000099.png").write_bytes(b"old")
    asyncio.run(render_timeline_frames(_timeline().sample, FakeRenderer(), tmp_path, duration=0.2, fps=10))
    assert not (tmp_path / "frame_000099.png").exists()


def test_render_timeline_frames_stops_when_told(tmp_path):
    calls = iter([True, True, False])
    count = asyncio.run(
        render_timeline_frames(
            _timeline().sample, FakeRenderer(), tmp_path, duration=1.0, fps=10,
            should_continue=lambda: next(calls),
        )
    )
    assert count == 2
    assert len(list(tmp_path.glob("frame_*.png"))) == 2


def test_null_renderer_tracks_pose_but_cannot_capture():
    renderer = NullRenderer(640, 360)
    pose = _timeline().sample(0.25)

    async def scenario():
        await renderer.set_pose(pose)
        await renderer.set_field_of_view(pose.fov)
        await renderer.resize(100, 50)
        with pytest.raises(CaptureError):
            await renderer.render_and_capture()

    asyncio.run(scenario())
    assert (renderer.pose, renderer.fov, renderer.size) == (pose, pose.fov, (100, 50))
