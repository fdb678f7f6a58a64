import json

import cli
from backend_client import JobStatus
from conftest import FakeBackend


def test_demo_writes_a_loadable_project(tmp_path, capsys):
    target = tmp_path / "demo.json"
    assert cli.main(["demo", str(target), "--duration", "12"]) == 0

    doc = json.loads(target.read_text(encoding="utf-8"))
    assert doc["duration"] == 12.0
    assert [k["time"] for k in doc["keyframes"]] == [0, 3, 6, 10]
    assert "[INFO] Demo project written" in capsys.readouterr().out


def test_missing_project_is_an_error(tmp_path, capsys):
    assert cli.main(["export", str(tmp_path / "nope.json")]) == 1
    assert "[ERROR]" in capsys.readouterr().err


def test_invalid_project_is_an_error(tmp_path, capsys):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"keyframes": [{"time": -2}]}), encoding="utf-8")
    assert cli.main(["render", str(path)]) == 1
    assert "[ERROR]" in capsys.readouterr().err


def test_server_mode_export_downloads_video(tmp_path, monkeypatch, capsys):
    project = tmp_path / "trip.json"
    cli.main(["demo", str(project), "--duration", "2", "--fps", "10"])

    backend = FakeBackend()
    backend.statuses = [JobStatus("completed", 100, "Done")]
    monkeypatch.setattr(cli, "ExportBackend", lambda url: backend)

    code = cli.main([
        "export", str(project), "--mode", "server", "--resolution", "480p",
        "--output-dir", str(tmp_path / "out"),
    ])

    assert code == 0
    payload = backend.started_jobs[0]
    assert (payload["resolution"], payload["fps"], payload["duration"]) == ("854x480", 10, 2.0)
    videos = list((tmp_path / "out").glob("animation_*.mp4"))
    assert [v.read_bytes() for v in videos] == [b"SERVERMP4"]
    assert "[DONE]" in capsys.readouterr().out
