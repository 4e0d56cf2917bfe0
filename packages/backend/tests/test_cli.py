"""CLI tests — the status command reads the pid file."""

from click.testing import CliRunner

from votecast.cli.main import cli
from votecast.realtime.liveness import write_pid_file


def test_status_not_running(monkeypatch, tmp_path):
    from votecast.cli import main

    monkeypatch.setattr(main.settings, "pid_file", str(tmp_path / "ws.pid"))
    result = CliRunner().invoke(cli, ["status"])
    assert result.exit_code == 1
    assert "not running" in result.output


def test_status_running(monkeypatch, tmp_path):
    from votecast.cli import main

    pid_file = str(tmp_path / "ws.pid")
    monkeypatch.setattr(main.settings, "pid_file", pid_file)
    write_pid_file(pid_file)

    result = CliRunner().invoke(cli, ["status"])
    assert result.exit_code == 0
    assert result.output.startswith("running (pid ")


def test_serve_passes_options_to_uvicorn(monkeypatch):
    calls = {}

    def fake_run(app, host, port, log_level):
        calls.update(app=app, host=host, port=port)

    monkeypatch.setattr("uvicorn.run", fake_run)
    result = CliRunner().invoke(cli, ["serve", "--host", "127.0.0.1", "--port", "9001"])

    assert result.exit_code == 0, result.output
    assert calls["host"] == "127.0.0.1"
    assert calls["port"] == 9001
    assert "ws://127.0.0.1:9001/ws" in result.output
