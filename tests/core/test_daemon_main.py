from __future__ import annotations

import sys

from src.deskrelay.daemon.main import main, run_server


class _FakeUvicorn:
    calls: list[tuple[tuple, dict]] = []

    @staticmethod
    def run(*args, **kwargs):
        _FakeUvicorn.calls.append((args, kwargs))
        return None


def test_run_server_invokes_uvicorn(monkeypatch):
    _FakeUvicorn.calls = []
    monkeypatch.setitem(sys.modules, "uvicorn", _FakeUvicorn)

    out = run_server(host="0.0.0.0", port=8080, log_level="warning")
    assert out == 0
    ((args, kwargs),) = _FakeUvicorn.calls
    assert args == ("app.main:app",)
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 8080
    assert kwargs["reload"] is False


def test_main_parses_cli_args(monkeypatch):
    seen: dict = {}

    def _fake_run_server(**kwargs):
        seen.update(kwargs)
        return 0

    monkeypatch.setattr("src.deskrelay.daemon.main.run_server", _fake_run_server)
    out = main(["--host", "0.0.0.0", "--port", "3100", "--log-level", "DEBUG"])
    assert out == 0
    assert seen == {"host": "0.0.0.0", "port": 3100, "log_level": "DEBUG"}


def test_main_defaults_to_port_3000(monkeypatch):
    seen: dict = {}
    monkeypatch.setattr("src.deskrelay.daemon.main.run_server", lambda **kwargs: seen.update(kwargs) or 0)
    assert main([]) == 0
    assert seen["port"] == 3000
    assert seen["log_level"] is None
