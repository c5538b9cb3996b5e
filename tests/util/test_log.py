from __future__ import annotations

import json
import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from rootmux.core.global_paths import GlobalPath
from rootmux.util.log import MAX_LOG_FILES, Log, LogFormat, LogLevel


@pytest.fixture(autouse=True)
def quiet_log() -> Iterator[None]:
    yield
    Log.configure(level=LogLevel.INFO, format=LogFormat.KV, console=False, file=False)


def test_log_writes_console_and_file(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(GlobalPath, "log", classmethod(lambda cls: str(tmp_path)))
    Log.configure(level=LogLevel.INFO, format=LogFormat.KV, console=True, file=True, dev=True)

    log = Log.create({"service": "test.log"})
    log.info("connection ready", {"root": "file:///work/"})
    Log.close()

    stderr = capsys.readouterr().err
    text = (tmp_path / "dev.log").read_text(encoding="utf-8")

    assert 'msg="connection ready"' in stderr
    assert "service=test.log" in stderr
    assert "root=file:///work/" in text


def test_log_supports_json_format(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(GlobalPath, "log", classmethod(lambda cls: str(tmp_path)))
    Log.configure(level=LogLevel.INFO, format=LogFormat.JSON, console=False, file=True, dev=True)

    log = Log.create({"service": "test.json"})
    log.error("connection failed", {"error": ConnectionRefusedError("refused")})
    Log.close()

    payload = json.loads((tmp_path / "dev.log").read_text(encoding="utf-8").strip())

    assert payload["level"] == "error"
    assert payload["msg"] == "connection failed"
    assert payload["error"] == "refused"


def test_level_filters_records(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(GlobalPath, "log", classmethod(lambda cls: str(tmp_path)))
    Log.configure(level=LogLevel.WARN, format=LogFormat.KV, console=False, file=True, dev=True)

    log = Log.create({"service": "test.level"})
    log.debug("hidden")
    log.info("hidden too")
    log.warn("shown")
    Log.close()

    lines = (tmp_path / "dev.log").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert "msg=shown" in lines[0]


def test_old_log_files_are_cleaned_up(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(GlobalPath, "log", classmethod(lambda cls: str(tmp_path)))
    for index in range(MAX_LOG_FILES + 3):
        old = tmp_path / f"2024-01-{index + 1:02d}T000000.log"
        old.write_text("", encoding="utf-8")
        os.utime(old, (index, index))

    Log.configure(file=True, dev=True)
    Log.close()

    remaining = sorted(p.name for p in tmp_path.glob("????-??-??T??????.log"))
    assert len(remaining) == MAX_LOG_FILES
    assert "2024-01-01T000000.log" not in remaining


def test_log_level_parse() -> None:
    assert LogLevel.parse(None) == LogLevel.INFO
    assert LogLevel.parse("Warning") == LogLevel.WARN
    with pytest.raises(ValueError):
        LogLevel.parse("loud")
