from __future__ import annotations

import logging

from deck_analyzer import cli
from deck_analyzer.core.config import Settings
from deck_analyzer.core.logging_setup import setup_logging


def test_nested_settings_from_environment(monkeypatch):
    monkeypatch.setenv("RENDER__TIMEOUT_SECONDS", "120")
    monkeypatch.setenv("UNDERSTANDING__MODEL", "gemini-2.5-pro")
    monkeypatch.setenv("MAX_CONCURRENT_JOBS", "4")

    settings = Settings(_env_file=None)

    assert settings.render.timeout_seconds == 120.0
    assert settings.render.font_name == "Liberation Sans"
    assert settings.understanding.model == "gemini-2.5-pro"
    assert settings.understanding.temperature == 0.1
    assert settings.max_concurrent_jobs == 4


def test_setup_logging_installs_handlers(tmp_path):
    setup_logging("debug", tmp_path / "logs" / "service.log")
    root = logging.getLogger()
    try:
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in root.handlers[:]:
            handler.close()
            root.removeHandler(handler)
        root.setLevel(logging.WARNING)


def test_cli_rejects_missing_and_non_pptx_files(tmp_path):
    assert cli.main(["analyze", str(tmp_path / "missing.pptx")]) == 2

    notes = tmp_path / "notes.txt"
    notes.write_text("hello")
    assert cli.main(["analyze", str(notes)]) == 2
