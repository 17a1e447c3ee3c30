from __future__ import annotations

import importlib
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

pytest.importorskip("discord")
pytest.importorskip("chromadb")
pytest.importorskip("redis")
pytest.importorskip("aiohttp")


def test_module_entrypoint_runs_app_main() -> None:
    app = importlib.import_module("companion_bot.app")
    entry = importlib.import_module("companion_bot.__main__")

    assert entry.main is app.main


def test_main_refuses_to_start_without_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    app = importlib.import_module("companion_bot.app")
    for key in ("DISCORD_TOKEN", "GEMINI_API_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(app, "configure_logging", lambda: None)

    with pytest.raises(ValueError, match="DISCORD_TOKEN"):
        app.main()
