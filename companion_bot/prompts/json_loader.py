from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger("companion_bot.prompts")

# resolved path -> (mtime_ns or None when absent, merged prompts)
_LOADED: dict[str, tuple[int | None, dict[str, Any]]] = {}


def prompts_dir() -> Path:
    configured = os.getenv("COMPANION_PROMPTS_DIR", "").strip()
    return Path(configured).expanduser() if configured else Path(__file__).with_name("data")


def _overlay(defaults: Any, overrides: Any) -> Any:
    if not (isinstance(defaults, dict) and isinstance(overrides, dict)):
        return copy.deepcopy(overrides)
    combined = copy.deepcopy(defaults)
    for key, value in overrides.items():
        combined[key] = _overlay(combined[key], value) if key in combined else copy.deepcopy(value)
    return combined


def _file_version(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None


def _read_overrides(path: Path) -> dict[str, Any] | None:
    if not path.is_file():
        logger.warning("Prompt JSON not found: %s (using defaults)", path)
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as exc:
        logger.warning("Failed to parse prompt JSON %s (%s). Using defaults.", path, exc)
        return None
    if not isinstance(payload, dict):
        logger.warning("Prompt JSON root must be an object: %s (using defaults)", path)
        return None
    return payload


def load_prompt_json(filename: str, defaults: dict[str, Any]) -> dict[str, Any]:
    """Prompt defaults overlaid with ``<prompts_dir>/<filename>``; re-read only when the file changes."""
    path = prompts_dir() / filename
    key = str(path.resolve())
    version = _file_version(path)

    hit = _LOADED.get(key)
    if hit is not None and hit[0] == version:
        return copy.deepcopy(hit[1])

    overrides = _read_overrides(path)
    prompts = copy.deepcopy(defaults) if overrides is None else _overlay(defaults, overrides)
    _LOADED[key] = (version, copy.deepcopy(prompts))
    return prompts
