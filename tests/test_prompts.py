from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from companion_bot.prompts.chat import (  # noqa: E402
    RESPONSE_TAG_BLOCK,
    build_main_chat_prompt,
    build_optimize_query_prompt,
    forum_comment_fallback,
    forum_tone_instruction,
)
from companion_bot.prompts.json_loader import load_prompt_json  # noqa: E402


def test_main_chat_prompt_ends_with_tag_block() -> None:
    prompt = build_main_chat_prompt(
        profile="Username: lan",
        persona="Thân thiện",
        server_context="No spam",
        short_term="User: hi",
        long_term="Lan likes cats",
        message="hello",
    )

    assert "[Req]: hello" in prompt
    assert prompt.endswith(RESPONSE_TAG_BLOCK)


def test_json_override_is_merged_over_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "chat.json").write_text(
        json.dumps({"forum_tones": {"roast": "Khịa nhẹ thôi"}, "optimize_query_template": "KW: {query}"}),
        encoding="utf-8",
    )
    monkeypatch.setenv("COMPANION_PROMPTS_DIR", str(tmp_path))

    assert forum_tone_instruction("roast") == "Khịa nhẹ thôi"
    assert "thân thiện" in forum_tone_instruction("unknown").lower()
    assert build_optimize_query_prompt("luật server") == "KW: luật server"
    assert forum_comment_fallback() == "Chủ đề này làm tui lú quá bro... 🤐"


def test_broken_json_falls_back_to_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("COMPANION_PROMPTS_DIR", str(tmp_path))

    assert load_prompt_json("broken.json", {"a": {"b": 1}}) == {"a": {"b": 1}}
    assert load_prompt_json("missing.json", {"x": "y"}) == {"x": "y"}
