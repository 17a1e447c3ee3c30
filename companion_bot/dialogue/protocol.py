from __future__ import annotations

import re
from dataclasses import dataclass

MEMORY_SKIP_SENTINEL = "IGNORE"

_REPLY_RE = re.compile(r"<reply>([\s\S]*?)</reply>")
_REACT_RE = re.compile(r"<react>([\s\S]*?)</react>")
_MEMORY_RE = re.compile(r"<memory>([\s\S]*?)</memory>")


@dataclass(frozen=True, slots=True)
class ParsedReply:
    reply: str
    reaction: str
    memory_summary: str

    @property
    def should_persist(self) -> bool:
        return is_persistable_memory(self.memory_summary)


def is_persistable_memory(summary: str) -> bool:
    cleaned = (summary or "").strip()
    return bool(cleaned) and MEMORY_SKIP_SENTINEL not in cleaned


def _region(pattern: re.Pattern[str], raw_text: str) -> str | None:
    match = pattern.search(raw_text)
    if match is None:
        return None
    return match.group(1).strip()


def parse(raw_text: str) -> ParsedReply:
    raw = raw_text or ""
    reply = _region(_REPLY_RE, raw)
    reaction = _region(_REACT_RE, raw)
    memory = _region(_MEMORY_RE, raw)
    return ParsedReply(
        reply=reply if reply else raw.strip(),
        reaction=reaction or "",
        memory_summary=memory if memory is not None else MEMORY_SKIP_SENTINEL,
    )
