from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

BUSY_REPLY = "Từ từ, đang gõ câu trước chưa xong, nói nhanh quá lú não!"
TOO_LONG_REPLY = "Đọc mỏi mắt quá, hỏi ngắn gọn lại xíu đi! "
GENERIC_ERROR_REPLY = "Đang lỗi lú não xíu, tí thử lại nha"
NO_PERMISSION_REPLY = "❌ Bạn không có quyền dùng lệnh này."
EMPTY_MENTION_QUERY = "Alo có gì không vậy??"


def chunk_text(text: str, limit: int = 1900) -> list[str]:
    if len(text) <= limit:
        return [text]
    parts: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        if len(current) + len(line) <= limit:
            current += line
            continue
        if current:
            parts.append(current)
            current = ""
        if len(line) <= limit:
            current = line
        else:
            for i in range(0, len(line), limit):
                parts.append(line[i : i + limit])
    if current:
        parts.append(current)
    return parts


def format_admin_error(exc: BaseException) -> str:
    return f"❌ **[LỖI HỆ THỐNG]:**\n```{exc}```"


def strip_bot_mention(text: str, bot_id: int) -> str:
    return re.sub(rf"<@!?{bot_id}>", "", text or "").strip()


def build_live_profile(
    *,
    is_admin: bool,
    user_id: int | str,
    username: str,
    display_name: str | None = None,
    role_names: Iterable[str] | None = None,
) -> str:
    role_context = "[ADMIN SERVER]" if is_admin else "[USER THƯỜNG]"
    lines = [
        f"Role Context: {role_context}",
        f"User ID: {user_id}",
        f"Username: {username}",
    ]
    if display_name is not None:
        roles = [name for name in (role_names or []) if name and name != "@everyone"]
        lines.append(f"Display Name: {display_name}")
        lines.append(f"Roles: {', '.join(roles) or 'None'}")
    return "\n".join(lines)


def channel_matches_keywords(channel_name: str, keywords: Iterable[str]) -> bool:
    lowered = channel_name.lower()
    return any(keyword.lower() in lowered for keyword in keywords)


@dataclass(slots=True)
class InFlightGuard:
    """At most one request in flight per identifier; extra requests are turned away."""

    active: set[str] = field(default_factory=set)

    def try_acquire(self, identifier: str) -> bool:
        if identifier in self.active:
            return False
        self.active.add(identifier)
        return True

    def release(self, identifier: str) -> None:
        self.active.discard(identifier)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self.active


def render_knowledge_message(message: object) -> str:
    """Message text plus any embed titles, descriptions and fields."""
    text = str(getattr(message, "content", "") or "")
    for embed in getattr(message, "embeds", None) or []:
        text += f"\n[Title]: {getattr(embed, 'title', None) or ''}"
        text += f"\n[Desc]: {getattr(embed, 'description', None) or ''}"
        for embed_field in getattr(embed, "fields", None) or []:
            text += f"\n- {getattr(embed_field, 'name', '')}: {getattr(embed_field, 'value', '')}"
    return text if text.strip() else ""


def forum_tone_from_tags(tag_names: Iterable[str]) -> str:
    lowered = [name.lower() for name in tag_names]
    if any("roast" in name or "khịa" in name for name in lowered):
        return "roast"
    if any("deep" in name or "tâm sự" in name for name in lowered):
        return "deep"
    return "normal"
