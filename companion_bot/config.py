from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Set

from dotenv import load_dotenv


load_dotenv()


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_id_set(name: str, aliases: tuple[str, ...] = ()) -> Set[int]:
    raw = (_env_lookup(name, aliases) or "").strip()
    if not raw:
        return set()
    result: Set[int] = set()
    for chunk in raw.split(","):
        value = chunk.strip()
        if not value:
            continue
        try:
            result.add(int(value))
        except ValueError:
            continue
    return result


def _env_list(name: str, default: tuple[str, ...], aliases: tuple[str, ...] = ()) -> tuple[str, ...]:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    items = tuple(chunk.strip() for chunk in raw.split(",") if chunk.strip())
    return items or default


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


DEFAULT_PERSONA_TEXT = "Mặc định (Thân thiện)"
DEFAULT_SERVER_INFO_KEYWORDS = ("luật", "rule", "info", "thông-báo", "guide", "hướng-dẫn")


@dataclass(slots=True)
class Settings:
    discord_token: str
    discord_message_content_intent: bool
    discord_members_intent: bool
    preferred_response_language: str
    default_persona_text: str
    bot_display_name: str
    bot_creator_name: str
    chat_max_message_chars: int
    mention_max_message_chars: int

    gemini_api_key: str
    gemini_base_url: str
    gemini_model: str
    gemini_summary_model: str
    gemini_daily_model: str
    gemini_embedding_model: str
    gemini_timeout_seconds: int
    gemini_temperature: float
    gemini_daily_temperature: float
    gemini_max_output_tokens: int

    redis_host: str
    redis_port: int
    redis_password: str
    redis_db: int

    chroma_url: str
    chroma_password: str
    chroma_profile_collection: str
    chroma_persona_collection: str
    chroma_server_collection: str
    chroma_history_collection: str

    recency_max_turns: int
    recency_ttl_seconds: int
    recency_max_chars: int
    server_knowledge_top_k: int
    history_top_k: int
    memory_compaction_threshold: int
    memory_compaction_scan_limit: int

    daily_fact_channel_ids: Set[int]
    daily_fact_hour: int
    daily_fact_topic_limit: int
    forum_comment_channel_ids: Set[int]
    server_info_keywords: tuple[str, ...]
    server_info_messages_per_channel: int

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN") or ""),
            discord_message_content_intent=_env_bool("DISCORD_MESSAGE_CONTENT_INTENT", True),
            discord_members_intent=_env_bool("DISCORD_MEMBERS_INTENT", True),
            preferred_response_language=_env_str("PREFERRED_RESPONSE_LANGUAGE", "Vietnamese"),
            default_persona_text=_env_str("DEFAULT_PERSONA_TEXT", DEFAULT_PERSONA_TEXT),
            bot_display_name=_env_str("BOT_DISPLAY_NAME", "AnhPan"),
            bot_creator_name=_env_str("BOT_CREATOR_NAME", "It's Russell"),
            chat_max_message_chars=_env_int("CHAT_MAX_MESSAGE_CHARS", 800),
            mention_max_message_chars=_env_int("MENTION_MAX_MESSAGE_CHARS", 400),
            gemini_api_key=_env_str("GEMINI_API_KEY", "", aliases=("GOOGLE_API_KEY",)),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-2.5-flash", aliases=("GOOGLE_MODEL",)),
            gemini_summary_model=_env_str(
                "GEMINI_SUMMARY_MODEL",
                "gemini-2.5-flash-lite",
                aliases=("SUMMARY_GOOGLE_MODEL",),
            ),
            gemini_daily_model=_env_str("GEMINI_DAILY_MODEL", "gemini-2.5-flash", aliases=("DAILY_GOOGLE_MODEL",)),
            gemini_embedding_model=_env_str("GEMINI_EMBEDDING_MODEL", "text-embedding-004"),
            gemini_timeout_seconds=_env_int("GEMINI_TIMEOUT_SECONDS", 90),
            gemini_temperature=_env_float("GEMINI_TEMPERATURE", 0.3),
            gemini_daily_temperature=_env_float("GEMINI_DAILY_TEMPERATURE", 0.85),
            gemini_max_output_tokens=_env_int("GEMINI_MAX_OUTPUT_TOKENS", 0),
            redis_host=_env_str("REDIS_HOST", "localhost"),
            redis_port=_env_int("REDIS_PORT", 6379),
            redis_password=_env_str("REDIS_PASSWORD", ""),
            redis_db=_env_int("REDIS_DB", 0),
            chroma_url=_env_str("CHROMA_URL", "http://localhost:8000"),
            chroma_password=_env_str("CHROMA_PASSWORD", ""),
            chroma_profile_collection=_env_str("CHROMA_PROFILE_COLLECTION", "profile"),
            chroma_persona_collection=_env_str("CHROMA_PERSONA_COLLECTION", "persona"),
            chroma_server_collection=_env_str("CHROMA_SERVER_COLLECTION", "server-info"),
            chroma_history_collection=_env_str("CHROMA_HISTORY_COLLECTION", "history"),
            recency_max_turns=_env_int("RECENCY_MAX_TURNS", 20),
            recency_ttl_seconds=_env_int("RECENCY_TTL_SECONDS", 3600),
            recency_max_chars=_env_int("RECENCY_MAX_CHARS", 800),
            server_knowledge_top_k=_env_int("SERVER_KNOWLEDGE_TOP_K", 3),
            history_top_k=_env_int("HISTORY_TOP_K", 5),
            memory_compaction_threshold=_env_int("MEMORY_COMPACTION_THRESHOLD", 50),
            memory_compaction_scan_limit=_env_int("MEMORY_COMPACTION_SCAN_LIMIT", 100),
            daily_fact_channel_ids=_env_id_set("DAILY_FACT_CHANNELS"),
            daily_fact_hour=_env_int("DAILY_FACT_HOUR", 8),
            daily_fact_topic_limit=_env_int("DAILY_FACT_TOPIC_LIMIT", 50),
            forum_comment_channel_ids=_env_id_set("FORUM_COMMENT_CHANNELS"),
            server_info_keywords=_env_list("SERVER_INFO_KEYWORDS", DEFAULT_SERVER_INFO_KEYWORDS),
            server_info_messages_per_channel=_env_int("SERVER_INFO_MESSAGES_PER_CHANNEL", 50),
        )

    def validate(self) -> None:
        if not self.discord_token:
            raise ValueError("DISCORD_TOKEN is required")
        if self.discord_token == "put_your_discord_bot_token_here":
            raise ValueError("DISCORD_TOKEN is still placeholder")

        if not self.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        if self.gemini_api_key == "put_your_gemini_api_key_here":
            raise ValueError("GEMINI_API_KEY is still placeholder")
        if self.gemini_timeout_seconds < 5:
            raise ValueError("GEMINI_TIMEOUT_SECONDS must be >= 5")
        if self.gemini_max_output_tokens < 0:
            raise ValueError("GEMINI_MAX_OUTPUT_TOKENS must be >= 0 (0 disables explicit cap)")
        if self.gemini_temperature < 0.0 or self.gemini_temperature > 2.0:
            raise ValueError("GEMINI_TEMPERATURE must be in [0, 2]")
        if self.gemini_daily_temperature < 0.0 or self.gemini_daily_temperature > 2.0:
            raise ValueError("GEMINI_DAILY_TEMPERATURE must be in [0, 2]")

        if not self.chroma_url:
            raise ValueError("CHROMA_URL is required")
        if self.redis_port < 1:
            raise ValueError("REDIS_PORT must be >= 1")

        if self.chat_max_message_chars < 1:
            raise ValueError("CHAT_MAX_MESSAGE_CHARS must be >= 1")
        if self.mention_max_message_chars < 1:
            raise ValueError("MENTION_MAX_MESSAGE_CHARS must be >= 1")

        if self.recency_max_turns < 2:
            raise ValueError("RECENCY_MAX_TURNS must be >= 2")
        if self.recency_ttl_seconds < 60:
            raise ValueError("RECENCY_TTL_SECONDS must be >= 60")
        if self.recency_max_chars < 50:
            raise ValueError("RECENCY_MAX_CHARS must be >= 50")

        if self.server_knowledge_top_k < 1:
            raise ValueError("SERVER_KNOWLEDGE_TOP_K must be >= 1")
        if self.history_top_k < 1:
            raise ValueError("HISTORY_TOP_K must be >= 1")
        if self.memory_compaction_threshold < 2:
            raise ValueError("MEMORY_COMPACTION_THRESHOLD must be >= 2")
        if self.memory_compaction_scan_limit < self.memory_compaction_threshold:
            raise ValueError("MEMORY_COMPACTION_SCAN_LIMIT must be >= MEMORY_COMPACTION_THRESHOLD")

        if self.daily_fact_hour < 0 or self.daily_fact_hour > 23:
            raise ValueError("DAILY_FACT_HOUR must be in [0, 23]")
        if self.daily_fact_topic_limit < 1:
            raise ValueError("DAILY_FACT_TOPIC_LIMIT must be >= 1")
        if self.server_info_messages_per_channel < 1:
            raise ValueError("SERVER_INFO_MESSAGES_PER_CHANNEL must be >= 1")
