from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import discord
from discord import app_commands

from ..config import Settings
from ..dialogue.orchestrator import ConversationOrchestrator
from ..memory.compactor import MemoryWriter
from ..services.daily_fact import DailyFactService
from .common import InFlightGuard
from .mixins.commands_mixin import CommandsMixin
from .mixins.message_mixin import MessageMixin
from .mixins.server_mixin import ServerMixin

logger = logging.getLogger("companion_bot")


class CompanionDiscordBot(
    CommandsMixin,
    MessageMixin,
    ServerMixin,
    discord.Client,
):
    def __init__(
        self,
        settings: Settings,
        orchestrator: ConversationOrchestrator,
        writer: MemoryWriter,
        daily_facts: DailyFactService,
        llm_clients: list[Any],
        redis: Any,
        store: Any,
    ) -> None:
        intents = discord.Intents.default()
        intents.message_content = settings.discord_message_content_intent
        intents.members = settings.discord_members_intent

        super().__init__(intents=intents)

        self.settings = settings
        self.orchestrator = orchestrator
        self.writer = writer
        self.daily_facts = daily_facts
        self.llm_clients = llm_clients
        self.redis = redis
        self.store = store
        self.in_flight = InFlightGuard()
        self.tree = app_commands.CommandTree(self)
        self._register_commands()

        self.daily_fact_task: asyncio.Task[None] | None = None

    async def setup_hook(self) -> None:
        for client in self.llm_clients:
            await client.start()
        await self.redis.ping()
        await self.store.ping()
        await self.writer.start()

        if self.settings.daily_fact_channel_ids:
            self.daily_fact_task = asyncio.create_task(self._daily_fact_loop(), name="daily-fact")

        try:
            synced = await self.tree.sync()
            logger.info("Registered %s slash commands", len(synced))
        except discord.HTTPException as exc:
            logger.error("Slash command sync failed: %s", exc)

    async def close(self) -> None:
        await self._cancel_task(self.daily_fact_task)
        await self._run_shutdown_step("orchestrator.drain", self.orchestrator.drain(), timeout=10.0)
        await self._run_shutdown_step("writer.close", self.writer.close(), timeout=6.0)
        for client in self.llm_clients:
            await self._run_shutdown_step("llm.close", client.close(), timeout=6.0)
        await self._run_shutdown_step("redis.close", self.redis.aclose(), timeout=6.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def _cancel_task(self, task: asyncio.Task[None] | None) -> None:
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def on_ready(self) -> None:
        if self.user:
            logger.info("Connected as %s (%s)", self.user, self.user.id)
