from __future__ import annotations

import asyncio
import logging

import discord

from ..common import channel_matches_keywords, forum_tone_from_tags, render_knowledge_message

logger = logging.getLogger("companion_bot")


class ServerMixin:
    async def _collect_server_info(self, guild: discord.Guild) -> str:
        raw = f"SERVER: {guild.name} | Desc: {guild.description or 'N/A'}\n\n"
        keywords = self.settings.server_info_keywords
        for channel in guild.text_channels:
            if not channel_matches_keywords(channel.name, keywords):
                continue
            raw += f"--- CHANNEL: {channel.name} ---\n"
            try:
                messages = [
                    message
                    async for message in channel.history(limit=self.settings.server_info_messages_per_channel)
                ]
            except (discord.Forbidden, discord.HTTPException) as exc:
                logger.warning("[server.crawl] cannot read channel=%s (%s)", channel.name, exc)
                continue
            lines = [render_knowledge_message(message) for message in reversed(messages)]
            raw += "\n".join(line for line in lines if line) + "\n\n"
        return raw

    async def broadcast_message(self, channel_id: int, content: str) -> None:
        try:
            channel = self.get_channel(channel_id) or await self.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException) as exc:
            logger.error("[broadcast] channel=%s unavailable: %s", channel_id, exc)
            return
        if not isinstance(channel, discord.abc.Messageable):
            logger.error("[broadcast] channel=%s cannot receive messages", channel_id)
            return
        try:
            await self._send_chunks(channel, content)
        except discord.HTTPException as exc:
            logger.error("[broadcast] send failed for channel=%s: %s", channel_id, exc)

    async def _daily_fact_loop(self) -> None:
        await self.wait_until_ready()
        await self.daily_facts.run_forever(
            self.settings.daily_fact_hour,
            sorted(self.settings.daily_fact_channel_ids),
            self.broadcast_message,
        )

    async def _thread_starter_content(self, thread: discord.Thread) -> str:
        if thread.starter_message is not None:
            return thread.starter_message.content
        for attempt in range(2):
            try:
                starter = await thread.fetch_message(thread.id)
                return starter.content
            except discord.NotFound:
                if attempt == 0:
                    await asyncio.sleep(2.0)
        return ""

    async def on_thread_create(self, thread: discord.Thread) -> None:
        if thread.parent_id not in self.settings.forum_comment_channel_ids:
            return
        if self.user is not None and thread.owner_id == self.user.id:
            return

        try:
            content = await self._thread_starter_content(thread)
            persona = await self.orchestrator.get_persona(str(thread.owner_id))
            tone = forum_tone_from_tags(tag.name for tag in thread.applied_tags)
            comment = await self.orchestrator.generate_forum_comment(
                thread.name,
                content,
                persona or self.settings.default_persona_text,
                tone,
            )
            await self._send_chunks(thread, comment)
            logger.info("[forum.comment] thread=%s tone=%s chars=%s", thread.id, tone, len(comment))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Forum comment failed for thread=%s", thread.id)
