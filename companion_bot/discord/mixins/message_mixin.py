from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import discord

from ..common import (
    BUSY_REPLY,
    EMPTY_MENTION_QUERY,
    GENERIC_ERROR_REPLY,
    TOO_LONG_REPLY,
    build_live_profile,
    chunk_text,
    format_admin_error,
    strip_bot_mention,
)

logger = logging.getLogger("companion_bot")


def _member_is_admin(member: object) -> bool:
    permissions = getattr(member, "guild_permissions", None)
    return bool(getattr(permissions, "administrator", False))


class MessageMixin:
    def _live_profile_for(self, user: discord.abc.User, is_admin: bool) -> str:
        if isinstance(user, discord.Member):
            return build_live_profile(
                is_admin=is_admin,
                user_id=user.id,
                username=user.name,
                display_name=user.display_name,
                role_names=[role.name for role in user.roles],
            )
        return build_live_profile(is_admin=is_admin, user_id=user.id, username=user.name)

    async def _send_chunks(
        self,
        channel: discord.abc.Messageable,
        text: str,
        reference: discord.Message | None = None,
    ) -> None:
        for index, chunk in enumerate(chunk_text(text, 1900)):
            kwargs: dict[str, Any] = {}
            if index == 0 and reference is not None:
                kwargs["reference"] = reference
            await channel.send(chunk, **kwargs)

    async def _is_reply_to_bot(self, message: discord.Message) -> bool:
        reference = message.reference
        if reference is None or reference.message_id is None or self.user is None:
            return False
        resolved = reference.resolved
        if isinstance(resolved, discord.Message):
            return resolved.author.id == self.user.id
        try:
            replied = await message.channel.fetch_message(reference.message_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return False
        return replied.author.id == self.user.id

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or self.user is None:
            return

        mentioned = self.user.mentioned_in(message) and not message.mention_everyone
        if not mentioned and not await self._is_reply_to_bot(message):
            return

        query = strip_bot_mention(message.content, self.user.id) or EMPTY_MENTION_QUERY
        identifier = str(message.author.id)

        if len(query) > self.settings.mention_max_message_chars:
            await message.reply(TOO_LONG_REPLY)
            return
        if not self.in_flight.try_acquire(identifier):
            await message.reply(BUSY_REPLY)
            return

        is_admin = _member_is_admin(message.author)
        try:
            async with message.channel.typing():
                response = await self.orchestrator.converse(
                    identifier,
                    self._live_profile_for(message.author, is_admin),
                    query,
                )
            logger.info("[msg.user] user=%s channel=%s chars=%s", identifier, message.channel.id, len(query))
            if response.reply:
                await self._send_chunks(message.channel, response.reply, reference=message)
            if response.reaction:
                try:
                    await message.add_reaction(response.reaction)
                except (discord.HTTPException, TypeError) as exc:
                    logger.warning("[msg.react] rejected reaction %r: %s", response.reaction, exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Natural chat failed for user=%s", identifier)
            with contextlib.suppress(discord.HTTPException):
                await message.reply(format_admin_error(exc) if is_admin else GENERIC_ERROR_REPLY)
        finally:
            self.in_flight.release(identifier)
