from __future__ import annotations

import asyncio
import contextlib
import logging

import discord
from discord import app_commands

from ..common import (
    BUSY_REPLY,
    GENERIC_ERROR_REPLY,
    NO_PERMISSION_REPLY,
    TOO_LONG_REPLY,
    chunk_text,
    format_admin_error,
)

logger = logging.getLogger("companion_bot")


def _interaction_is_admin(interaction: discord.Interaction) -> bool:
    permissions = interaction.permissions
    return bool(permissions and permissions.administrator)


class CommandsMixin:
    def _register_commands(self) -> None:
        tree: app_commands.CommandTree = self.tree

        @tree.command(name="chat", description="Trò chuyện với bot")
        @app_commands.describe(message="Nội dung muốn hỏi")
        async def chat(interaction: discord.Interaction, message: str) -> None:
            await self._handle_chat_command(interaction, message)

        @tree.command(name="setinfo", description="[ADMIN] Cập nhật kiến thức cho bot từ server")
        @app_commands.default_permissions(administrator=True)
        @app_commands.guild_only()
        async def setinfo(interaction: discord.Interaction) -> None:
            await self._handle_setinfo_command(interaction)

        @tree.command(name="setuser", description="[ADMIN] Xem tính cách của một người")
        @app_commands.describe(target="Chọn user cần xem")
        @app_commands.default_permissions(administrator=True)
        async def setuser(interaction: discord.Interaction, target: discord.User) -> None:
            await self._handle_setuser_command(interaction, target)

        @tree.command(name="fsetuser", description="[ADMIN] Ghi đè tính cách cho một người")
        @app_commands.describe(target="Chọn user cần thiết lập", description="Mô tả tính cách / cách xưng hô")
        @app_commands.default_permissions(administrator=True)
        async def fsetuser(interaction: discord.Interaction, target: discord.User, description: str) -> None:
            await self._handle_fsetuser_command(interaction, target, description)

    async def _report_interaction_error(self, interaction: discord.Interaction, exc: BaseException) -> None:
        text = format_admin_error(exc) if _interaction_is_admin(interaction) else GENERIC_ERROR_REPLY
        with contextlib.suppress(discord.HTTPException):
            if interaction.response.is_done():
                await interaction.edit_original_response(content=text)
            else:
                await interaction.response.send_message(text, ephemeral=True)

    async def _handle_chat_command(self, interaction: discord.Interaction, message: str) -> None:
        identifier = str(interaction.user.id)
        if len(message) > self.settings.chat_max_message_chars:
            await interaction.response.send_message(TOO_LONG_REPLY, ephemeral=True)
            return
        if not self.in_flight.try_acquire(identifier):
            await interaction.response.send_message(BUSY_REPLY, ephemeral=True)
            return

        try:
            await interaction.response.defer(thinking=True)
            profile = self._live_profile_for(interaction.user, _interaction_is_admin(interaction))
            response = await self.orchestrator.converse(identifier, profile, message)
            logger.info("[cmd.chat] user=%s chars=%s", identifier, len(message))
            chunks = chunk_text(response.reply, 1900) if response.reply else []
            if chunks:
                await interaction.edit_original_response(content=chunks[0])
                for chunk in chunks[1:]:
                    await interaction.followup.send(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("/chat failed for user=%s", identifier)
            await self._report_interaction_error(interaction, exc)
        finally:
            self.in_flight.release(identifier)

    async def _handle_setinfo_command(self, interaction: discord.Interaction) -> None:
        if not _interaction_is_admin(interaction):
            await interaction.response.send_message(NO_PERMISSION_REPLY, ephemeral=True)
            return
        guild = interaction.guild
        if guild is None:
            await interaction.response.send_message("Lệnh này chỉ dùng trong server.", ephemeral=True)
            return

        try:
            await interaction.response.defer(thinking=True)
            raw_text = await self._collect_server_info(guild)
            logger.info("[cmd.setinfo] guild=%s raw_chars=%s", guild.id, len(raw_text))
            await interaction.edit_original_response(content="🧠 Optimizing data with AI...")
            confirmation = await self.orchestrator.refresh_server_knowledge(str(guild.id), raw_text)
            await interaction.followup.send(confirmation)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("/setinfo failed for guild=%s", guild.id)
            await self._report_interaction_error(interaction, exc)

    async def _handle_setuser_command(self, interaction: discord.Interaction, target: discord.User) -> None:
        if not _interaction_is_admin(interaction):
            await interaction.response.send_message(NO_PERMISSION_REPLY, ephemeral=True)
            return
        try:
            await interaction.response.defer(ephemeral=True, thinking=True)
            persona = await self.orchestrator.get_persona(str(target.id))
            if persona:
                text = (
                    f"🎭 **Tính cách hiện tại với {target.name}:**\n> {persona}\n\n"
                    "*(Dùng `/fsetuser` để ghi đè)*"
                )
            else:
                text = f"⚪ Chưa có thiết lập tính cách cho **{target.name}**.\nDùng `/fsetuser` để tạo."
            await interaction.edit_original_response(content=text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("/setuser failed for target=%s", target.id)
            await self._report_interaction_error(interaction, exc)

    async def _handle_fsetuser_command(
        self,
        interaction: discord.Interaction,
        target: discord.User,
        description: str,
    ) -> None:
        if not _interaction_is_admin(interaction):
            await interaction.response.send_message(NO_PERMISSION_REPLY, ephemeral=True)
            return
        try:
            await interaction.response.defer(ephemeral=True, thinking=True)
            result = await self.orchestrator.set_persona(str(target.id), target.name, description)
            await interaction.edit_original_response(content=f"✅ **Đã cập nhật!**\n> {result}")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("/fsetuser failed for target=%s", target.id)
            await self._report_interaction_error(interaction, exc)
