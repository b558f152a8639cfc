"""Inbound normalization: Discord events to canonical ``interface_message`` events."""

import functools
import logging
from typing import Optional

import discord

from .outbound import ContinuationTable
from ..commands.handshake import CORE, ReadinessBarrier
from ..commands.registry import CommandDefinition, CommandRegistry
from ..commands.slash import ATTACHMENT_OPTION
from ..core.bus import CoreBus
from ..core.protocol import AttachmentRef, InboundEvent, MentionSpan
from ..identity import EntityKind, encode_id

logger = logging.getLogger("cmc_discord.communication.inbound")

INTERFACE_MESSAGE = "interface_message"
DEFAULT_FILENAME = "unknown.png"


def find_mention(content: str, user_id) -> MentionSpan:
    """Span of the first ``<@id>`` (or legacy ``<@!id>``) token; start is -1 if absent."""
    token = f"<@{user_id}>"
    start = content.find(token)
    if start == -1:
        nick_token = f"<@!{user_id}>"
        nick_start = content.find(nick_token)
        if nick_start != -1:
            return MentionSpan(start=nick_start, length=len(nick_token))
    return MentionSpan(start=start, length=len(token))


class InboundNormalizer:
    """Turns messages and slash-command interactions into canonical events.

    Both entry points wait on the readiness barrier first, so no command
    lookup happens before the registry is complete.
    """

    def __init__(
        self,
        bus: CoreBus,
        registry: CommandRegistry,
        barrier: ReadinessBarrier,
        continuations: ContinuationTable,
        platform: str = "Discord",
    ):
        self.bus = bus
        self.registry = registry
        self.barrier = barrier
        self.continuations = continuations
        self.platform = platform

    def _fmt(self, native_id, kind: EntityKind) -> str:
        return encode_id(native_id, kind, self.platform)

    # ── Passive messages ────────────────────────────────────────

    def normalize_message(self, interface_id: int, message: discord.Message) -> InboundEvent:
        content = message.content or ""
        channel_id = str(message.channel.id)
        guild = message.guild

        mentions = {}
        for user in message.mentions:
            key = self._fmt(user.id, EntityKind.USER)
            if key not in mentions:
                mentions[key] = find_mention(content, user.id)

        return InboundEvent(
            interface_id=interface_id,
            interface_handler_name=self.platform,
            content=content,
            attachments=[
                AttachmentRef(filename=a.filename or DEFAULT_FILENAME, url=a.url)
                for a in message.attachments
            ],
            mentions=mentions,
            message_id=str(message.id),
            formatted_message_id=self._fmt(message.id, EntityKind.MESSAGE),
            channel_id=channel_id,
            formatted_channel_id=self._fmt(channel_id, EntityKind.CHANNEL),
            guild_id=str(guild.id) if guild else channel_id,
            formatted_guild_id=(
                self._fmt(guild.id, EntityKind.GUILD) if guild
                else self._fmt(channel_id, EntityKind.CHANNEL)
            ),
            sender_id=str(message.author.id),
            formatted_sender_id=self._fmt(message.author.id, EntityKind.USER),
            additional_interface_data={},
        )

    async def on_message(self, interface_id: int, message: discord.Message) -> InboundEvent:
        await self.barrier.wait()
        event = self.normalize_message(interface_id, message)
        await self.emit(event)
        return event

    # ── Slash-command interactions ──────────────────────────────

    def build_command_line(self, definition: CommandDefinition, options: list[dict]) -> str:
        """Re-serialize interaction options as ``/command arg1 arg2 ...``.

        Arguments are walked in registry order; a missing option becomes
        an empty string so positions stay aligned.
        """
        values = {opt.get("name"): opt.get("value") for opt in options}
        parts = []
        for arg in definition.args:
            # An argument named like the attachment option is never published
            value = None if arg.name == ATTACHMENT_OPTION else values.get(arg.name)
            parts.append("" if value is None else str(value))
        return f"/{definition.name} {' '.join(parts)}"

    def extract_attachments(self, data: dict) -> list[AttachmentRef]:
        options = data.get("options") or []
        option = next((o for o in options if o.get("name") == ATTACHMENT_OPTION), None)
        if option is None:
            return []
        resolved = (data.get("resolved") or {}).get("attachments") or {}
        attachment = resolved.get(str(option.get("value")))
        if not attachment or not attachment.get("url"):
            return []
        return [AttachmentRef(filename=attachment.get("filename") or DEFAULT_FILENAME, url=attachment["url"])]

    async def on_interaction(self, interface_id: int, interaction: discord.Interaction) -> Optional[InboundEvent]:
        """Normalize a chat-input command. Unknown commands yield nothing."""
        if interaction.type != discord.InteractionType.application_command:
            return None
        data = interaction.data or {}
        if data.get("type", 1) != 1:
            return None

        await self.barrier.wait()

        command = data.get("name")
        definition = self.registry.get(command) if isinstance(command, str) else None
        if definition is None:
            logger.debug(f"Ignoring interaction for unknown command /{command}")
            return None

        # Processing may outlast the initial response window
        try:
            await interaction.response.defer(thinking=True)
        except discord.HTTPException as e:
            logger.warning(f"Could not acknowledge /{command} ({interaction.id}): {e}")
            return None

        content = self.build_command_line(definition, data.get("options") or [])
        channel_id = str(interaction.channel_id)
        guild_id = interaction.guild_id

        self.continuations.store(
            str(interaction.id),
            functools.partial(interaction.followup.send, wait=True),
        )

        event = InboundEvent(
            interface_id=interface_id,
            interface_handler_name=self.platform,
            content=content,
            attachments=self.extract_attachments(data),
            mentions={},
            message_id=str(interaction.id),
            formatted_message_id=self._fmt(interaction.id, EntityKind.SLASH_COMMAND),
            channel_id=channel_id,
            formatted_channel_id=self._fmt(channel_id, EntityKind.CHANNEL),
            guild_id=str(guild_id) if guild_id else channel_id,
            formatted_guild_id=(
                self._fmt(guild_id, EntityKind.GUILD) if guild_id
                else self._fmt(channel_id, EntityKind.CHANNEL)
            ),
            sender_id=str(interaction.user.id),
            formatted_sender_id=self._fmt(interaction.user.id, EntityKind.USER),
            additional_interface_data={"discord_isSlashCommand": True},
        )
        await self.emit(event)
        return event

    # ── Emission ────────────────────────────────────────────────

    async def emit(self, event: InboundEvent):
        result = await self.bus.call(CORE, "send_event", {
            "eventName": INTERFACE_MESSAGE,
            "data": event.to_wire(),
        })
        if not result.exists:
            logger.warning(f"Core did not accept {INTERFACE_MESSAGE} {event.formatted_message_id}")
