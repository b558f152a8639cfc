"""Outbound routing: decides where a reply from the core goes.

Two strategies:

- Continuation: the reply answers a deferred slash-command interaction.
  The interaction's reply slot was stored when it arrived and is used at
  most once; the channel is never looked up.
- Channel: resolve the channel, and the referenced message if any, then
  send a new message or a threaded reply.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import discord

from .errors import (
    AdapterError,
    ChannelNotFoundError,
    NotTextChannelError,
    classify_error,
)
from ..core.protocol import SendMessageRequest
from ..identity import decode_id

logger = logging.getLogger("cmc_discord.communication.outbound")

Sender = Callable[..., Awaitable[Any]]

DEFAULT_CONTINUATION_TTL = 900.0  # Discord interaction tokens live 15 minutes

CONTINUATION = "continuation"
REPLY = "reply"
SEND = "send"

# Native send options the core may pass through additionalInterfaceData
_SEND_OPTIONS = {
    CONTINUATION: ("tts", "silent", "suppress_embeds", "ephemeral"),
    REPLY: ("tts", "silent", "suppress_embeds", "mention_author"),
    SEND: ("tts", "silent", "suppress_embeds"),
}


class ContinuationTable:
    """Native interaction ID -> one-shot reply capability."""

    def __init__(self, ttl: float = DEFAULT_CONTINUATION_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._slots: dict[str, tuple[Sender, float]] = {}

    def store(self, key: str, sender: Sender):
        self.prune()
        self._slots[str(key)] = (sender, self._clock() + self.ttl)

    def take(self, key: str) -> Optional[Sender]:
        """Remove and return a live capability, or None."""
        slot = self._slots.pop(str(key), None)
        if slot is None:
            return None
        sender, expires_at = slot
        if self._clock() >= expires_at:
            logger.debug(f"Reply slot for {key} expired")
            return None
        return sender

    def prune(self):
        now = self._clock()
        for key in [k for k, (_, exp) in self._slots.items() if now >= exp]:
            del self._slots[key]

    def __contains__(self, key) -> bool:
        return str(key) in self._slots

    def __len__(self) -> int:
        return len(self._slots)


@dataclass
class ReplyTarget:
    send: Sender
    strategy: str

    def options(self, extra: dict) -> dict:
        allowed = _SEND_OPTIONS[self.strategy]
        return {k: v for k, v in extra.items() if k in allowed}


def _snowflake(value: str) -> Optional[int]:
    try:
        return int(decode_id(value))
    except (TypeError, ValueError):
        return None


async def fetch_channel(client: discord.Client, channel_id: str):
    """Resolve a native or canonical channel ID, cache first.

    Raises:
        ChannelNotFoundError: invalid ID, unknown or inaccessible channel.
    """
    snowflake = _snowflake(channel_id)
    if snowflake is None:
        raise ChannelNotFoundError()

    channel = client.get_channel(snowflake)
    if channel is not None:
        return channel
    try:
        return await client.fetch_channel(snowflake)
    except discord.HTTPException as e:
        logger.debug(f"Channel {snowflake} lookup failed: {classify_error(e)}")
        raise ChannelNotFoundError() from e


class ReplyRouter:
    """Maps an outbound message request to a native send capability."""

    def __init__(self, continuations: ContinuationTable):
        self.continuations = continuations

    async def resolve(self, client: discord.Client, request: SendMessageRequest) -> ReplyTarget:
        """Pick the reply strategy for a request.

        Raises:
            ChannelNotFoundError: the channel cannot be resolved.
            NotTextChannelError: the channel cannot carry messages.
        """
        if request.reply_message_id:
            sender = self.continuations.take(decode_id(request.reply_message_id))
            if sender is not None:
                return ReplyTarget(sender, CONTINUATION)

        channel = await fetch_channel(client, request.channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            raise NotTextChannelError()

        if request.reply_message_id:
            message = await self._fetch_message(channel, request.reply_message_id)
            if message is not None:
                return ReplyTarget(message.reply, REPLY)

        return ReplyTarget(channel.send, SEND)

    async def deliver(
        self,
        client: discord.Client,
        request: SendMessageRequest,
        files: Optional[list[discord.File]] = None,
    ) -> dict:
        """Send the request's content through the resolved target.

        Returns the payload for the core. Resolution errors propagate as
        AdapterError; native send failures become ``{"success": False}``.
        """
        files = files or []
        try:
            target = await self.resolve(client, request)
        except AdapterError:
            for f in files:
                f.close()
            raise

        kwargs = target.options(request.additional_interface_data)
        kwargs["content"] = request.content
        if files:
            kwargs["files"] = files

        try:
            sent = await target.send(**kwargs)
        except Exception as e:
            logger.warning(f"Send via {target.strategy} failed: {classify_error(e)}")
            return {"success": False}

        return {
            "success": True,
            "messageID": str(sent.id) if sent is not None else None,
            "additionalInterfaceData": {},
        }

    async def _fetch_message(self, channel, message_id: str):
        snowflake = _snowflake(message_id)
        if snowflake is None:
            return None
        try:
            return await channel.fetch_message(snowflake)
        except discord.HTTPException as e:
            logger.info(f"Reply target {snowflake} unavailable ({classify_error(e)}), sending a new message")
            return None
