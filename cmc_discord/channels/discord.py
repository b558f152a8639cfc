"""Discord session: one discord.py client per logged-in interface."""

import asyncio
import logging
import re
from typing import Callable, Optional, Union

import discord

from ..commands.registry import CommandRegistry
from ..commands.slash import SlashCommandPublisher
from ..communication.inbound import InboundNormalizer
from ..core.protocol import LoginData
from ..identity import EntityKind, encode_id

logger = logging.getLogger("cmc_discord.discord")

# Gateway intent names whose discord.py flag is not the plain snake_case form
_INTENT_ALIASES = {
    "GuildMembers": "members",
    "GuildModeration": "moderation",
    "GuildBans": "moderation",
    "GuildEmojisAndStickers": "emojis_and_stickers",
    "GuildExpressions": "expressions",
    "GuildIntegrations": "integrations",
    "GuildWebhooks": "webhooks",
    "GuildInvites": "invites",
    "GuildVoiceStates": "voice_states",
    "GuildPresences": "presences",
    "GuildMessageReactions": "guild_reactions",
    "GuildMessageTyping": "guild_typing",
    "DirectMessages": "dm_messages",
    "DirectMessageReactions": "dm_reactions",
    "DirectMessageTyping": "dm_typing",
    "GuildMessagePolls": "guild_polls",
    "DirectMessagePolls": "dm_polls",
}


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def build_intents(spec: Union[list, int]) -> discord.Intents:
    """Map gateway intent names (or a raw bitfield) to discord.Intents.

    Accepts ``"GuildMessages"``-style names, discord.py flag names such
    as ``"message_content"``, and integers. Unknown names are ignored.
    """
    intents = discord.Intents.none()
    if isinstance(spec, int):
        intents.value = spec
        return intents

    for item in spec:
        if isinstance(item, int):
            intents.value |= item
            continue
        flag = _INTENT_ALIASES.get(item) or _snake(item)
        if flag in discord.Intents.VALID_FLAGS:
            setattr(intents, flag, True)
        else:
            logger.warning(f"Ignoring unknown gateway intent '{item}'")
    return intents


class AdapterClient(discord.Client):
    """discord.Client forwarding events to its session."""

    def __init__(self, session: "DiscordSession", **kwargs):
        super().__init__(**kwargs)
        self.session = session

    async def on_message(self, message: discord.Message):
        await self.session.handle_message(message)

    async def on_interaction(self, interaction: discord.Interaction):
        await self.session.handle_interaction(interaction)

    async def on_error(self, event_method: str, *args, **kwargs):
        logger.error(
            f"Interface {self.session.interface_id}: unhandled error in {event_method}",
            exc_info=True,
        )


ClientFactory = Callable[["DiscordSession", discord.Intents], discord.Client]


def default_client_factory(session: "DiscordSession", intents: discord.Intents) -> discord.Client:
    return AdapterClient(session, intents=intents)


class DiscordSession:
    """Lifecycle of one interface: login, catalog publication, gateway, teardown.

    Args:
        interface_id: Core-assigned interface ID.
        login: Validated login data.
        registry: Command registry (published as slash commands).
        normalizer: Inbound normalizer events are handed to.
        on_closed: Called once with this session after teardown.
    """

    def __init__(
        self,
        interface_id: int,
        login: LoginData,
        registry: CommandRegistry,
        normalizer: InboundNormalizer,
        client_factory: ClientFactory = default_client_factory,
        on_closed: Optional[Callable[["DiscordSession"], None]] = None,
    ):
        self.interface_id = interface_id
        self.login_data = login
        self.registry = registry
        self.normalizer = normalizer
        self.client = client_factory(self, build_intents(login.intents))
        self.publisher: Optional[SlashCommandPublisher] = None
        self._on_closed = on_closed
        self._gateway_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def platform(self) -> str:
        return self.normalizer.platform

    async def open(self) -> dict:
        """Authenticate, publish commands, start the gateway.

        Returns the account descriptor for the core. Raises on login or
        catalog failure, after releasing the client.
        """
        try:
            await self.client.login(self.login_data.token)
        except Exception:
            await self.close()
            raise

        if not self.login_data.disable_slash_command:
            if self.login_data.application_id:
                await self._publish_commands()
            else:
                logger.warning(
                    f"Interface ID {self.interface_id} does not have application ID configured, "
                    "skipping slash command support."
                )

        self._gateway_task = asyncio.ensure_future(self.client.connect())
        self._gateway_task.add_done_callback(self._gateway_done)

        user = self.client.user
        raw_id = str(user.id) if user else ""
        return {
            "success": True,
            "interfaceID": self.interface_id,
            "accountName": str(user) if user else "",
            "rawAccountID": raw_id,
            "formattedAccountID": encode_id(raw_id, EntityKind.USER, self.platform),
            "accountAdditionalData": {},
        }

    async def _publish_commands(self):
        self.publisher = SlashCommandPublisher(
            self.client.http, self.login_data.application_id, self.registry,
        )
        try:
            await self.publisher.publish_all()
        except Exception as e:
            self.publisher = None
            await self.close()
            raise RuntimeError(f"Failed to register slash command: {e}") from e
        self.publisher.attach()

    def _gateway_done(self, task: asyncio.Task):
        if task.cancelled() or self._closed:
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Interface {self.interface_id} gateway failed: {exc}")
        else:
            logger.warning(f"Interface {self.interface_id} gateway stopped.")
        self._close_task = asyncio.ensure_future(self.close())

    async def close(self):
        """Release the client. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self.publisher is not None:
            self.publisher.detach()
        if self._gateway_task is not None and not self._gateway_task.done():
            self._gateway_task.cancel()
        try:
            await self.client.close()
        except Exception as e:
            logger.debug(f"Interface {self.interface_id} client close: {e}")

        if self._on_closed is not None:
            self._on_closed(self)

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Events ──────────────────────────────────────────────────

    async def handle_message(self, message: discord.Message):
        await self.normalizer.on_message(self.interface_id, message)

    async def handle_interaction(self, interaction: discord.Interaction):
        await self.normalizer.on_interaction(self.interface_id, interaction)


class SessionTable:
    """Interface ID -> live DiscordSession."""

    def __init__(self):
        self._sessions: dict[int, DiscordSession] = {}

    def add(self, session: DiscordSession):
        self._sessions[session.interface_id] = session

    def get(self, interface_id: int) -> Optional[DiscordSession]:
        return self._sessions.get(interface_id)

    def discard(self, session: DiscordSession):
        """Remove a session if it is still the one registered under its ID."""
        if self._sessions.get(session.interface_id) is session:
            del self._sessions[session.interface_id]

    def __contains__(self, interface_id) -> bool:
        return interface_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def values(self) -> list[DiscordSession]:
        return list(self._sessions.values())
