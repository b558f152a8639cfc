"""Discord interface: the API this module exposes to the core.

Wires the shared pieces together (registry, barrier, handshake, router,
normalizer, sessions) and answers ``login``, ``logout``, ``send_message``,
``get_userinfo`` and ``get_channelinfo`` calls. Every call resolves with
``(error, data)``; nothing is raised back into the bus.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import discord
from pydantic import BaseModel, ValidationError

from .channels.discord import ClientFactory, DiscordSession, SessionTable, default_client_factory
from .commands.handshake import ReadinessBarrier, RegistrationHandshake
from .commands.registry import CommandRegistry
from .communication.attachments import load_attachments
from .communication.errors import (
    AdapterError,
    ChannelNotFoundError,
    UnknownInterfaceError,
    UserNotFoundError,
    classify_error,
)
from .communication.inbound import InboundNormalizer
from .communication.outbound import ContinuationTable, ReplyRouter, fetch_channel
from .config import AdapterSettings
from .core.bus import CoreBus, Responder
from .core.protocol import (
    ChannelInfoRequest,
    InterfaceRequest,
    LoginRequest,
    SendMessageRequest,
    UserInfoRequest,
)
from .identity import decode_id

logger = logging.getLogger("cmc_discord.adapter")

Response = tuple[Optional[str], Any]


class DiscordInterface:
    """Interface-handler module for Discord."""

    def __init__(
        self,
        bus: CoreBus,
        settings: Optional[AdapterSettings] = None,
        client_factory: ClientFactory = default_client_factory,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.bus = bus
        self.settings = settings or AdapterSettings()
        self.client_factory = client_factory

        self.registry = CommandRegistry()
        self.barrier = ReadinessBarrier()
        self.continuations = ContinuationTable(ttl=self.settings.continuation_ttl)
        self.sessions = SessionTable()

        self.handshake = RegistrationHandshake(
            bus,
            self.registry,
            self.barrier,
            platform=self.settings.platform_name,
            discovery_timeout=self.settings.discovery_timeout,
            grace_period=self.settings.settle_grace_period,
            sleep=sleep,
        )
        self.router = ReplyRouter(self.continuations)
        self.normalizer = InboundNormalizer(
            bus,
            self.registry,
            self.barrier,
            self.continuations,
            platform=self.settings.platform_name,
        )
        self._handshake_task: Optional[asyncio.Task] = None

    # ── Lifecycle ───────────────────────────────────────────────

    def bind(self):
        """Register the API handlers on the bus."""
        self.bus.on("login", self._endpoint(self.login, LoginRequest))
        self.bus.on("logout", self._endpoint(self.logout, InterfaceRequest, gated=False))
        self.bus.on("send_message", self._endpoint(self.send_message, SendMessageRequest))
        self.bus.on("get_userinfo", self._endpoint(self.get_userinfo, UserInfoRequest))
        self.bus.on("get_channelinfo", self._endpoint(self.get_channelinfo, ChannelInfoRequest))

    async def start(self):
        """Bind handlers and start the registration handshake."""
        self.bind()
        self._handshake_task = asyncio.ensure_future(self.handshake.run())

    async def stop(self):
        if self._handshake_task is not None and not self._handshake_task.done():
            self._handshake_task.cancel()
        for session in self.sessions.values():
            await session.close()

    def _endpoint(self, method: Callable[[Any], Awaitable[Response]], schema: type[BaseModel], gated: bool = True):
        """Wrap an API method: validate, wait for readiness, convert errors."""
        name = method.__name__

        async def handler(origin: str, payload: Any, respond: Responder):
            try:
                request = schema.model_validate(payload)
            except ValidationError as e:
                logger.warning(f"Malformed {name} request from '{origin}': {e.error_count()} validation errors")
                respond("Malformed request", {"success": False})
                return

            if gated:
                await self.barrier.wait()

            try:
                error, data = await method(request)
            except AdapterError as e:
                error, data = e.as_response()
            except Exception as e:
                logger.error(f"{name} failed: {type(e).__name__}: {e}", exc_info=True)
                error, data = "Internal error", {"success": False}
            respond(error, data)

        return handler

    def _session(self, interface_id: int) -> DiscordSession:
        session = self.sessions.get(interface_id)
        if session is None:
            raise UnknownInterfaceError()
        return session

    # ── API ─────────────────────────────────────────────────────

    async def login(self, request: LoginRequest) -> Response:
        interface_id = request.interface_id
        if interface_id in self.sessions:
            return "Interface ID exists", {"success": False}

        session = DiscordSession(
            interface_id,
            request.login_data,
            self.registry,
            self.normalizer,
            client_factory=self.client_factory,
            on_closed=self._session_closed,
        )
        # Reserve the ID so a concurrent login with the same ID is refused
        self.sessions.add(session)
        try:
            account = await session.open()
        except Exception as e:
            self.sessions.discard(session)
            logger.error(f"Interface {interface_id} login failed: {classify_error(e)}")
            return str(e), {"success": False}

        logger.info(f"Interface {interface_id} logged in.")
        return None, account

    def _session_closed(self, session: DiscordSession):
        self.sessions.discard(session)
        logger.info(f"Interface {session.interface_id} closed.")

    async def logout(self, request: InterfaceRequest) -> Response:
        session = self.sessions.get(request.interface_id)
        if session is not None:
            await session.close()
        return None, None

    async def send_message(self, request: SendMessageRequest) -> Response:
        session = self._session(request.interface_id)
        files = await load_attachments(request.attachments, timeout=self.settings.attachment_fetch_timeout)
        return None, await self.router.deliver(session.client, request, files)

    async def get_userinfo(self, request: UserInfoRequest) -> Response:
        session = self._session(request.interface_id)
        try:
            user = await session.client.fetch_user(int(decode_id(request.user_id)))
        except (ValueError, discord.HTTPException) as e:
            logger.debug(f"User {request.user_id} lookup failed: {classify_error(e)}")
            raise UserNotFoundError(payload={}) from e
        return None, {"name": str(user)}

    async def get_channelinfo(self, request: ChannelInfoRequest) -> Response:
        session = self._session(request.interface_id)
        try:
            channel = await fetch_channel(session.client, request.channel_id)
        except ChannelNotFoundError as e:
            raise ChannelNotFoundError(payload={}) from e

        if isinstance(channel, discord.DMChannel):
            channel_name = str(channel.recipient) if channel.recipient else ""
        else:
            channel_name = getattr(channel, "name", None) or ""

        return None, {"channelName": channel_name, "type": channel.type.value}
