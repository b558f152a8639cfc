"""Pytest configuration and shared fixtures."""

import asyncio
import inspect
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from cmc_discord.core.bus import CallResult, CoreBus


class FakeCore(CoreBus):
    """In-memory core: scripted routes for outgoing calls, direct handler invocation."""

    def __init__(self):
        self.routes: dict[tuple[str, str], Any] = {}
        self.handlers: dict[str, Any] = {}
        self.calls: list[tuple[str, str, Any]] = []

    def route(self, target: str, method: str, responder):
        """responder: CallResult, or callable(payload) -> CallResult (sync or async)."""
        self.routes[(target, method)] = responder

    async def call(self, target, method, payload):
        self.calls.append((target, method, payload))
        responder = self.routes.get((target, method))
        if responder is None:
            return CallResult(exists=False)
        if isinstance(responder, CallResult):
            return responder
        result = responder(payload)
        if inspect.isawaitable(result):
            result = await result
        return result

    def on(self, name, handler):
        self.handlers[name] = handler

    async def invoke(self, name: str, payload: Any, origin: str = "core"):
        """Call one of our handlers the way the core would. Returns (error, data)."""
        answer = asyncio.get_running_loop().create_future()

        def respond(error=None, data=None):
            if not answer.done():
                answer.set_result((error, data))

        result = self.handlers[name](origin, payload, respond)
        if inspect.isawaitable(result):
            await result
        return await answer

    def calls_to(self, method: str) -> list:
        return [payload for _, m, payload in self.calls if m == method]

    @property
    def events(self) -> list[dict]:
        return [p["data"] for p in self.calls_to("send_event")]


@pytest.fixture
def core():
    return FakeCore()


async def _forever():
    await asyncio.Event().wait()


def make_client(user_id: int = 4242, tag: str = "cmcbot#0001"):
    """Mock discord.Client that logs in and keeps a gateway open."""
    client = MagicMock()
    client.login = AsyncMock()
    client.connect = AsyncMock(side_effect=_forever)
    client.close = AsyncMock()
    client.user = MagicMock()
    client.user.id = user_id
    client.user.__str__.return_value = tag
    client.http = MagicMock()
    client.http.bulk_upsert_global_commands = AsyncMock(return_value=[])
    client.http.upsert_global_command = AsyncMock(return_value={})
    client.get_channel = MagicMock(return_value=None)
    client.fetch_channel = AsyncMock()
    client.fetch_user = AsyncMock()
    return client


@pytest.fixture
def client_factory():
    """Factory recording every mock client it builds."""
    built = []

    def factory(session, intents):
        client = make_client()
        client.intents = intents
        built.append(client)
        return client

    factory.built = built
    return factory
