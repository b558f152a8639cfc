"""Tests for the API surface exposed to the core."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from cmc_discord.adapter import DiscordInterface
from cmc_discord.commands.registry import CommandDefinition
from cmc_discord.config import AdapterSettings
from cmc_discord.core.bus import CallResult

LOGIN = {
    "interfaceID": 1,
    "loginData": {"token": "t0k3n", "applicationID": "app1", "intents": ["Guilds", "GuildMessages", "MessageContent"]},
}


async def _no_sleep(seconds):
    return None


def _interface(core, client_factory, ready=True):
    core.route("core", "send_event", CallResult(True, None))
    interface = DiscordInterface(core, AdapterSettings(log_file=""), client_factory=client_factory, sleep=_no_sleep)
    interface.bind()
    if ready:
        interface.barrier.release()
    return interface


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_success(self, core, client_factory):
        interface = _interface(core, client_factory)
        interface.registry.register("ping", CommandDefinition(name="ping", description={"fallback": "Ping"}))

        error, data = await core.invoke("login", LOGIN)

        assert error is None
        assert data == {
            "success": True,
            "interfaceID": 1,
            "accountName": "cmcbot#0001",
            "rawAccountID": "4242",
            "formattedAccountID": "4242@User@Discord",
            "accountAdditionalData": {},
        }
        client = client_factory.built[0]
        client.login.assert_awaited_once_with("t0k3n")
        assert client.intents.guilds and client.intents.guild_messages and client.intents.message_content
        app_id, payload = client.http.bulk_upsert_global_commands.call_args.args
        assert app_id == "app1" and [c["name"] for c in payload] == ["ping"]
        assert 1 in interface.sessions
        await interface.stop()

    @pytest.mark.asyncio
    async def test_duplicate_interface(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        error, data = await core.invoke("login", LOGIN)
        assert error == "Interface ID exists"
        assert data == {"success": False}
        assert len(client_factory.built) == 1
        await interface.stop()

    @pytest.mark.asyncio
    async def test_login_failure_leaves_no_session(self, core, client_factory):
        interface = _interface(core, client_factory)

        def failing(session, intents):
            client = client_factory(session, intents)
            client.login.side_effect = discord.LoginFailure("Improper token has been passed.")
            return client

        interface.client_factory = failing
        error, data = await core.invoke("login", LOGIN)
        assert error == "Improper token has been passed."
        assert data == {"success": False}
        assert 1 not in interface.sessions
        client_factory.built[0].close.assert_awaited()

    @pytest.mark.asyncio
    async def test_slash_publication_failure(self, core, client_factory):
        interface = _interface(core, client_factory)

        def failing(session, intents):
            client = client_factory(session, intents)
            client.http.bulk_upsert_global_commands.side_effect = RuntimeError("401 Unauthorized")
            return client

        interface.client_factory = failing
        error, data = await core.invoke("login", LOGIN)
        assert error.startswith("Failed to register slash command:")
        assert data == {"success": False}
        assert 1 not in interface.sessions

    @pytest.mark.asyncio
    async def test_without_application_id_skips_catalog(self, core, client_factory, caplog):
        interface = _interface(core, client_factory)
        login = {"interfaceID": 2, "loginData": {"token": "t", "intents": []}}
        error, data = await core.invoke("login", login)
        assert data["success"] is True
        client_factory.built[0].http.bulk_upsert_global_commands.assert_not_called()
        assert "does not have application ID configured" in caplog.text
        await interface.stop()

    @pytest.mark.asyncio
    async def test_disable_slash_command(self, core, client_factory):
        interface = _interface(core, client_factory)
        login = {"interfaceID": 3, "loginData": {"token": "t", "applicationID": "a", "intents": [], "disableSlashCommand": True}}
        await core.invoke("login", login)
        client_factory.built[0].http.bulk_upsert_global_commands.assert_not_called()
        await interface.stop()

    @pytest.mark.asyncio
    async def test_new_commands_published_after_login(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        interface.registry.register("late", CommandDefinition(name="late", description={"fallback": "Late"}))
        for _ in range(3):
            await asyncio.sleep(0)
        client = client_factory.built[0]
        assert client.http.upsert_global_command.call_args.args[1]["name"] == "late"
        await interface.stop()

    @pytest.mark.asyncio
    async def test_command_registered_during_publication(self, core, client_factory):
        interface = _interface(core, client_factory)
        interface.registry.register("ping", CommandDefinition(name="ping", description={"fallback": "Ping"}))

        def registering(session, intents):
            client = client_factory(session, intents)

            async def bulk(app_id, payload):
                if "late" not in interface.registry:
                    interface.registry.register("late", CommandDefinition(name="late", description={"fallback": "Late"}))
                return []

            client.http.bulk_upsert_global_commands.side_effect = bulk
            return client

        interface.client_factory = registering
        error, data = await core.invoke("login", LOGIN)
        assert data["success"] is True

        bulk = client_factory.built[0].http.bulk_upsert_global_commands
        assert bulk.await_count == 2
        assert sorted(c["name"] for c in bulk.call_args.args[1]) == ["late", "ping"]
        await interface.stop()

    @pytest.mark.asyncio
    async def test_login_waits_for_barrier(self, core, client_factory):
        interface = _interface(core, client_factory, ready=False)
        task = asyncio.ensure_future(core.invoke("login", LOGIN))
        await asyncio.sleep(0.01)
        assert not task.done()
        assert client_factory.built == []
        interface.barrier.release()
        error, data = await asyncio.wait_for(task, 1)
        assert data["success"] is True
        await interface.stop()

    @pytest.mark.asyncio
    async def test_malformed_login(self, core, client_factory):
        _interface(core, client_factory)
        error, data = await core.invoke("login", {"interfaceID": "x"})
        assert error == "Malformed request"
        assert data == {"success": False}


class TestSessionLifecycle:

    @pytest.mark.asyncio
    async def test_logout(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        client = client_factory.built[0]

        error, data = await core.invoke("logout", {"interfaceID": 1})
        assert (error, data) == (None, None)
        client.close.assert_awaited_once()
        assert 1 not in interface.sessions

    @pytest.mark.asyncio
    async def test_logout_unknown_is_acknowledged(self, core, client_factory):
        _interface(core, client_factory)
        assert await core.invoke("logout", {"interfaceID": 99}) == (None, None)

    @pytest.mark.asyncio
    async def test_logout_not_gated(self, core, client_factory):
        _interface(core, client_factory, ready=False)
        result = await asyncio.wait_for(core.invoke("logout", {"interfaceID": 1}), 1)
        assert result == (None, None)

    @pytest.mark.asyncio
    async def test_gateway_failure_tears_down_only_that_session(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        await core.invoke("login", {**LOGIN, "interfaceID": 2})

        session = interface.sessions.get(1)
        session._gateway_task.cancel()
        session._gateway_task = asyncio.ensure_future(_raise(RuntimeError("gateway down")))
        session._gateway_task.add_done_callback(session._gateway_done)
        for _ in range(5):
            await asyncio.sleep(0)

        assert session._close_task is not None and session._close_task.done()
        assert 1 not in interface.sessions
        assert 2 in interface.sessions
        client_factory.built[0].close.assert_awaited()
        await interface.stop()


async def _raise(exc):
    raise exc


class TestSendMessage:

    @pytest.mark.asyncio
    async def test_unknown_interface(self, core, client_factory):
        _interface(core, client_factory)
        error, data = await core.invoke("send_message", {"interfaceID": 5, "channelID": "1", "content": "x"})
        assert error == "Interface ID does not exist"
        assert data == {"success": False}

    @pytest.mark.asyncio
    async def test_send_to_canonical_channel(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        channel = MagicMock(spec=discord.TextChannel)
        channel.send = AsyncMock(return_value=MagicMock(id=321))
        client = client_factory.built[0]
        client.fetch_channel.return_value = channel

        error, data = await core.invoke("send_message", {
            "interfaceID": 1, "channelID": "123@Channel@Discord", "content": "hello", "attachments": [],
        })
        assert error is None
        assert data == {"success": True, "messageID": "321", "additionalInterfaceData": {}}
        client.fetch_channel.assert_awaited_once_with(123)
        await interface.stop()

    @pytest.mark.asyncio
    async def test_missing_channel(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        client_factory.built[0].fetch_channel.side_effect = discord.NotFound(MagicMock(status=404), "Unknown Channel")
        error, data = await core.invoke("send_message", {"interfaceID": 1, "channelID": "123", "content": "x"})
        assert error == "Channel does not exist"
        assert data == {"success": False}
        await interface.stop()

    @pytest.mark.asyncio
    async def test_bad_attachment(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        error, data = await core.invoke("send_message", {
            "interfaceID": 1, "channelID": "123", "content": "x",
            "attachments": [{"filename": "a", "url": "file:///definitely/not/here.bin"}],
        })
        assert data == {"success": False}
        client_factory.built[0].fetch_channel.assert_not_called()
        await interface.stop()

    @pytest.mark.asyncio
    async def test_slash_command_round_trip(self, core, client_factory):
        """Interaction in, reply out through its continuation, exactly once."""
        interface = _interface(core, client_factory)
        interface.registry.register("ping", CommandDefinition(name="ping", description={"fallback": "Ping"}))
        await core.invoke("login", LOGIN)

        interaction = MagicMock()
        interaction.id = 777
        interaction.type = discord.InteractionType.application_command
        interaction.data = {"type": 1, "name": "ping", "options": []}
        interaction.channel_id = 123
        interaction.guild_id = None
        interaction.user.id = 11
        interaction.response.defer = AsyncMock()
        interaction.followup.send = AsyncMock(return_value=MagicMock(id=778))

        await interface.sessions.get(1).handle_interaction(interaction)
        event = core.events[0]
        assert event["content"] == "/ping "

        error, data = await core.invoke("send_message", {
            "interfaceID": 1, "channelID": event["formattedChannelID"], "content": "pong",
            "replyMessageID": event["messageID"],
        })
        assert data["messageID"] == "778"
        client_factory.built[0].fetch_channel.assert_not_called()
        await interface.stop()


class TestInfo:

    @pytest.mark.asyncio
    async def test_userinfo(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        user = MagicMock()
        user.__str__.return_value = "alice"
        client_factory.built[0].fetch_user.return_value = user
        error, data = await core.invoke("get_userinfo", {"interfaceID": 1, "userID": "55@User@Discord"})
        assert (error, data) == (None, {"name": "alice"})
        client_factory.built[0].fetch_user.assert_awaited_once_with(55)
        await interface.stop()

    @pytest.mark.asyncio
    async def test_userinfo_not_found(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        client_factory.built[0].fetch_user.side_effect = discord.NotFound(MagicMock(status=404), "Unknown User")
        assert await core.invoke("get_userinfo", {"interfaceID": 1, "userID": "55"}) == ("User does not exist", {})
        await interface.stop()

    @pytest.mark.asyncio
    async def test_channelinfo_guild_channel(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        channel = MagicMock(spec=discord.TextChannel)
        channel.name = "general"
        channel.type = discord.ChannelType.text
        client_factory.built[0].fetch_channel.return_value = channel
        error, data = await core.invoke("get_channelinfo", {"interfaceID": 1, "channelID": "9@Channel@Discord"})
        assert data == {"channelName": "general", "type": 0}
        await interface.stop()

    @pytest.mark.asyncio
    async def test_channelinfo_dm(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        channel = MagicMock(spec=discord.DMChannel)
        channel.recipient = MagicMock()
        channel.recipient.__str__.return_value = "bob"
        channel.type = discord.ChannelType.private
        client_factory.built[0].fetch_channel.return_value = channel
        error, data = await core.invoke("get_channelinfo", {"interfaceID": 1, "channelID": "9"})
        assert data == {"channelName": "bob", "type": 1}
        await interface.stop()

    @pytest.mark.asyncio
    async def test_channelinfo_not_found(self, core, client_factory):
        interface = _interface(core, client_factory)
        await core.invoke("login", LOGIN)
        client_factory.built[0].fetch_channel.side_effect = discord.Forbidden(MagicMock(status=403), "Missing Access")
        assert await core.invoke("get_channelinfo", {"interfaceID": 1, "channelID": "9"}) == ("Channel does not exist", {})
        await interface.stop()

    @pytest.mark.asyncio
    async def test_info_calls_are_gated(self, core, client_factory):
        interface = _interface(core, client_factory, ready=False)
        task = asyncio.ensure_future(core.invoke("get_userinfo", {"interfaceID": 1, "userID": "5"}))
        await asyncio.sleep(0.01)
        assert not task.done()
        interface.barrier.release()
        assert await asyncio.wait_for(task, 1) == ("Interface ID does not exist", {"success": False})


class TestStartup:

    @pytest.mark.asyncio
    async def test_start_runs_handshake_and_releases_barrier(self, core, client_factory):
        core.route("core", "get_registered_modules", CallResult(True, [
            {"moduleID": "m1", "type": "cmd_handler", "namespace": "cmds", "running": True},
        ]))
        core.route("m1", "cmd_list", CallResult(True, {"commands": [{"command": "ping"}]}))
        interface = DiscordInterface(core, AdapterSettings(log_file=""), client_factory=client_factory, sleep=_no_sleep)
        await interface.start()
        await asyncio.wait_for(interface.barrier.wait(), 1)
        assert "ping" in interface.registry
        assert {"login", "logout", "send_message", "get_userinfo", "get_channelinfo"} <= set(core.handlers)
        await interface.stop()
