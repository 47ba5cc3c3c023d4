import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from drivers.discord import DiscordConfig, DiscordDriver
from services.error import InvalidTarget, LookupFailure, NotReady
from services.logger import EventLog
from services.message import OutboundSendRequest

from fakes import FakeStore


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def driver(store):
    return DiscordDriver(DiscordConfig(bot_token="discord-bot-token"), EventLog(store))


def _message(**overrides):
    author = SimpleNamespace(
        id=42, bot=False, display_name="alice",
        display_avatar=SimpleNamespace(url="https://cdn.discordapp.com/avatars/42/a.png"),
    )
    fields = dict(
        id=1001, author=author, webhook_id=None, content="hello",
        attachments=[], reference=None, channel=SimpleNamespace(id=555),
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _client_with_channel(channel):
    client = MagicMock()
    client.get_channel.return_value = channel
    client.user = SimpleNamespace(id=7)
    return client


class TestReceive:

    def test_normalize(self, driver):
        msg = driver._normalize(_message(
            reference=SimpleNamespace(message_id=999),
            attachments=[SimpleNamespace(url="https://cdn.discordapp.com/attachments/1/a.png")],
        ))

        assert msg.platform == "discord"
        assert msg.message_id == "1001"
        assert msg.channel_id == "555"
        assert msg.author_id == "42"
        assert msg.author_name == "alice"
        assert msg.author_avatar == "https://cdn.discordapp.com/avatars/42/a.png"
        assert msg.content == "hello\nhttps://cdn.discordapp.com/attachments/1/a.png"
        assert msg.reply_to_id == "999"

    def test_bot_and_webhook_authors_dropped(self, driver):
        bot = _message()
        bot.author.bot = True

        assert driver._normalize(bot) is None
        assert driver._normalize(_message(webhook_id=123)) is None

    def test_empty_message_dropped(self, driver):
        assert driver._normalize(_message(content="")) is None

    @pytest.mark.asyncio
    async def test_on_ready_sets_flag(self, driver, store):
        await driver._client.on_ready()

        assert driver.ready is True
        assert store.logs[-1].message == "Discord bot ready"

    @pytest.mark.asyncio
    async def test_on_message_dispatches_normalized_message(self, driver):
        received = []

        async def handler(msg):
            received.append(msg)

        driver.on_message(handler)

        await driver._client.on_message(_message(content="from discord"))
        await asyncio.gather(*driver._tasks)

        assert [(m.message_id, m.content) for m in received] == [("1001", "from discord")]

    @pytest.mark.asyncio
    async def test_on_message_ignores_bot_authors(self, driver):
        driver.on_message(AsyncMock())
        bot = _message()
        bot.author.bot = True

        await driver._client.on_message(bot)

        assert not driver._tasks

    @pytest.mark.asyncio
    async def test_on_error_records_exception(self, driver, store):
        try:
            raise RuntimeError("gateway hiccup")
        except RuntimeError:
            await driver._client.on_error("on_message")

        record = store.by_level("error")[-1]
        assert record.message == "Discord bot error"
        assert record.metadata == {"event": "on_message", "error": "gateway hiccup"}


class TestSend:

    @pytest.mark.asyncio
    async def test_not_ready(self, driver):
        with pytest.raises(NotReady):
            await driver.send(OutboundSendRequest(channel_id="555", content="x", display_name="a"))

    @pytest.mark.asyncio
    async def test_sends_via_bridge_webhook_with_quote(self, driver):
        hook = MagicMock()
        hook.send = AsyncMock(return_value=SimpleNamespace(id=31337))
        channel = MagicMock(id=555)
        channel.webhooks = AsyncMock(return_value=[])
        channel.create_webhook = AsyncMock(return_value=hook)
        driver._client = _client_with_channel(channel)
        driver._ready = True

        sent_id = await driver.send(OutboundSendRequest(
            channel_id="555", content="hello", display_name="Al",
            avatar_url="https://autumn.revolt.chat/avatars/x",
            reply_to_id="888", reply_preview="> **bob:** hi",
        ))

        assert sent_id == "31337"
        channel.create_webhook.assert_awaited_once_with(name="Revolt Bridge")
        kwargs = hook.send.await_args.kwargs
        assert kwargs["content"] == "> **bob:** hi\nhello"
        assert kwargs["username"] == "Al"
        assert kwargs["avatar_url"] == "https://autumn.revolt.chat/avatars/x"
        assert kwargs["wait"] is True

    @pytest.mark.asyncio
    async def test_existing_webhook_reused(self, driver):
        hook = MagicMock(token="tok", user=SimpleNamespace(id=7))
        hook.send = AsyncMock(return_value=SimpleNamespace(id=1))
        channel = MagicMock(id=555)
        channel.webhooks = AsyncMock(return_value=[hook])
        channel.create_webhook = AsyncMock()
        driver._client = _client_with_channel(channel)
        driver._ready = True

        await driver.send(OutboundSendRequest(channel_id="555", content="a", display_name="x"))
        await driver.send(OutboundSendRequest(channel_id="555", content="b", display_name="x"))

        channel.create_webhook.assert_not_awaited()
        channel.webhooks.assert_awaited_once()
        assert "avatar_url" not in hook.send.await_args.kwargs

    @pytest.mark.asyncio
    async def test_non_numeric_channel_is_invalid(self, driver):
        driver._ready = True

        with pytest.raises(InvalidTarget):
            await driver.send(OutboundSendRequest(channel_id="general", content="x", display_name="a"))

    @pytest.mark.asyncio
    async def test_channel_without_webhooks_is_invalid(self, driver):
        driver._client = _client_with_channel(SimpleNamespace(id=555))
        driver._ready = True

        with pytest.raises(InvalidTarget):
            await driver.send(OutboundSendRequest(channel_id="555", content="x", display_name="a"))


class TestFetchMessage:

    @pytest.mark.asyncio
    async def test_fetches_author_and_content(self, driver):
        channel = MagicMock(id=555)
        channel.fetch_message = AsyncMock(return_value=SimpleNamespace(
            author=SimpleNamespace(display_name="bob"), content="hi\nthere",
        ))
        driver._client = _client_with_channel(channel)

        quoted = await driver.fetch_message("555", "888")

        channel.fetch_message.assert_awaited_once_with(888)
        assert (quoted.author_name, quoted.content) == ("bob", "hi\nthere")

    @pytest.mark.asyncio
    async def test_foreign_id_is_lookup_failure(self, driver):
        driver._client = _client_with_channel(MagicMock(id=555))

        with pytest.raises(LookupFailure):
            await driver.fetch_message("555", "01HREVOLTID")

    @pytest.mark.asyncio
    async def test_not_found_is_lookup_failure(self, driver):
        channel = MagicMock(id=555)
        channel.fetch_message = AsyncMock(side_effect=discord.NotFound(
            MagicMock(status=404, reason="Not Found"), "Unknown Message"
        ))
        driver._client = _client_with_channel(channel)

        with pytest.raises(LookupFailure):
            await driver.fetch_message("555", "888")
