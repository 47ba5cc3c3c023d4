"""
Property-based tests for the relay core.

Each property drives the router directly with generated inbound messages and
asserts on what the fake destination adapter was asked to send.
"""
import asyncio

from hypothesis import given, settings, strategies as st

from services.bridge import BridgeRouter
from services.identity import resolve_identity
from services.logger import EventLog
from services.error import TransportFailure
from services.models import Bridge, Masquerade

from fakes import FakeDiscordDriver, FakeRevoltDriver, FakeStore, make_message

BRIDGE_ID = "b1"


def _ids():
    return st.text(alphabet="abcdef0123456789", min_size=1, max_size=12)


def _names():
    return st.text(min_size=1, max_size=40)


def _avatars():
    return st.one_of(st.none(), st.text(min_size=1, max_size=60).map(lambda s: f"https://cdn.example/{s}"))


@st.composite
def masquerade_rows(draw):
    return draw(st.lists(
        st.builds(
            Masquerade,
            bridge_id=st.sampled_from([BRIDGE_ID, "other"]),
            user_id=_ids(),
            username=_names(),
            avatar=_avatars(),
        ),
        max_size=8,
    ))


def _setup(masquerades=(), bridges=None):
    bridge = Bridge(id=BRIDGE_ID, discord_channel_id="a1", revolt_channel_id="b1")
    store = FakeStore(bridges=bridges if bridges is not None else [bridge], masquerades=masquerades)
    events = EventLog(store)
    discord, revolt = FakeDiscordDriver(events=events), FakeRevoltDriver(events=events)
    router = BridgeRouter(store, events)
    router.attach(discord, revolt)
    router.attach(revolt, discord)
    return store, discord, revolt, router


class TestRelayProperties:

    @settings(max_examples=50)
    @given(content=st.text(min_size=1, max_size=200), author=_ids(), source=st.sampled_from(["discord", "revolt"]))
    def test_bot_messages_never_sent(self, content, author, source):
        """Property: a bot-originated event never produces a send, in either direction."""
        store, discord, revolt, router = _setup()
        src, dst = (discord, revolt) if source == "discord" else (revolt, discord)
        channel = "a1" if source == "discord" else "b1"
        msg = make_message(platform=source, channel_id=channel, author_id=author, content=content, is_bot=True)

        asyncio.run(router.relay(msg, source=src, target=dst))

        assert discord.sent == [] and revolt.sent == []

    @settings(max_examples=50)
    @given(rows=masquerade_rows(), author=_ids(), name=_names(), avatar=_avatars(), content=st.text(min_size=1, max_size=200))
    def test_direction_parity(self, rows, author, name, avatar, content):
        """Property: swapping platform roles yields the same identity and content."""
        store, discord, revolt, router = _setup(masquerades=rows)

        asyncio.run(router.relay(
            make_message(platform="discord", channel_id="a1", author_id=author,
                         author_name=name, author_avatar=avatar, content=content),
            source=discord, target=revolt,
        ))
        asyncio.run(router.relay(
            make_message(platform="revolt", channel_id="b1", author_id=author,
                         author_name=name, author_avatar=avatar, content=content),
            source=revolt, target=discord,
        ))

        to_revolt, to_discord = revolt.sent[0], discord.sent[0]
        assert (to_revolt.display_name, to_revolt.avatar_url, to_revolt.content) == \
            (to_discord.display_name, to_discord.avatar_url, to_discord.content)
        assert to_revolt.channel_id == "b1" and to_discord.channel_id == "a1"

    @settings(max_examples=100)
    @given(rows=masquerade_rows(), name=_names(), avatar=_avatars(), override=_names(), override_avatar=_avatars())
    def test_masquerade_precedence(self, rows, name, avatar, override, override_avatar):
        """Property: a matching row's values win over non-empty native values."""
        author = "matching-author"
        rows = [r for r in rows if r.user_id != author]
        rows.insert(0, Masquerade(bridge_id=BRIDGE_ID, user_id=author, username=override, avatar=override_avatar))
        bridge = Bridge(id=BRIDGE_ID, discord_channel_id="a1", revolt_channel_id="b1")

        identity = resolve_identity(bridge, rows, author, name, avatar)

        assert identity.name == override
        assert identity.avatar == override_avatar

    @settings(max_examples=100)
    @given(rows=masquerade_rows(), name=_names(), avatar=_avatars())
    def test_fallback_identity(self, rows, name, avatar):
        """Property: without a matching row the native identity passes through exactly."""
        author = "unmatched-author"
        rows = [r for r in rows if r.user_id != author]
        bridge = Bridge(id=BRIDGE_ID, discord_channel_id="a1", revolt_channel_id="b1")

        identity = resolve_identity(bridge, rows, author, name, avatar)

        assert (identity.name, identity.avatar) == (name, avatar)

    @settings(max_examples=50)
    @given(channel=_ids().filter(lambda c: c not in ("a1", "b1")), enabled=st.booleans())
    def test_unmatched_or_disabled_is_noop(self, channel, enabled):
        """Property: no enabled bridge for the channel means no send and no log."""
        bridge = Bridge(id=BRIDGE_ID, discord_channel_id="a1", revolt_channel_id="b1", enabled=False)
        other = Bridge(id="b2", discord_channel_id="x9", revolt_channel_id="y9", enabled=enabled)
        store, discord, revolt, router = _setup(bridges=[bridge, other])

        asyncio.run(router.relay(make_message(channel_id=channel), source=discord, target=revolt))
        asyncio.run(router.relay(make_message(channel_id="a1"), source=discord, target=revolt))

        assert revolt.sent == []
        assert store.logs == []

    @settings(max_examples=30)
    @given(first=st.text(min_size=1, max_size=100), second=st.text(min_size=1, max_size=100))
    def test_transport_failure_isolated(self, first, second):
        """Property: one failed send yields one error record and the next event still relays."""
        store, discord, revolt, router = _setup()
        revolt.fail_next = TransportFailure("connection reset")

        async def scenario():
            await router.relay(make_message(message_id="one", content=first), source=discord, target=revolt)
            await router.relay(make_message(message_id="two", content=second), source=discord, target=revolt)

        asyncio.run(scenario())

        assert len(store.by_level("error")) == 1
        assert [r.content for r in revolt.sent] == [second]
