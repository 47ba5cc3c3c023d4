"""
Shared fixtures: an in-memory store, a structured event log writing into it,
and one fake adapter per platform wired through a ``BridgeRouter``.
"""
import pytest

from services.bridge import BridgeRouter
from services.logger import EventLog
from services.models import Bridge

from fakes import FakeDiscordDriver, FakeRevoltDriver, FakeStore


@pytest.fixture
def bridge():
    return Bridge(id="b1", discord_channel_id="a1", revolt_channel_id="b1", enabled=True)


@pytest.fixture
def store(bridge):
    return FakeStore(bridges=[bridge])


@pytest.fixture
def events(store):
    return EventLog(store)


@pytest.fixture
def discord_driver(events):
    return FakeDiscordDriver(events=events)


@pytest.fixture
def revolt_driver(events):
    return FakeRevoltDriver(events=events)


@pytest.fixture
def router(store, events, discord_driver, revolt_driver):
    r = BridgeRouter(store, events)
    r.attach(discord_driver, revolt_driver)
    r.attach(revolt_driver, discord_driver)
    return r
