import asyncio

import pytest

from fakes import FakeDiscordDriver, make_message


@pytest.fixture
def driver(events):
    return FakeDiscordDriver(events=events)


@pytest.mark.asyncio
async def test_each_message_handled_in_its_own_task(driver):
    release = asyncio.Event()
    order = []

    async def handler(msg):
        order.append(f"start {msg.message_id}")
        if msg.message_id == "m1":
            # Only finishes once the second message has been handled.
            await release.wait()
        else:
            release.set()
        order.append(f"end {msg.message_id}")

    driver.on_message(handler)
    driver._dispatch(make_message(message_id="m1"))
    driver._dispatch(make_message(message_id="m2"))

    await asyncio.wait_for(asyncio.gather(*driver._tasks), timeout=1)

    assert order == ["start m1", "start m2", "end m2", "end m1"]
    assert not driver._tasks


@pytest.mark.asyncio
async def test_crashing_handler_logged_once_and_task_released(driver, store):
    async def handler(msg):
        raise RuntimeError("handler exploded")

    driver.on_message(handler)
    task = driver._spawn(driver._deliver(make_message(message_id="m9")), name="discord/m9")

    await asyncio.gather(task, return_exceptions=True)
    await asyncio.sleep(0)

    errors = store.by_level("error")
    assert len(errors) == 1
    assert errors[0].message == "Discord message handler crashed"
    assert errors[0].metadata == {"error": "handler exploded", "task": "discord/m9"}
    assert task not in driver._tasks


@pytest.mark.asyncio
async def test_bot_messages_and_missing_handler_skipped(driver):
    driver._dispatch(make_message())
    await asyncio.gather(*driver._tasks)

    seen = []

    async def handler(msg):
        seen.append(msg)

    driver.on_message(handler)
    driver._dispatch(make_message(is_bot=True))
    await asyncio.gather(*driver._tasks)

    assert seen == []
