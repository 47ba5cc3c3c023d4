import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Generic, TypeVar

from pydantic import BaseModel

from services.logger import EventLog
from services.message import InboundMessage, OutboundSendRequest, QuotedMessage

T = TypeVar("T", bound=BaseModel)

MessageHandler = Callable[[InboundMessage], Awaitable[None]]

# Both platforms cap message bodies at 2000 characters.
MAX_CONTENT = 2000


def compose_content(request: OutboundSendRequest, *, with_preview: bool) -> str:
    text = request.content
    if with_preview and request.reply_preview:
        text = f"{request.reply_preview}\n{text}"
    return text[:MAX_CONTENT]


class BaseDriver(ABC, Generic[T]):
    """Abstract base class for both platform adapters."""

    platform: str = ""
    label: str = ""
    # True when the platform draws reply references itself, so no quote
    # line has to be prepended.
    renders_replies: bool = False

    def __init__(self, config: T, events: EventLog):
        self.config: T = config
        self.events = events
        self._ready = False
        self._handler: MessageHandler | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def ready(self) -> bool:
        return self._ready

    def on_message(self, handler: MessageHandler):
        """Register the single handler called for every non-bot inbound message."""
        self._handler = handler

    def _spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    async def _deliver(self, msg: InboundMessage):
        if msg.is_bot or self._handler is None:
            return
        await self._handler(msg)

    def _dispatch(self, msg: InboundMessage):
        """Run the handler for *msg* as its own task."""
        self._spawn(self._deliver(msg), name=f"{self.platform}/{msg.message_id}")

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.events.error(
                f"{self.label} message handler crashed", error=str(exc), task=task.get_name()
            )

    @abstractmethod
    async def start(self):
        """Connect, authenticate and listen.  Runs until the connection is torn down."""

    @abstractmethod
    async def close(self):
        """Tear the connection down; clears the ready flag."""

    @abstractmethod
    async def send(self, request: OutboundSendRequest) -> str:
        """Post *request* and return the new message's id on this platform."""

    @abstractmethod
    async def fetch_message(self, channel_id: str, message_id: str) -> QuotedMessage:
        """Fetch a message from channel history, raising ``LookupFailure`` on failure."""
