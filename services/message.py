from dataclasses import dataclass
from typing import Any


@dataclass
class InboundMessage:
    """Platform-agnostic view of one received chat message."""
    platform: str          # "discord" | "revolt"
    message_id: str        # native id on the source platform
    channel_id: str
    author_id: str
    author_name: str       # display name of sender
    author_avatar: str | None
    is_bot: bool
    content: str
    reply_to_id: str | None = None
    raw: Any = None        # native message object, for adapter-side lookups


@dataclass
class OutboundSendRequest:
    """What the router asks a destination adapter to post."""
    channel_id: str
    content: str
    display_name: str
    avatar_url: str | None = None
    reply_to_id: str | None = None
    reply_preview: str | None = None  # quote line, only for non-rendering platforms


@dataclass
class QuotedMessage:
    """A fetched reply target."""
    author_name: str
    content: str


@dataclass
class ReplyLinkage:
    reply_to_id: str
    preview: str | None = None
