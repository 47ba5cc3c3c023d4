from typing import TYPE_CHECKING

from services.logger import EventLog
from services.message import ReplyLinkage

if TYPE_CHECKING:
    from drivers import BaseDriver


def format_quote(author_name: str, content: str) -> str:
    """Render the one-line preview used where replies are not drawn natively."""
    first_line = content.split("\n", 1)[0] if content else ""
    return f"> **{author_name}:** {first_line}"


class ReplyResolver:
    """
    Looks up a reply target on the destination platform.

    A destination that renders replies structurally gets a bare linkage; any
    other destination also gets a quote line to prepend.  A failed lookup is
    reported at warn level and yields ``None`` so the relay goes ahead
    without reply context.
    """

    def __init__(self, events: EventLog):
        self._events = events

    async def resolve(
        self, adapter: "BaseDriver", channel_id: str, reply_to_id: str
    ) -> ReplyLinkage | None:
        try:
            quoted = await adapter.fetch_message(channel_id, reply_to_id)
        except Exception as e:
            self._events.warn(
                f"Failed to fetch reply message on {adapter.label}",
                error=str(e),
                reply_to_id=reply_to_id,
            )
            return None

        if adapter.renders_replies:
            return ReplyLinkage(reply_to_id=reply_to_id)
        return ReplyLinkage(
            reply_to_id=reply_to_id,
            preview=format_quote(quoted.author_name, quoted.content),
        )
