from functools import partial
from typing import TYPE_CHECKING

from services.db import Store
from services.error import BridgeConflict
from services.identity import Identity, resolve_identity
from services.logger import EventLog
from services.message import InboundMessage, OutboundSendRequest, ReplyLinkage
from services.models import Bridge, Settings
from services.reply import ReplyResolver

if TYPE_CHECKING:
    from drivers import BaseDriver

# Option keys whose values are treated as credentials and must never appear in
# outgoing messages.  Matched as substrings against lower-cased key names.
_SENSITIVE_KEY_PATTERNS = ("token", "secret", "password")


def collect_sensitive(settings: Settings) -> frozenset[str]:
    """Extract credential values from every platform's options."""
    found: set[str] = set()
    for options in settings.platforms.values():
        for k, v in options.items():
            if isinstance(v, str) and v and any(p in k.lower() for p in _SENSITIVE_KEY_PATTERNS):
                found.add(v)
    return frozenset(found)


class BridgeRouter:
    """
    Core routing engine.

    ``attach(source, target)`` registers a handler on *source*; every message
    it delivers is matched against the enabled bridges and, on a match,
    reposted on *target* under the resolved identity.  Both directions go
    through the same ``relay`` code path; only the platform names differ.

    A failure while relaying drops that one message and is recorded as an
    error log.  Nothing escapes ``relay``.
    """

    def __init__(self, store: Store, events: EventLog, sensitive: frozenset[str] = frozenset()):
        self._store = store
        self._events = events
        self._sensitive = sensitive
        self._replies = ReplyResolver(events)

    def attach(self, source: "BaseDriver", target: "BaseDriver"):
        source.on_message(partial(self.relay, source=source, target=target))
        self._events.debug(f"Registered relay {source.label} -> {target.label}")

    # ------------------------------------------------------------------
    # Message routing
    # ------------------------------------------------------------------

    async def relay(self, msg: InboundMessage, *, source: "BaseDriver", target: "BaseDriver"):
        # Both bots post as bots; re-ingesting those posts would loop forever.
        if msg.is_bot:
            return

        try:
            bridge = self._match_bridge(source.platform, msg.channel_id)
            if bridge is None:
                return

            if self._is_sensitive(msg.content):
                self._events.warn(
                    f"{source.label} message blocked: text contains a sensitive value "
                    f"from config (token/secret). Possible credential leak.",
                    message_id=msg.message_id,
                    bridge_id=bridge.id,
                )
                return

            self._events.debug(
                f"Processing {source.label} message for bridge",
                bridge_id=bridge.id,
                message_id=msg.message_id,
            )

            dest_channel = bridge.channel_id(target.platform)
            identity = self._resolve_identity(bridge, msg)
            linkage = None
            if msg.reply_to_id:
                linkage = await self._resolve_reply(msg, source, target, dest_channel)

            sent_id = await target.send(OutboundSendRequest(
                channel_id=dest_channel,
                content=msg.content,
                display_name=identity.name,
                avatar_url=identity.avatar,
                reply_to_id=linkage.reply_to_id if linkage else None,
                reply_preview=linkage.preview if linkage else None,
            ))
        except Exception as e:
            self._events.error(
                f"Failed to relay {source.label} message to {target.label}",
                error=str(e),
                message_id=msg.message_id,
            )
            return

        self._remember(msg, source, target, dest_channel, sent_id)
        self._events.info(
            f"Successfully relayed {source.label} message to {target.label}",
            message_id=msg.message_id,
            is_reply=bool(msg.reply_to_id),
        )

    def _match_bridge(self, platform: str, channel_id: str) -> Bridge | None:
        matches = [
            b for b in self._store.get_bridges()
            if b.enabled and b.channel_id(platform) == channel_id
        ]
        if len(matches) > 1:
            ids = ", ".join(b.id for b in matches)
            raise BridgeConflict(
                f"{len(matches)} enabled bridges ({ids}) claim {platform} channel {channel_id}"
            )
        return matches[0] if matches else None

    def _resolve_identity(self, bridge: Bridge, msg: InboundMessage) -> Identity:
        try:
            masquerades = self._store.get_masquerades(bridge.id)
        except Exception as e:
            self._events.warn(
                "Failed to load masquerades; using native identity",
                error=str(e),
                bridge_id=bridge.id,
            )
            masquerades = []
        return resolve_identity(
            bridge, masquerades, msg.author_id, msg.author_name, msg.author_avatar
        )

    async def _resolve_reply(
        self,
        msg: InboundMessage,
        source: "BaseDriver",
        target: "BaseDriver",
        dest_channel: str,
    ) -> ReplyLinkage | None:
        reply_to_id = self._translate_id(msg.reply_to_id, source.platform, target.platform)
        return await self._replies.resolve(target, dest_channel, reply_to_id)

    def _translate_id(self, message_id: str, source: str, target: str) -> str:
        """Map a source-platform message id to its copy on *target*, if one was relayed."""
        try:
            relay_id = self._store.get_relay_id(source, message_id)
            if relay_id is None:
                return message_id
            return self._store.get_platform_msg_id(relay_id, target) or message_id
        except Exception as e:
            self._events.warn(
                "Failed to translate reply id",
                error=str(e),
                reply_to_id=message_id,
            )
            return message_id

    def _remember(self, msg: InboundMessage, source, target, dest_channel: str, sent_id: str):
        relay_id = f"{source.platform}:{msg.message_id}"
        try:
            self._store.save_mapping(relay_id, source.platform, msg.channel_id, msg.message_id)
            self._store.save_mapping(relay_id, target.platform, dest_channel, sent_id)
        except Exception as e:
            self._events.warn("Failed to store message mapping", error=str(e), message_id=msg.message_id)

    def _is_sensitive(self, text: str) -> bool:
        return bool(self._sensitive) and any(s in text for s in self._sensitive)
