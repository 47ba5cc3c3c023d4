# Discord driver.
#
# Receive: bot gateway connection via discord.py (message content intent).
#          Bot and webhook authors are dropped before the router sees them,
#          which keeps the bridge's own webhook posts from looping back.
#
# Send:    through a channel webhook owned by the bot, created on first use.
#          Webhooks accept a per-message username/avatar, which is how the
#          relayed author identity is shown.  Webhook posts cannot carry a
#          reply reference, so replies get a quoted preview line instead.
#
# Config keys (under discord):
#   bot_token    – Discord bot token (required)
#   webhook_name – Name given to webhooks the bridge creates

import sys

import discord

from services.config_schema import _DriverConfig
from services.error import InvalidTarget, LookupFailure, NotReady, TransportFailure
from services.message import InboundMessage, OutboundSendRequest, QuotedMessage
from drivers import BaseDriver, compose_content
from drivers.registry import register

# Discord webhook usernames must be 1-80 characters
_MAX_USERNAME = 80


class DiscordConfig(_DriverConfig):
    bot_token:    str
    webhook_name: str = "Revolt Bridge"


class DiscordDriver(BaseDriver[DiscordConfig]):
    platform = "discord"
    label = "Discord"
    renders_replies = False

    def __init__(self, config: DiscordConfig, events):
        super().__init__(config, events)
        intents = discord.Intents.default()
        intents.message_content = True
        self._client = discord.Client(intents=intents)
        # channel id → bridge-owned webhook
        self._webhooks: dict[int, discord.Webhook] = {}
        self._register_events()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _register_events(self):
        client = self._client

        @client.event
        async def on_ready():
            self._ready = True
            self.events.info(
                "Discord bot ready",
                username=str(client.user),
                id=str(client.user.id) if client.user else None,
            )

        @client.event
        async def on_message(message: discord.Message):
            msg = self._normalize(message)
            if msg is not None:
                self._dispatch(msg)

        @client.event
        async def on_error(event_method: str, *args, **kwargs):
            self.events.error("Discord bot error", event=event_method, error=str(sys.exc_info()[1]))

        @client.event
        async def on_disconnect():
            self.events.debug("Discord gateway disconnected, awaiting resume")

    async def start(self):
        self.events.info("Attempting Discord bot login")
        try:
            await self._client.start(self.config.bot_token)
        except discord.LoginFailure as e:
            self.events.error("Discord bot login failed", error=str(e))

    async def close(self):
        self._ready = False
        self._webhooks.clear()
        await self._client.close()

    # ------------------------------------------------------------------
    # Receive
    # ------------------------------------------------------------------

    def _normalize(self, message: discord.Message) -> InboundMessage | None:
        author = message.author
        is_bot = bool(author.bot or message.webhook_id)
        if is_bot:
            return None

        lines = [message.content] if message.content else []
        lines.extend(att.url for att in message.attachments)
        content = "\n".join(lines)
        if not content.strip():
            return None

        reply_to_id = None
        if message.reference is not None and message.reference.message_id is not None:
            reply_to_id = str(message.reference.message_id)

        avatar = author.display_avatar
        return InboundMessage(
            platform=self.platform,
            message_id=str(message.id),
            channel_id=str(message.channel.id),
            author_id=str(author.id),
            author_name=author.display_name,
            author_avatar=str(avatar.url) if avatar else None,
            is_bot=is_bot,
            content=content,
            reply_to_id=reply_to_id,
            raw=message,
        )

    # ------------------------------------------------------------------
    # Channel / webhook resolution
    # ------------------------------------------------------------------

    async def _get_channel(self, channel_id: str):
        try:
            cid = int(channel_id)
        except (TypeError, ValueError):
            raise InvalidTarget(f"Invalid Discord channel id: {channel_id!r}")

        channel = self._client.get_channel(cid)
        if channel is not None:
            return channel
        try:
            return await self._client.fetch_channel(cid)
        except (discord.NotFound, discord.Forbidden, discord.InvalidData) as e:
            raise InvalidTarget(f"Discord channel {channel_id} unavailable: {e}")
        except discord.HTTPException as e:
            raise TransportFailure(f"Discord channel lookup failed: {e}")

    async def _get_webhook(self, channel) -> discord.Webhook:
        cached = self._webhooks.get(channel.id)
        if cached is not None:
            return cached

        if not hasattr(channel, "create_webhook"):
            raise InvalidTarget(f"Discord channel {channel.id} does not accept webhook posts")

        me = self._client.user
        try:
            hooks = await channel.webhooks()
            hook = next(
                (h for h in hooks if h.token and h.user is not None and me is not None
                 and h.user.id == me.id),
                None,
            )
            if hook is None:
                hook = await channel.create_webhook(name=self.config.webhook_name)
                self.events.info("Created Discord webhook", channel_id=str(channel.id))
        except discord.Forbidden as e:
            raise InvalidTarget(f"Missing webhook permission in Discord channel {channel.id}: {e}")
        except discord.HTTPException as e:
            raise TransportFailure(f"Discord webhook setup failed: {e}")

        self._webhooks[channel.id] = hook
        return hook

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send(self, request: OutboundSendRequest) -> str:
        if not self._ready:
            self.events.debug(
                "Attempted to send message before Discord bot was ready",
                channel_id=request.channel_id,
            )
            raise NotReady("Discord bot not ready")

        channel = await self._get_channel(request.channel_id)
        hook = await self._get_webhook(channel)

        kwargs = {
            "content": compose_content(request, with_preview=True),
            "username": (request.display_name or "Unknown")[:_MAX_USERNAME],
            "allowed_mentions": discord.AllowedMentions.none(),
            "wait": True,
        }
        if request.avatar_url:
            kwargs["avatar_url"] = request.avatar_url

        try:
            sent = await hook.send(**kwargs)
        except discord.NotFound:
            # Webhook deleted behind our back; recreate on the next send.
            self._webhooks.pop(channel.id, None)
            raise TransportFailure(f"Discord webhook for channel {channel.id} was deleted")
        except discord.HTTPException as e:
            raise TransportFailure(f"Discord webhook send failed: {e}")

        self.events.debug(
            "Sent Discord message", message_id=str(sent.id), is_reply=bool(request.reply_to_id)
        )
        return str(sent.id)

    async def fetch_message(self, channel_id: str, message_id: str) -> QuotedMessage:
        try:
            channel = await self._get_channel(channel_id)
            message = await channel.fetch_message(int(message_id))
        except (InvalidTarget, TransportFailure, ValueError, AttributeError) as e:
            raise LookupFailure(str(e))
        except discord.HTTPException as e:
            raise LookupFailure(f"Discord message {message_id} not found: {e}")
        return QuotedMessage(author_name=message.author.display_name, content=message.content or "")


register("discord", DiscordConfig, DiscordDriver)
