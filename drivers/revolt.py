# Revolt driver.
#
# Receive: events websocket (``{ws_url}?version=1&format=json&token=…``).
#          The server sends Authenticated, then Ready, then one ``Message``
#          event per new message.  A Ping frame is sent every 20 s to keep
#          the session alive; dropped connections are retried every 5 s.
#
# Send:    REST ``POST /channels/{id}/messages`` with the ``x-bot-token``
#          header.  The relayed author identity is shown through the
#          message ``masquerade`` (name + avatar); the bot needs the
#          Masquerade permission in the target server.  Replies are passed
#          as native reply references, which Revolt renders itself.
#
# Config keys (under revolt):
#   bot_token  – Revolt bot token (required)
#   api_url    – REST base URL       (default: https://api.revolt.chat)
#   ws_url     – Events websocket    (default: wss://ws.revolt.chat)
#   autumn_url – File server base    (default: https://autumn.revolt.chat)

import asyncio
import json

import aiohttp
import websockets
import websockets.exceptions

from services.config_schema import _DriverConfig
from services.error import InvalidTarget, LookupFailure, NotReady, TransportFailure
from services.message import InboundMessage, OutboundSendRequest, QuotedMessage
from drivers import BaseDriver, compose_content
from drivers.registry import register

# Masquerade names are limited to 32 characters
_MAX_MASQUERADE_NAME = 32
_PING_INTERVAL = 20
_RECONNECT_DELAY = 5
_SENDABLE_CHANNELS = {"TextChannel", "Group", "DirectMessage", "SavedMessages"}


class RevoltConfig(_DriverConfig):
    bot_token:  str
    api_url:    str = "https://api.revolt.chat"
    ws_url:     str = "wss://ws.revolt.chat"
    autumn_url: str = "https://autumn.revolt.chat"


class RevoltDriver(BaseDriver[RevoltConfig]):
    platform = "revolt"
    label = "Revolt"
    renders_replies = True

    def __init__(self, config: RevoltConfig, events):
        super().__init__(config, events)
        self._session: aiohttp.ClientSession | None = None
        self._ws = None
        self._closing = False
        self._self_id: str | None = None
        # user id → raw user object
        self._users: dict[str, dict] = {}
        # channel ids already confirmed as sendable
        self._channels: set[str] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"x-bot-token": self.config.bot_token},
                timeout=aiohttp.ClientTimeout(total=30),
            )
        return self._session

    async def start(self):
        self.events.info("Attempting Revolt bot login")
        ws_url = f"{self.config.ws_url}?version=1&format=json&token={self.config.bot_token}"

        while not self._closing:
            try:
                async with websockets.connect(ws_url) as ws:
                    self._ws = ws
                    self.events.debug("Revolt events socket connected", ws_url=self.config.ws_url)
                    heartbeat = asyncio.create_task(self._heartbeat(ws))
                    try:
                        await self._listen(ws)
                    finally:
                        heartbeat.cancel()
            except websockets.exceptions.ConnectionClosedOK:
                self.events.debug("Revolt events socket closed normally")
            except Exception as e:
                self.events.error("Revolt bot error", error=str(e))
            finally:
                self._ws = None

            if self._closing:
                break
            self.events.debug(f"Revolt reconnecting in {_RECONNECT_DELAY} s")
            await asyncio.sleep(_RECONNECT_DELAY)

    async def close(self):
        self._closing = True
        self._ready = False
        if self._ws is not None:
            await self._ws.close()
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _heartbeat(self, ws):
        while True:
            await asyncio.sleep(_PING_INTERVAL)
            await ws.send(json.dumps({"type": "Ping", "data": 0}))

    # ------------------------------------------------------------------
    # Receive
    # ------------------------------------------------------------------

    async def _listen(self, ws):
        async for raw in ws:
            try:
                data = json.loads(raw)
                await self._handle(data)
            except json.JSONDecodeError:
                self.events.debug("Revolt sent an invalid JSON frame")
            except Exception as e:
                self.events.error("Revolt event handler error", error=str(e))

    async def _handle(self, data: dict):
        kind = data.get("type")

        if kind == "Ready":
            for user in data.get("users", []):
                self._users[user["_id"]] = user
            await self._load_self()
            self._ready = True
            self.events.info("Revolt bot ready", id=self._self_id)

        elif kind == "Message":
            self._spawn(self._receive(data), name=f"{self.platform}/{data.get('_id')}")

        elif kind == "UserUpdate":
            self._users.pop(data.get("id", ""), None)

        elif kind == "Error":
            error = data.get("error")
            if error == "InvalidSession":
                self.events.error("Revolt bot login failed", error=error)
                self._closing = True
                if self._ws is not None:
                    await self._ws.close()
            else:
                self.events.error("Revolt bot error", error=error)

    async def _load_self(self):
        if self._self_id is not None:
            return
        try:
            status, body = await self._request("GET", "/users/@me")
        except TransportFailure as e:
            self.events.warn("Failed to fetch Revolt bot user", error=str(e))
            return
        if status != 200:
            self.events.warn("Failed to fetch Revolt bot user", status=status)
            return
        self._self_id = body.get("_id")
        self._users[self._self_id] = body

    async def _receive(self, data: dict):
        msg = await self._normalize(data)
        if msg is not None:
            await self._deliver(msg)

    async def _normalize(self, data: dict) -> InboundMessage | None:
        if data.get("webhook") or data.get("system"):
            return None

        if self._self_id is None:
            await self._load_self()
        author_id = data.get("author", "")
        if author_id == self._self_id:
            return None

        user = await self._get_user(author_id)
        if user is None:
            # Without our own id an unknown author could be this bot's masquerade post.
            if self._self_id is None:
                self.events.warn(
                    "Dropping Revolt message: author and bot identity both unresolved",
                    message_id=data.get("_id"),
                    author_id=author_id,
                )
                return None
            self.events.warn("Failed to fetch Revolt message author", author_id=author_id)
            user = {"_id": author_id, "username": author_id}
        is_bot = "bot" in user

        lines = [data["content"]] if data.get("content") else []
        lines.extend(self.asset_url(att) for att in data.get("attachments") or [])
        content = "\n".join(lines)
        if not content.strip():
            return None

        replies = data.get("replies") or []
        return InboundMessage(
            platform=self.platform,
            message_id=data.get("_id", ""),
            channel_id=data.get("channel", ""),
            author_id=author_id,
            author_name=user.get("display_name") or user.get("username") or author_id,
            author_avatar=self.asset_url(user["avatar"]) if user.get("avatar") else None,
            is_bot=is_bot,
            content=content,
            reply_to_id=replies[0] if replies else None,
            raw=data,
        )

    def asset_url(self, asset: dict) -> str:
        """Public URL of an Autumn file object (avatars, attachments)."""
        tag = asset.get("tag", "avatars")
        return f"{self.config.autumn_url.rstrip('/')}/{tag}/{asset['_id']}"

    # ------------------------------------------------------------------
    # REST
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, payload: dict | None = None) -> tuple[int, dict]:
        url = f"{self.config.api_url.rstrip('/')}{path}"
        try:
            async with self._get_session().request(method, url, json=payload) as resp:
                if resp.content_type == "application/json":
                    body = await resp.json()
                else:
                    body = {"text": await resp.text()}
                return resp.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportFailure(f"Revolt {method} {path} failed: {e}")

    async def _get_user(self, user_id: str) -> dict | None:
        if user_id in self._users:
            return self._users[user_id]
        try:
            status, body = await self._request("GET", f"/users/{user_id}")
        except TransportFailure:
            return None
        if status != 200:
            return None
        self._users[user_id] = body
        return body

    async def _check_channel(self, channel_id: str):
        if channel_id in self._channels:
            return
        status, body = await self._request("GET", f"/channels/{channel_id}")
        if status == 404:
            raise InvalidTarget(f"Revolt channel {channel_id} not found")
        if status != 200:
            raise TransportFailure(f"Revolt channel lookup HTTP {status}: {body}")
        if body.get("channel_type") not in _SENDABLE_CHANNELS:
            raise InvalidTarget(f"Revolt channel {channel_id} cannot receive messages")
        self._channels.add(channel_id)

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send(self, request: OutboundSendRequest) -> str:
        if not self._ready:
            self.events.debug(
                "Attempted to send message before Revolt bot was ready",
                channel_id=request.channel_id,
            )
            raise NotReady("Revolt bot not ready")

        await self._check_channel(request.channel_id)

        payload: dict = {"content": compose_content(request, with_preview=False)}
        if request.display_name:
            masquerade = {"name": request.display_name[:_MAX_MASQUERADE_NAME]}
            if request.avatar_url:
                masquerade["avatar"] = request.avatar_url
            payload["masquerade"] = masquerade
        if request.reply_to_id:
            payload["replies"] = [{"id": request.reply_to_id, "mention": False}]

        status, body = await self._request(
            "POST", f"/channels/{request.channel_id}/messages", payload
        )
        if status in (403, 404):
            self._channels.discard(request.channel_id)
            raise InvalidTarget(f"Revolt refused post to {request.channel_id}: HTTP {status}")
        if status not in (200, 201):
            raise TransportFailure(f"Revolt send HTTP {status}: {body}")

        self.events.debug(
            "Sent Revolt message", message_id=body.get("_id"), is_reply=bool(request.reply_to_id)
        )
        return body["_id"]

    async def fetch_message(self, channel_id: str, message_id: str) -> QuotedMessage:
        try:
            status, body = await self._request("GET", f"/channels/{channel_id}/messages/{message_id}")
        except TransportFailure as e:
            raise LookupFailure(str(e))
        if status != 200:
            raise LookupFailure(f"Revolt message {message_id} not found: HTTP {status}")

        name = (body.get("masquerade") or {}).get("name")
        if not name:
            user = await self._get_user(body.get("author", ""))
            name = (user or {}).get("display_name") or (user or {}).get("username") or "unknown"
        return QuotedMessage(author_name=name, content=body.get("content") or "")


register("revolt", RevoltConfig, RevoltDriver)
