from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

# Log metadata stays serialisable across every sink.
MetaValue = str | int | float | bool | None
LogLevel = Literal["info", "warn", "error"]


@dataclass
class Bridge:
    """A Discord channel paired with a Revolt channel."""
    id: str
    discord_channel_id: str
    revolt_channel_id: str
    enabled: bool = True

    def channel_id(self, platform: str) -> str:
        return getattr(self, f"{platform}_channel_id")


@dataclass
class Masquerade:
    """Per-bridge identity override, keyed by the author's id on the source platform."""
    bridge_id: str
    user_id: str
    username: str
    avatar: str | None = None


@dataclass
class LogRecord:
    level: LogLevel
    message: str
    metadata: dict[str, MetaValue] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


@dataclass
class Settings:
    """Per-platform option blocks, e.g. ``{"discord": {"bot_token": ...}}``."""
    platforms: dict[str, dict[str, Any]] = field(default_factory=dict)

    def options(self, platform: str) -> dict[str, Any]:
        return dict(self.platforms.get(platform, {}))

    def token(self, platform: str) -> str | None:
        return self.platforms.get(platform, {}).get("bot_token") or None
