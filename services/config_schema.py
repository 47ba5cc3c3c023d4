from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator

from services.models import Bridge, Masquerade


# ---------------------------------------------------------------------------
# Reusable bool coercion: "true" / "1" / "yes" → True
# ---------------------------------------------------------------------------

def _coerce_bool(v: object) -> object:
    if isinstance(v, str):
        return v.lower() in ("true", "1", "yes")
    return v


CoercedBool = Annotated[bool, BeforeValidator(_coerce_bool)]


def _coerce_str(v: object) -> object:
    # Discord snowflakes are often written as bare integers in YAML/TOML
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return v


IdStr = Annotated[str, BeforeValidator(_coerce_str)]


# ---------------------------------------------------------------------------
# Base for the per-platform option blocks; unknown keys are a validation error
# ---------------------------------------------------------------------------

class _DriverConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Bridges and masquerades
# ---------------------------------------------------------------------------

class BridgeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id:                 IdStr
    discord_channel_id: IdStr
    revolt_channel_id:  IdStr
    enabled:            CoercedBool = True

    def to_model(self) -> Bridge:
        return Bridge(**self.model_dump())


class MasqueradeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bridge_id: IdStr
    user_id:   IdStr
    username:  str
    avatar:    str | None = None

    def to_model(self) -> Masquerade:
        return Masquerade(**self.model_dump())


# ---------------------------------------------------------------------------
# Top-level application config
# ---------------------------------------------------------------------------

class AppConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database:    str                    = "bridge.db"
    discord:     dict[str, Any]         = {}
    revolt:      dict[str, Any]         = {}
    bridges:     list[BridgeConfig]     = []
    masquerades: list[MasqueradeConfig] = []

    @model_validator(mode="after")
    def _check_references(self) -> AppConfig:
        ids = [b.id for b in self.bridges]
        if len(ids) != len(set(ids)):
            raise ValueError("bridge ids must be unique")

        seen: set[tuple[str, str]] = set()
        for m in self.masquerades:
            if m.bridge_id not in ids:
                raise ValueError(f"masquerade for unknown bridge '{m.bridge_id}'")
            key = (m.bridge_id, m.user_id)
            if key in seen:
                raise ValueError(
                    f"duplicate masquerade for user '{m.user_id}' on bridge '{m.bridge_id}'"
                )
            seen.add(key)
        return self

    def platform_options(self, platform: str) -> dict[str, Any]:
        return dict(getattr(self, platform, {}) or {})
