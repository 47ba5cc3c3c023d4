from dataclasses import dataclass
from typing import Iterable

from services.models import Bridge, Masquerade


@dataclass(frozen=True)
class Identity:
    name: str
    avatar: str | None


def resolve_identity(
    bridge: Bridge,
    masquerades: Iterable[Masquerade],
    author_id: str,
    fallback_name: str,
    fallback_avatar: str | None,
) -> Identity:
    """Return the name/avatar a relayed message is posted under.

    The first masquerade row of *bridge* whose ``user_id`` equals *author_id*
    wins outright, avatar included, even when its avatar is empty.  Without a
    match the native author values are returned unchanged.
    """
    for m in masquerades:
        if m.bridge_id == bridge.id and m.user_id == author_id:
            return Identity(name=m.username, avatar=m.avatar)
    return Identity(name=fallback_name, avatar=fallback_avatar)
