"""Per-channel capture policies."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import UnsupportedChannelError


@dataclass(frozen=True)
class ChannelPolicy:
    name: str
    label: str
    full_page: bool = False


CHANNELS: dict[str, ChannelPolicy] = {
    # Display placements are judged above the fold, so a viewport shot.
    "gdn": ChannelPolicy(name="gdn", label="Google Display Network", full_page=False),
}


def get_channel(name: str) -> ChannelPolicy:
    try:
        return CHANNELS[(name or "").strip().lower()]
    except KeyError:
        raise UnsupportedChannelError(f"unsupported channel: {name!r}") from None


__all__ = ["CHANNELS", "ChannelPolicy", "get_channel"]
