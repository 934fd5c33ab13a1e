"""Chat-platform adapters."""
from .base import InboundMessage, Replyable, SelectionInteraction, SentMessage

__all__ = [
    "InboundMessage",
    "Replyable",
    "SelectionInteraction",
    "SentMessage",
    "DiscordGateway",
]


def __getattr__(name: str):
    if name == "DiscordGateway":
        from .discord_gateway import DiscordGateway
        return DiscordGateway
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
