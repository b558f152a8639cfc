"""Core bus: transport and payload schemas for talking to the CMC core."""

from .bus import CallResult, CoreBus, JsonLineBus, open_stdio_bus
from .protocol import InboundEvent, MentionSpan, AttachmentRef

__all__ = [
    "CallResult",
    "CoreBus",
    "JsonLineBus",
    "open_stdio_bus",
    "InboundEvent",
    "MentionSpan",
    "AttachmentRef",
]
