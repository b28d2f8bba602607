"""Observer fan-out and inbound command routing."""

from .broadcast import BroadcastHub, encode_message
from .listeners import send_activity, send_snapshot, wire_listeners
from .messages import InboundMessage, parse_inbound
from .router import CommandRouter

__all__ = [
    "BroadcastHub",
    "CommandRouter",
    "InboundMessage",
    "encode_message",
    "parse_inbound",
    "send_activity",
    "send_snapshot",
    "wire_listeners",
]
