# Message envelopes package
from .message import IncomingMessage

__all__ = ["IncomingMessage"]
