# Infrastructure package: message channel and retry policy
from .bus import MessageChannel, ChannelError
from .retry import ErrorKind, RetryConfig, RetryHandler, classify_error

__all__ = [
    "MessageChannel",
    "ChannelError",
    "ErrorKind",
    "RetryConfig",
    "RetryHandler",
    "classify_error",
]
