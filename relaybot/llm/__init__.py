"""
LLM Integration Package

Provides the completion client that turns a chat message into a reply using a
hosted language model.
"""

from .client import (
    CompletionClient,
    CompletionError,
    LLMConfig,
    map_sdk_error
)

__all__ = [
    'CompletionClient',
    'CompletionError',
    'LLMConfig',
    'map_sdk_error'
]
