"""
SDK for Chat Relay.

Provides the completion provider used to generate replies.
"""

from .openai_client import CompletionProvider, OpenAICompletionClient

__all__ = ["CompletionProvider", "OpenAICompletionClient"]
