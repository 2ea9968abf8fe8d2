"""
OpenAI completion client.

Sends an assembled conversation to the chat completions endpoint and
returns the reply text. Every provider-side failure surfaces as a single
UpstreamFailure; nothing is retried here.
"""

from typing import Any, Dict, List, Optional, Protocol

import openai
from openai import OpenAI

from ..core.errors import UpstreamFailure
from ..log import get_logger

logger = get_logger(__name__)

# Reply used when the provider answers without any text
PLACEHOLDER_REPLY = "(no reply)"

DEFAULT_TIMEOUT = 120.0


class CompletionProvider(Protocol):
    """Anything able to turn a conversation into a reply."""

    def complete(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int
    ) -> str:
        ...


def _error_detail(error: openai.OpenAIError) -> Any:
    """Extract whatever diagnostic payload the provider returned."""
    if isinstance(error, openai.APIStatusError):
        return {"status": error.status_code, "body": error.body}
    body = getattr(error, "body", None)
    return body if body is not None else str(error)


class OpenAICompletionClient:
    """OpenAI chat completions with a bounded timeout and no retries."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: Optional[str] = None
    ):
        """Initialize the completion client.
        
        Args:
            api_key: OpenAI API key (falls back to OPENAI_API_KEY)
            timeout: Upper bound in seconds for a single completion call
            base_url: Optional alternative API endpoint
            
        Raises:
            ValueError: If timeout is not positive
        """
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        
        self.timeout = timeout
        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0
        )
    
    def complete(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int
    ) -> str:
        """Create a chat completion and return its text.
        
        Args:
            messages: Conversation in chat completions format
            model: Model identifier resolved from the user's level
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            
        Returns:
            Reply text, or PLACEHOLDER_REPLY when the provider sent none
            
        Raises:
            UpstreamFailure: On transport errors, timeouts, non-success
                statuses and unparseable responses
        """
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except openai.APITimeoutError as e:
            logger.error("upstream_timeout", model=model, timeout=self.timeout)
            raise UpstreamFailure("Completion provider timed out", _error_detail(e)) from e
        except openai.OpenAIError as e:
            detail = _error_detail(e)
            logger.error("upstream_failure", model=model, error=type(e).__name__, detail=detail)
            raise UpstreamFailure("Completion provider request failed", detail) from e
        
        choices = getattr(response, "choices", None)
        if not isinstance(choices, (list, tuple)):
            logger.error("upstream_malformed", model=model, response_type=type(response).__name__)
            raise UpstreamFailure("Completion provider returned a malformed reply", repr(response)[:200])
        if not choices:
            return PLACEHOLDER_REPLY
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if content is None:
            return PLACEHOLDER_REPLY
        if not isinstance(content, str):
            raise UpstreamFailure("Completion provider returned a malformed reply", repr(content))
        return content or PLACEHOLDER_REPLY
