"""
Completion Client Module

Wraps a hosted language model behind a single `complete(prompt) -> text`
operation. Speaks the OpenAI-compatible chat-completions protocol through the
async OpenAI SDK, which by default is pointed at Google's Gemini endpoint.
All SDK failures are mapped onto CompletionError with an ErrorKind.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Any
from dataclasses import dataclass
from datetime import datetime
import openai
from openai import AsyncOpenAI

from relaybot.config import Settings, GEMINI_OPENAI_BASE_URL
from relaybot.infra.retry import ErrorKind


logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Raised when a completion cannot be produced."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind

    def __str__(self) -> str:
        return f"[{self.kind.value}] {super().__str__()}"


@dataclass
class LLMConfig:
    """Configuration for completion requests."""
    model: str = "gemini-2.0-flash"
    base_url: str = GEMINI_OPENAI_BASE_URL
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMConfig":
        return cls(
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            system_prompt=settings.llm_system_prompt,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout_seconds,
        )


def map_sdk_error(error: Exception) -> CompletionError:
    """Translate an OpenAI SDK exception into a CompletionError."""
    if isinstance(error, CompletionError):
        return error
    if isinstance(error, (openai.APITimeoutError, asyncio.TimeoutError)):
        return CompletionError(ErrorKind.TIMEOUT, f"Request timed out: {error}")
    if isinstance(error, openai.APIConnectionError):
        return CompletionError(ErrorKind.NETWORK, f"Connection failed: {error}")
    if isinstance(error, openai.RateLimitError):
        code = getattr(error, "code", None)
        if code == "insufficient_quota" or "quota" in str(error).lower():
            return CompletionError(ErrorKind.QUOTA, f"Quota exhausted: {error}")
        return CompletionError(ErrorKind.RATE_LIMIT, f"Rate limited: {error}")
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return CompletionError(ErrorKind.AUTHENTICATION, f"Authentication failed: {error}")
    if isinstance(error, openai.InternalServerError):
        return CompletionError(ErrorKind.SERVER_ERROR, f"Server error: {error}")
    if isinstance(error, openai.APIStatusError):
        return CompletionError(ErrorKind.UNKNOWN, f"API error {error.status_code}: {error}")
    return CompletionError(ErrorKind.UNKNOWN, f"{type(error).__name__}: {error}")


class CompletionClient:
    """
    Async client producing text completions for a single prompt.

    Network retries inside the SDK are disabled; retry policy belongs to the
    caller (see relaybot.infra.retry).
    """

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None,
                 config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig.from_settings(settings)
        self.client = client or AsyncOpenAI(
            api_key=settings.llm_api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            max_retries=0,
        )

        # Statistics tracking
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_tokens_used': 0,
            'average_response_time': 0.0,
            'errors_by_kind': {},
            'last_request_time': None
        }

    async def complete(self, prompt: str, system: Optional[str] = None,
                       model: Optional[str] = None) -> str:
        """
        Generate a completion for the prompt.

        Args:
            prompt: User prompt text
            system: Optional system instruction (defaults to the configured one)
            model: Optional model identifier (defaults to the configured one)

        Returns:
            The generated text

        Raises:
            CompletionError: on timeout, network, quota, auth or malformed response
        """
        start_time = datetime.now()
        model = model or self.config.model
        system = system if system is not None else self.config.system_prompt

        try:
            response = await asyncio.wait_for(
                self._make_chat_completion(prompt, system, model),
                timeout=self.config.timeout
            )
            text = self._extract_text(response)
        except CompletionError as e:
            self._update_stats(False, (datetime.now() - start_time).total_seconds(), error=e)
            raise
        except Exception as e:
            error = map_sdk_error(e)
            self._update_stats(False, (datetime.now() - start_time).total_seconds(), error=error)
            raise error from e

        processing_time = (datetime.now() - start_time).total_seconds()
        self._update_stats(True, processing_time, response=response)
        logger.debug(f"✅ Completion from {model} in {processing_time:.2f}s ({len(text)} chars)")
        return text

    async def _make_chat_completion(self, prompt: str, system: Optional[str], model: str):
        """Make a chat completion request."""
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs: Dict[str, Any] = {"model": model, "messages": messages}
        if self.config.max_tokens:
            kwargs["max_tokens"] = self.config.max_tokens

        return await self.client.chat.completions.create(**kwargs)

    def _extract_text(self, response) -> str:
        """Pull the generated text out of a chat completion response."""
        try:
            choices = response.choices
            content = choices[0].message.content if choices else None
        except (AttributeError, IndexError, TypeError) as e:
            raise CompletionError(ErrorKind.MALFORMED, f"Invalid response format: {e}")

        if not isinstance(content, str) or not content.strip():
            raise CompletionError(ErrorKind.MALFORMED, "Response contained no text")

        return content

    def _update_stats(self, success: bool, response_time: float, response=None,
                      error: Optional[CompletionError] = None):
        """Update client statistics."""
        self.stats['total_requests'] += 1
        self.stats['last_request_time'] = datetime.now().isoformat()

        if success:
            self.stats['successful_requests'] += 1
            total_successful = self.stats['successful_requests']
            current_avg = self.stats['average_response_time']
            self.stats['average_response_time'] = (
                (current_avg * (total_successful - 1) + response_time) / total_successful
            )
            usage = getattr(response, 'usage', None)
            total_tokens = getattr(usage, 'total_tokens', None)
            if isinstance(total_tokens, int):
                self.stats['total_tokens_used'] += total_tokens
        else:
            self.stats['failed_requests'] += 1
            if error is not None:
                kind = error.kind.value
                self.stats['errors_by_kind'][kind] = self.stats['errors_by_kind'].get(kind, 0) + 1

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics."""
        stats = self.stats.copy()
        stats['errors_by_kind'] = dict(self.stats['errors_by_kind'])
        stats['model'] = self.config.model
        return stats

    async def close(self):
        """Release the underlying HTTP client."""
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
