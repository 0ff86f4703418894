"""
Completion client tests

The OpenAI SDK client is replaced with a mock; only the request shape, text
extraction and error mapping are exercised.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import httpx
import openai
import pytest

from relaybot.config import GEMINI_OPENAI_BASE_URL, Settings
from relaybot.infra.retry import ErrorKind
from relaybot.llm.client import CompletionClient, CompletionError, LLMConfig, map_sdk_error

REQUEST = httpx.Request("POST", GEMINI_OPENAI_BASE_URL + "chat/completions")


def make_response(content, total_tokens=12):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=total_tokens),
    )


def make_client(create, config=None):
    sdk = Mock()
    sdk.chat.completions.create = create
    sdk.close = AsyncMock()
    settings = Settings(llm_api_key="test_key", _env_file=None)
    return CompletionClient(settings, client=sdk, config=config), sdk


def status_error(cls, status_code, body=None, message="error"):
    return cls(message, response=httpx.Response(status_code, request=REQUEST), body=body)


@pytest.mark.asyncio
async def test_complete_returns_message_text():
    create = AsyncMock(return_value=make_response("4"))
    client, _ = make_client(create)

    assert await client.complete("what is 2+2?") == "4"

    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "gemini-2.0-flash"
    assert kwargs["messages"] == [{"role": "user", "content": "what is 2+2?"}]

    stats = client.get_stats()
    assert stats["successful_requests"] == 1
    assert stats["total_tokens_used"] == 12
    assert stats["model"] == "gemini-2.0-flash"


@pytest.mark.asyncio
async def test_system_prompt_is_sent_first():
    create = AsyncMock(return_value=make_response("ok"))
    client, _ = make_client(create)

    await client.complete("hi", system="Be brief.", model="gemini-1.5-pro")

    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "gemini-1.5-pro"
    assert kwargs["messages"][0] == {"role": "system", "content": "Be brief."}


@pytest.mark.asyncio
async def test_timeout_maps_to_timeout_kind():
    async def never_returns(**kwargs):
        await asyncio.sleep(10)

    client, _ = make_client(never_returns, config=LLMConfig(timeout=0.01))

    with pytest.raises(CompletionError) as exc_info:
        await client.complete("hi")

    assert exc_info.value.kind == ErrorKind.TIMEOUT
    assert client.get_stats()["errors_by_kind"] == {"timeout": 1}


@pytest.mark.asyncio
async def test_connection_error_maps_to_network_kind():
    create = AsyncMock(side_effect=openai.APIConnectionError(request=REQUEST))
    client, _ = make_client(create)

    with pytest.raises(CompletionError) as exc_info:
        await client.complete("hi")

    assert exc_info.value.kind == ErrorKind.NETWORK
    assert isinstance(exc_info.value.__cause__, openai.APIConnectionError)


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [None, "", "   "])
async def test_empty_content_is_malformed(content):
    client, _ = make_client(AsyncMock(return_value=make_response(content)))

    with pytest.raises(CompletionError) as exc_info:
        await client.complete("hi")

    assert exc_info.value.kind == ErrorKind.MALFORMED
    assert client.get_stats()["failed_requests"] == 1


@pytest.mark.asyncio
async def test_missing_choices_is_malformed():
    client, _ = make_client(AsyncMock(return_value=SimpleNamespace(choices=[])))

    with pytest.raises(CompletionError) as exc_info:
        await client.complete("hi")

    assert exc_info.value.kind == ErrorKind.MALFORMED


def test_map_sdk_error_kinds():
    cases = [
        (openai.APITimeoutError(request=REQUEST), ErrorKind.TIMEOUT),
        (status_error(openai.RateLimitError, 429), ErrorKind.RATE_LIMIT),
        (status_error(openai.RateLimitError, 429, body={"code": "insufficient_quota"}), ErrorKind.QUOTA),
        (status_error(openai.AuthenticationError, 401), ErrorKind.AUTHENTICATION),
        (status_error(openai.PermissionDeniedError, 403), ErrorKind.AUTHENTICATION),
        (status_error(openai.InternalServerError, 500), ErrorKind.SERVER_ERROR),
        (status_error(openai.BadRequestError, 400), ErrorKind.UNKNOWN),
        (RuntimeError("odd"), ErrorKind.UNKNOWN),
    ]

    for error, expected in cases:
        assert map_sdk_error(error).kind == expected, type(error).__name__


def test_completion_error_str_includes_kind():
    assert str(CompletionError(ErrorKind.QUOTA, "out of credit")) == "[quota] out of credit"


@pytest.mark.asyncio
async def test_close_closes_sdk_client():
    client, sdk = make_client(AsyncMock())

    await client.close()

    sdk.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_max_tokens_setting_caps_completion_length():
    settings = Settings(llm_api_key="test_key", llm_max_tokens=256, _env_file=None)
    create = AsyncMock(return_value=make_response("ok"))
    client, _ = make_client(create, config=LLMConfig.from_settings(settings))

    await client.complete("hi")

    assert create.await_args.kwargs["max_tokens"] == 256


@pytest.mark.asyncio
async def test_max_tokens_omitted_by_default():
    create = AsyncMock(return_value=make_response("ok"))
    client, _ = make_client(create)

    await client.complete("hi")

    assert "max_tokens" not in create.await_args.kwargs
