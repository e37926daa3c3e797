import json

import httpx
import pytest

from quota_rotator import (
    ChatClient,
    ChatOptions,
    ClientSettings,
    ConfigurationError,
    EmptyResponseError,
    ExhaustedError,
    ExternalServiceError,
    InMemoryStore,
    is_retryable_later,
)

from conftest import OK_PAYLOAD, FakeProvider, sse_response

MESSAGES = [
    {"role": "system", "content": "You are a nutrition coach."},
    {"role": "user", "content": "How much protein is in an egg?"},
]


def make_client(behaviour=None, credentials=("sk-or-aaaa", "sk-or-bbbb"), **settings):
    provider = FakeProvider(behaviour or {})
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider))
    client = ChatClient.from_settings(
        ClientSettings(credentials=list(credentials), **settings),
        store=InMemoryStore(),
        http_client=http_client,
    )
    return client, provider


@pytest.mark.asyncio
async def test_complete_returns_first_choice_text() -> None:
    client, provider = make_client()

    text = await client.complete(MESSAGES)

    assert text == "Hello world!"
    body = json.loads(provider.seen[0].content)
    assert body == {
        "model": "meta-llama/llama-3.2-3b-instruct:free",
        "messages": MESSAGES,
        "temperature": 0.7,
        "max_tokens": 1000,
        "stream": False,
    }


@pytest.mark.asyncio
async def test_options_override_defaults_including_zero_temperature() -> None:
    client, provider = make_client()

    await client.complete(
        MESSAGES, ChatOptions(temperature=0.0, max_tokens=64, model="openai/gpt-4o-mini")
    )

    body = json.loads(provider.seen[0].content)
    assert body["temperature"] == 0.0
    assert body["max_tokens"] == 64
    assert body["model"] == "openai/gpt-4o-mini"


@pytest.mark.asyncio
async def test_complete_rotates_transparently() -> None:
    client, provider = make_client({"sk-or-aaaa": 429})

    assert await client.complete(MESSAGES) == "Hello world!"
    assert provider.tokens == ["sk-or-aaaa", "sk-or-bbbb"]

    summary = await client.usage_summary()
    assert summary["active_index"] == 1
    assert summary["active_credential"] == "...bbbb"
    assert summary["call_count"] == 1
    assert summary["failed_indices"] == [0]
    assert summary["pool_size"] == 2


@pytest.mark.asyncio
async def test_empty_choices_raise_empty_response_error() -> None:
    def no_choices(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "x", "choices": []})

    client, _ = make_client({"sk-or-aaaa": no_choices})

    with pytest.raises(EmptyResponseError) as excinfo:
        await client.complete(MESSAGES)
    assert is_retryable_later(excinfo.value)


@pytest.mark.asyncio
async def test_malformed_body_is_an_external_service_error() -> None:
    def not_json(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>gateway</html>")

    client, _ = make_client({"sk-or-aaaa": not_json})

    with pytest.raises(ExternalServiceError):
        await client.complete(MESSAGES)


@pytest.mark.asyncio
async def test_null_content_becomes_empty_string() -> None:
    def null_content(request: httpx.Request) -> httpx.Response:
        payload = json.loads(json.dumps(OK_PAYLOAD))
        payload["choices"][0]["message"]["content"] = None
        return httpx.Response(200, json=payload)

    client, _ = make_client({"sk-or-aaaa": null_content})

    assert await client.complete(MESSAGES) == ""


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "choices",
    [
        [{"message": "hello"}],
        [{"message": {"role": "assistant", "content": [{"type": "text", "text": "hi"}]}}],
        ["hello"],
    ],
    ids=["message-not-object", "content-not-string", "choice-not-object"],
)
async def test_malformed_choice_is_an_external_service_error(choices) -> None:
    def odd_choice(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "x", "choices": choices})

    client, _ = make_client({"sk-or-aaaa": odd_choice})

    with pytest.raises(ExternalServiceError) as excinfo:
        await client.complete(MESSAGES)
    assert not isinstance(excinfo.value, EmptyResponseError)
    assert excinfo.value.status_code == 200


@pytest.mark.asyncio
async def test_complete_streaming_hands_back_the_live_response() -> None:
    client, provider = make_client({"sk-or-aaaa": lambda request: sse_response()})

    response = await client.complete_streaming(MESSAGES)
    try:
        assert response.is_stream_consumed is False
        lines = [line async for line in response.aiter_lines() if line]
    finally:
        await response.aclose()

    assert lines[-1] == "data: [DONE]"
    assert json.loads(provider.seen[0].content)["stream"] is True


@pytest.mark.asyncio
async def test_exhaustion_is_retryable_later() -> None:
    client, _ = make_client({"sk-or-aaaa": 401, "sk-or-bbbb": 429})

    with pytest.raises(ExhaustedError) as excinfo:
        await client.complete(MESSAGES)
    assert is_retryable_later(excinfo.value)


def test_from_env_without_credentials_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        ChatClient.from_env({"OPENROUTER_API_KEY_1": "your_openrouter_key_1"})
    assert not is_retryable_later(excinfo.value)


@pytest.mark.asyncio
async def test_from_env_configures_failure_log(tmp_path) -> None:
    provider = FakeProvider({"sk-or-aaaa": 401})
    env = {
        "OPENROUTER_API_KEY_1": "sk-or-aaaa",
        "OPENROUTER_API_KEY_2": "sk-or-bbbb",
        "QUOTA_ROTATOR_LOGS_DIR": str(tmp_path / "logs"),
        "QUOTA_ROTATOR_STATE_FILE": str(tmp_path / "usage.json"),
    }

    async with ChatClient.from_env(
        env, http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider))
    ) as client:
        await client.complete(MESSAGES)

    assert (tmp_path / "usage.json").exists()
    log_lines = (tmp_path / "logs" / "failures.log").read_text().splitlines()
    record = json.loads(log_lines[-1])
    assert record["credential_ending"] == "...aaaa"
    assert record["status_code"] == 401
    assert "sk-or-aaaa" not in log_lines[-1]
