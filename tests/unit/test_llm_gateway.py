from unittest.mock import AsyncMock

import httpx
import pytest
from pydantic import BaseModel

from config.llm import LlmRoute
from llm_gateway import LlmGatewayError, chat, strip_code_fences


class Verdict(BaseModel):
    passed: bool
    reasoning: str


ROUTE = LlmRoute(
    name="eval",
    base_url="http://llm.local",
    endpoint="/v1/chat/completions",
    model="judge",
    timeout_s=5,
    max_retries=1,
    api_key_env="EXAM_TEST_LLM_KEY",
)


def _reply(content: str, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json={"choices": [{"message": {"content": content}}]})


@pytest.mark.asyncio
async def test_chat_validates_schema(monkeypatch):
    monkeypatch.setenv("EXAM_TEST_LLM_KEY", "secret")
    client = AsyncMock()
    client.post.return_value = _reply('{"passed": true, "reasoning": "ok"}')

    result = await chat([{"role": "user", "content": "judge this"}], Verdict, cfg=ROUTE, client=client)

    assert result == Verdict(passed=True, reasoning="ok")
    headers = client.post.await_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer secret"
    system = client.post.await_args.kwargs["json"]["messages"][0]
    assert system["role"] == "system" and "schema" in system["content"]


@pytest.mark.asyncio
async def test_chat_retries_with_repair_hint():
    client = AsyncMock()
    client.post.side_effect = [_reply("not json at all"), _reply('{"passed": false, "reasoning": "vague"}')]

    result = await chat([{"role": "user", "content": "judge this"}], Verdict, cfg=ROUTE, client=client)

    assert result.passed is False
    assert client.post.await_count == 2
    retry_messages = client.post.await_args_list[1].kwargs["json"]["messages"]
    assert "failed validation" in retry_messages[-1]["content"]


@pytest.mark.asyncio
async def test_chat_gives_up_after_retries():
    client = AsyncMock()
    client.post.return_value = _reply('{"passed": "maybe"}')

    with pytest.raises(LlmGatewayError):
        await chat([{"role": "user", "content": "judge"}], Verdict, cfg=ROUTE, client=client)
    assert client.post.await_count == ROUTE.max_retries + 1


@pytest.mark.asyncio
async def test_error_status_raises():
    client = AsyncMock()
    client.post.return_value = httpx.Response(500, text="boom")

    with pytest.raises(LlmGatewayError):
        await chat([{"role": "user", "content": "judge"}], Verdict, cfg=ROUTE, client=client)


@pytest.mark.asyncio
async def test_transport_error_raises():
    client = AsyncMock()
    client.post.side_effect = httpx.ConnectError("refused")

    with pytest.raises(LlmGatewayError):
        await chat([{"role": "user", "content": "judge"}], Verdict, cfg=ROUTE, client=client)


@pytest.mark.asyncio
async def test_missing_content_raises():
    client = AsyncMock()
    client.post.return_value = httpx.Response(200, json={"choices": []})

    with pytest.raises(LlmGatewayError):
        await chat([{"role": "user", "content": "judge"}], Verdict, cfg=ROUTE, client=client)


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'
    assert strip_code_fences("```\n\n[]\n\n```") == "[]"
