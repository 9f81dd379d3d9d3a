from __future__ import annotations

import json

import httpx
import pytest

from nut_chat.llm import AnthropicModel, ClassifierError, GenerationConfig, create_from_config


def test_generate_posts_messages_request_and_joins_text_blocks():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["x-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "content": [
                    {"type": "text", "text": "Looks like a bug. "},
                    {"type": "tool_use", "id": "t1"},
                    {"type": "text", "text": "<analyze>true</analyze>"},
                ],
                "usage": {"input_tokens": 10, "output_tokens": 5},
            },
        )

    model = AnthropicModel(
        "sk-test",
        base_url="http://anthropic.test/",
        gen_cfg=GenerationConfig(model="claude-test", max_tokens=32),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    out = model.generate("is this a bug?")

    assert out == "Looks like a bug. <analyze>true</analyze>"
    assert seen["url"] == "http://anthropic.test/v1/messages"
    assert seen["key"] == "sk-test"
    assert seen["body"]["model"] == "claude-test"
    assert seen["body"]["max_tokens"] == 32
    assert seen["body"]["messages"] == [{"role": "user", "content": "is this a bug?"}]


def test_generate_wraps_http_errors():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(401)))
    model = AnthropicModel("sk-test", client=client)
    with pytest.raises(ClassifierError):
        model.generate("x")


def test_missing_api_key_is_rejected():
    with pytest.raises(ValueError):
        AnthropicModel("")


def test_create_from_config(clean_env, monkeypatch):
    assert create_from_config({"classifier": {}}) is None
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
    model = create_from_config({"classifier": {"model": "claude-x", "max_tokens": 8}})
    assert isinstance(model, AnthropicModel)
