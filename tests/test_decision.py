from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import text
from nut_chat.decision import (
    DecisionError,
    SimulationDecisionClient,
    build_classifier_prompt,
    interpret_decision,
    parse_analyze_verdict,
)

URL = "http://decider.test/api/use-simulation"


def _client_for(handler) -> SimulationDecisionClient:
    transport = httpx.MockTransport(handler)
    return SimulationDecisionClient(URL, client=httpx.AsyncClient(transport=transport))


def _decide(client: SimulationDecisionClient, history=(), pending="fix the login bug") -> bool:
    return asyncio.run(client.decide(list(history), pending))


def _json_reply(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)
    return handler


@pytest.mark.parametrize(
    "body, expected",
    [
        ({"useSimulation": True}, True),
        ({"useSimulation": False}, False),
        ({}, False),
        ({"somethingElse": True}, False),
    ],
)
def test_decide_maps_response_shapes(body, expected):
    assert _decide(_client_for(_json_reply(body))) is expected


def test_decide_posts_history_and_pending_input():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"useSimulation": True})

    history = [text("u1", role="user", content="hi"), text("a1", content="hey", repository_id="r1")]
    assert _decide(_client_for(handler), history, "the button is broken") is True

    assert seen["method"] == "POST"
    assert seen["url"] == URL
    assert seen["body"]["messageInput"] == "the button is broken"
    assert seen["body"]["messages"][1] == {
        "id": "a1",
        "role": "assistant",
        "repositoryId": "r1",
        "type": "text",
        "content": "hey",
    }


def test_malformed_body_fails_instead_of_returning_false():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(DecisionError):
        _decide(_client_for(handler))


def test_non_object_json_fails():
    with pytest.raises(DecisionError):
        _decide(_client_for(_json_reply([True])))


def test_http_error_status_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"useSimulation": True})

    with pytest.raises(DecisionError):
        _decide(_client_for(handler))


def test_transport_error_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(DecisionError) as exc:
        _decide(_client_for(handler))
    assert isinstance(exc.value.__cause__, httpx.ConnectError)


def test_truthiness_is_loose_by_default_and_strict_on_request():
    assert interpret_decision({"useSimulation": "yes"}) is True
    assert interpret_decision({"useSimulation": 1}) is True
    assert interpret_decision({"useSimulation": 0}) is False
    assert interpret_decision({"useSimulation": "yes"}, strict=True) is False
    assert interpret_decision({"useSimulation": True}, strict=True) is True


def test_from_config_reads_simulation_section():
    cfg = {"simulation": {"decision_url": URL, "strict_boolean": True, "timeout": 5}}
    client = SimulationDecisionClient.from_config(cfg)
    assert client.url == URL
    assert client.strict is True
    assert client.timeout == 5.0


def test_analyze_verdict_parsing():
    assert parse_analyze_verdict("reasoning...\n<analyze>true</analyze>") is True
    assert parse_analyze_verdict("<analyze>false</analyze>") is False
    assert parse_analyze_verdict("<analyze>maybe</analyze>") is False
    assert parse_analyze_verdict("no tag at all") is False


def test_classifier_prompt_wraps_user_message():
    prompt = build_classifier_prompt("clicking save does nothing")
    assert "<user_message>clicking save does nothing</user_message>" in prompt
    assert "<analyze>true</analyze>" in prompt
