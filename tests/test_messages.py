from __future__ import annotations

import pydantic
import pytest

from conftest import text
from nut_chat.messages import (
    ImageMessage,
    PlaywrightTestStatus,
    TextMessage,
    create_messages_for_repository,
    get_messages_repository_id,
    get_previous_repository_id,
    parse_message,
    parse_messages,
    parse_test_results_message,
    to_wire,
)


def test_wire_dicts_parse_into_the_tagged_union():
    msgs = parse_messages(
        [
            {"id": "u1", "role": "user", "type": "text", "content": "hi"},
            {"id": "i1", "role": "user", "type": "image", "dataURL": "data:image/png;base64,AA"},
            {"id": "a1", "role": "assistant", "type": "text", "content": "ok", "repositoryId": "r1"},
        ]
    )
    assert isinstance(msgs[0], TextMessage)
    assert isinstance(msgs[1], ImageMessage)
    assert msgs[1].content == {"dataURL": "data:image/png;base64,AA"}
    assert msgs[2].repository_id == "r1"
    assert msgs[2].is_checkpoint


def test_unknown_type_or_role_is_rejected():
    with pytest.raises(pydantic.ValidationError):
        parse_message({"id": "x", "role": "user", "type": "video"})
    with pytest.raises(pydantic.ValidationError):
        parse_message({"id": "x", "role": "robot", "type": "text", "content": ""})


def test_messages_are_immutable():
    m = text("a1", content="x")
    with pytest.raises(pydantic.ValidationError):
        m.content = "y"


def test_to_wire_uses_camel_case_and_drops_unset_fields():
    m = text("a1", content="x", repository_id="r1")
    assert to_wire(m) == {"id": "a1", "role": "assistant", "repositoryId": "r1", "type": "text", "content": "x"}


def test_repository_id_helpers():
    msgs = [
        text("u1", role="user"),
        text("a1", repository_id="r1"),
        text("u2", role="user"),
        text("a2", repository_id="r2"),
    ]
    assert get_previous_repository_id(msgs, 0) is None
    assert get_previous_repository_id(msgs, 3) == "r1"
    assert get_messages_repository_id(msgs) == "r2"
    assert get_messages_repository_id([]) is None


def test_create_messages_for_repository():
    user, files = create_messages_for_repository("Todo", "repo-9")
    assert user.role == "user" and user.content == 'Copy the "Todo" chat'
    assert files.role == "assistant" and files.repository_id == "repo-9"
    assert files.content == 'I\'ve copied the "Todo" chat.'
    assert user.id != files.id


def test_parse_test_results_message():
    contents = "\n".join(
        [
            "Running tests",
            "TestResult Pass rec-1 adds a todo",
            "TestResult Fail NoRecording deletes a todo",
            "TestResult Bogus rec-2 ignored",
        ]
    )
    results = parse_test_results_message(contents)
    assert [(r.status, r.recording_id, r.title) for r in results] == [
        (PlaywrightTestStatus.PASS, "rec-1", "adds a todo"),
        (PlaywrightTestStatus.FAIL, None, "deletes a todo"),
    ]
