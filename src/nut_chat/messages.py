"""Chat message model shared by the timeline, rewind and decision code.

Messages are a tagged union on ``type``: ``text`` messages carry a string
``content``, ``image`` messages carry a ``dataURL``. Field names are camelCase
on the wire and snake_case in Python.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

Role = Literal["user", "assistant", "system"]


# -----------------------------
# Message union
# -----------------------------
class MessageBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1)
    role: Role
    # Present on checkpoints: messages tied to a snapshot of generated code.
    repository_id: Optional[str] = Field(default=None, alias="repositoryId")
    peanuts: Optional[int] = None
    category: Optional[str] = None
    # Set once the user has accepted the change carried by this message.
    approved: Optional[bool] = None

    @property
    def is_checkpoint(self) -> bool:
        return bool(self.repository_id)


class TextMessage(MessageBase):
    type: Literal["text"] = "text"
    content: str = ""


class ImageMessage(MessageBase):
    type: Literal["image"] = "image"
    data_url: str = Field(..., alias="dataURL")

    @property
    def content(self) -> Dict[str, str]:
        return {"dataURL": self.data_url}


Message = Annotated[Union[TextMessage, ImageMessage], Field(discriminator="type")]

_message_adapter: TypeAdapter = TypeAdapter(Message)
_message_list_adapter: TypeAdapter = TypeAdapter(List[Message])


def parse_message(data: Any) -> Union[TextMessage, ImageMessage]:
    """Validate a wire dict (or model) into a concrete message."""
    return _message_adapter.validate_python(data)


def parse_messages(data: Any) -> List[Union[TextMessage, ImageMessage]]:
    return _message_list_adapter.validate_python(data)


def to_wire(message: MessageBase) -> Dict[str, Any]:
    """Dump a message with camelCase keys and unset optionals dropped."""
    return message.model_dump(by_alias=True, exclude_none=True)


def generate_id() -> str:
    return uuid.uuid4().hex[:16]


# -----------------------------
# Repository checkpoints
# -----------------------------
def get_previous_repository_id(messages: Sequence[MessageBase], index: int) -> Optional[str]:
    """Return the repositoryId in effect before the message at ``index``."""
    for i in range(min(index, len(messages)) - 1, -1, -1):
        if messages[i].repository_id:
            return messages[i].repository_id
    return None


def get_messages_repository_id(messages: Sequence[MessageBase]) -> Optional[str]:
    """Return the repositoryId in effect after applying all ``messages``."""
    return get_previous_repository_id(messages, len(messages))


def create_messages_for_repository(title: str, repository_id: str) -> List[TextMessage]:
    """Seed a new chat that starts from an existing repository snapshot."""
    user_message = TextMessage(
        id=generate_id(),
        role="user",
        content=f'Copy the "{title}" chat',
    )
    files_message = TextMessage(
        id=generate_id(),
        role="assistant",
        content=f'I\'ve copied the "{title}" chat.',
        repository_id=repository_id,
    )
    return [user_message, files_message]


# -----------------------------
# Test result messages
# -----------------------------
class PlaywrightTestStatus(str, Enum):
    PASS = "Pass"
    FAIL = "Fail"
    NOT_RUN = "NotRun"


@dataclass(frozen=True)
class PlaywrightTestResult:
    title: str
    status: PlaywrightTestStatus
    recording_id: Optional[str] = None


_TEST_RESULT_RE = re.compile(r"TestResult (.*?) (.*?) (.*)")


def parse_test_results_message(contents: str) -> List[PlaywrightTestResult]:
    """Parse ``TestResult <status> <recordingId> <title>`` lines.

    Lines that do not match, or carry an unknown status, are skipped.
    """
    results: List[PlaywrightTestResult] = []
    for line in contents.split("\n"):
        match = _TEST_RESULT_RE.search(line)
        if not match:
            continue
        status, recording_id, title = match.groups()
        try:
            parsed_status = PlaywrightTestStatus(status)
        except ValueError:
            continue
        results.append(
            PlaywrightTestResult(
                title=title,
                status=parsed_status,
                recording_id=None if recording_id == "NoRecording" else recording_id,
            )
        )
    return results
