"""Ordered message timeline for one conversation.

Streamed assistant output arrives as repeated messages sharing an id; those
are folded into the tail entry. Everything else is appended. Writers go
through :class:`MessageTimeline`, which serialises mutations and carries a
version counter for compare-and-swap style updates.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from .messages import MessageBase, TextMessage


class TypeMismatch(TypeError):
    """Raised when a chunk shares the tail's id but either side is not text."""


class StaleTimelineError(RuntimeError):
    """Raised when a write was prepared against an older timeline version."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"timeline version is {actual}, write expected {expected}")
        self.expected = expected
        self.actual = actual


def merge_or_append(incoming: MessageBase, timeline: Sequence[MessageBase]) -> List[MessageBase]:
    """Return a new timeline with ``incoming`` merged into the tail or appended.

    When the tail has the same id as ``incoming`` both must be text messages;
    the merged entry keeps the incoming message's fields with the two contents
    concatenated in arrival order. The input sequence is never modified.
    """
    out = list(timeline)
    if out and out[-1].id == incoming.id:
        last = out[-1]
        if not isinstance(last, TextMessage):
            raise TypeMismatch(f"last message {last.id!r} must be a text message")
        if not isinstance(incoming, TextMessage):
            raise TypeMismatch(f"message {incoming.id!r} must be a text message")
        out[-1] = incoming.model_copy(update={"content": last.content + incoming.content})
    else:
        out.append(incoming)
    return out


class MessageTimeline:
    """Single-writer owner of a conversation's messages.

    Every mutation takes the lock, bumps :attr:`version` and may pass
    ``expected_version``; a mismatch raises :class:`StaleTimelineError`
    without touching the messages.
    """

    def __init__(self, messages: Optional[Iterable[MessageBase]] = None) -> None:
        self._messages: List[MessageBase] = list(messages or [])
        self._version = 0
        self._lock = threading.RLock()

    # --------- reads ----------
    @property
    def version(self) -> int:
        return self._version

    def snapshot(self) -> Tuple[Tuple[MessageBase, ...], int]:
        with self._lock:
            return tuple(self._messages), self._version

    @property
    def messages(self) -> Tuple[MessageBase, ...]:
        return self.snapshot()[0]

    def find(self, message_id: str) -> Optional[MessageBase]:
        with self._lock:
            for m in self._messages:
                if m.id == message_id:
                    return m
        return None

    def __len__(self) -> int:
        return len(self._messages)

    # --------- writes ----------
    @contextmanager
    def writing(self) -> Iterator[None]:
        """Hold the write lock across several reads and writes."""
        with self._lock:
            yield

    def merge_or_append(self, incoming: MessageBase, *, expected_version: Optional[int] = None) -> int:
        with self._lock:
            self._check(expected_version)
            self._commit(merge_or_append(incoming, self._messages))
            return self._version

    def truncate_after(self, index: int, *, expected_version: Optional[int] = None) -> List[MessageBase]:
        """Keep entries ``[0, index]`` and return the removed tail."""
        with self._lock:
            self._check(expected_version)
            if index < -1 or index >= len(self._messages):
                raise IndexError(f"truncation index {index} out of range")
            removed = self._messages[index + 1:]
            self._commit(self._messages[: index + 1])
            return removed

    def replace_all(self, messages: Iterable[MessageBase], *, expected_version: Optional[int] = None) -> int:
        with self._lock:
            self._check(expected_version)
            self._commit(list(messages))
            return self._version

    def mark_approved(self, message_id: str, *, expected_version: Optional[int] = None) -> bool:
        with self._lock:
            self._check(expected_version)
            updated = [
                m.model_copy(update={"approved": True}) if m.id == message_id else m
                for m in self._messages
            ]
            if updated == self._messages:
                return False
            self._commit(updated)
            return True

    # --------- internals ----------
    def _check(self, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != self._version:
            raise StaleTimelineError(expected_version, self._version)

    def _commit(self, messages: List[MessageBase]) -> None:
        self._messages = messages
        self._version += 1
