"""Locate the point to roll a conversation back to after a rejected change."""
from __future__ import annotations

import logging
from typing import Sequence

from .messages import MessageBase

logger = logging.getLogger(__name__)

REWIND_NOT_FOUND = -1


def resolve_rewind_index(timeline: Sequence[MessageBase], rejected_id: str) -> int:
    """Return the index of the last entry to keep when ``rejected_id`` is rejected.

    Scanning from the tail, the first user message or the first checkpoint
    other than the rejected message wins. Returns :data:`REWIND_NOT_FOUND`
    when neither exists; callers treat that as nothing to roll back.
    """
    for i in range(len(timeline) - 1, -1, -1):
        message = timeline[i]
        if message.role == "user":
            return i
        if message.repository_id and message.id != rejected_id:
            return i

    logger.error(
        "No rewind message found for %r in timeline %s",
        rejected_id,
        [(m.id, m.role, m.repository_id) for m in timeline],
    )
    return REWIND_NOT_FOUND
