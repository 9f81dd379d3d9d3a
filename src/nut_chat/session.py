"""Per-conversation state: timeline, simulation session and rewind handling."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .decision import DecisionError, SimulationDecisionClient
from .messages import MessageBase, get_messages_repository_id, get_previous_repository_id
from .rewind import REWIND_NOT_FOUND, resolve_rewind_index
from .simulation import SimulationData, SimulationSession
from .telemetry import SimulationTelemetryCollector
from .timeline import MessageTimeline

logger = logging.getLogger(__name__)


@dataclass
class RewindResult:
    """Outcome of rolling back after a rejected change."""

    index: int
    removed: List[MessageBase] = field(default_factory=list)
    repository_id: Optional[str] = None
    refunded_peanuts: int = 0


class ConversationSession:
    """Everything one chat owns.

    The simulation session follows the newest checkpoint in the timeline;
    ``simulation_upstream`` receives packets bound for the backend.
    """

    def __init__(
        self,
        chat_id: str,
        messages: Optional[Iterable[MessageBase]] = None,
        *,
        simulation_upstream: Optional[Callable[[SimulationData], Any]] = None,
    ) -> None:
        self.chat_id = chat_id
        self.timeline = MessageTimeline(messages)
        self.simulation: Optional[SimulationSession] = None
        self.last_user_simulation_data: Optional[SimulationData] = None
        self._simulation_upstream = simulation_upstream

    @property
    def last_messages(self) -> Tuple[MessageBase, ...]:
        return self.timeline.messages

    # --------- streaming ----------
    def add_response_message(self, message: MessageBase, *, expected_version: Optional[int] = None) -> int:
        """Merge a streamed chunk; restart the simulation on a new checkpoint."""
        with self.timeline.writing():
            before = get_messages_repository_id(self.timeline.messages)
            version = self.timeline.merge_or_append(message, expected_version=expected_version)
            after = get_messages_repository_id(self.timeline.messages)
        if after and after != before:
            self.simulation_repository_updated(after)
        return version

    # --------- approve / reject ----------
    def approve_change(self, message_id: str) -> bool:
        return self.timeline.mark_approved(message_id)

    def reject_change(self, message_id: str) -> Optional[RewindResult]:
        """Roll the timeline back past ``message_id``.

        Returns ``None`` when there is nothing to roll back to or the message
        is unknown; the timeline is then left as it was.
        """
        messages, version = self.timeline.snapshot()
        index = resolve_rewind_index(messages, message_id)
        if index == REWIND_NOT_FOUND:
            return None

        rejected = next((m for m in messages if m.id == message_id), None)
        if rejected is None:
            logger.warning("chat %s: rejected message %s not found", self.chat_id, message_id)
            return None

        repository_id = get_previous_repository_id(messages, index + 1)
        removed = self.timeline.truncate_after(index, expected_version=version)
        self.simulation_repository_updated(repository_id)

        logger.info(
            "chat %s: rejected %s, rewound to index %d (%d removed)",
            self.chat_id,
            message_id,
            index,
            len(removed),
        )
        return RewindResult(
            index=index,
            removed=removed,
            repository_id=repository_id,
            refunded_peanuts=rejected.peanuts or 0,
        )

    # --------- simulation ----------
    def simulation_repository_updated(self, repository_id: Optional[str]) -> None:
        self.simulation = SimulationSession(repository_id, upstream=self._simulation_upstream)

    def simulation_reloaded(self) -> None:
        """The preview page reloaded: start over on the same repository."""
        if self.simulation is None or not self.simulation.repository_id:
            raise RuntimeError("expected an active simulation with a repository id")
        self.simulation_repository_updated(self.simulation.repository_id)

    def simulation_add_data(self, data: SimulationData) -> None:
        if self.simulation is None:
            raise RuntimeError("expected an active simulation")
        self.simulation.add_page_data(data)

    def simulation_finish_data(self) -> None:
        """Seal the page data for the outgoing turn.

        Collection carries on in a fresh session on the same repository, seeded
        with everything gathered so far, so later drains keep reaching the
        backend.
        """
        if self.simulation is None:
            return
        sealed = self.simulation.finish()
        self.last_user_simulation_data = sealed
        repository_id = self.simulation.repository_id
        self.simulation = SimulationSession(repository_id, upstream=self._simulation_upstream)
        if repository_id and sealed:
            self.simulation.add_page_data(sealed)

    async def begin_turn(self, collector: Optional[SimulationTelemetryCollector] = None) -> Optional[SimulationData]:
        """Flush pending preview telemetry and seal it before a new turn is sent."""
        if collector is not None:
            await collector.flush()
        self.simulation_finish_data()
        return self.last_user_simulation_data

    async def should_use_simulation(
        self,
        client: SimulationDecisionClient,
        pending_input: str,
    ) -> bool:
        """Ask the decision endpoint, defaulting to no simulation on failure."""
        try:
            return await client.decide(self.timeline.messages, pending_input)
        except DecisionError:
            logger.warning("chat %s: use-simulation check failed", self.chat_id, exc_info=True)
            return False


class SessionRegistry:
    """Hands out one :class:`ConversationSession` per chat id."""

    def __init__(self, **session_kwargs: Any) -> None:
        self._sessions: Dict[str, ConversationSession] = {}
        self._lock = threading.Lock()
        self._session_kwargs = session_kwargs

    def get(self, chat_id: str) -> ConversationSession:
        with self._lock:
            session = self._sessions.get(chat_id)
            if session is None:
                session = ConversationSession(chat_id, **self._session_kwargs)
                self._sessions[chat_id] = session
            return session

    def find(self, chat_id: str) -> Optional[ConversationSession]:
        """Look up a chat without creating it."""
        with self._lock:
            return self._sessions.get(chat_id)

    def drop(self, chat_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(chat_id, None) is not None

    def __contains__(self, chat_id: str) -> bool:
        return chat_id in self._sessions
