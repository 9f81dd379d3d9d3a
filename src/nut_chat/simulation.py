"""Simulation data captured from the live preview.

A drain of the preview yields a JSON array of packets. Each packet is a dict
tagged by ``kind`` (``interaction``, ``resource``, ``websocket`` and so on);
packets are kept as plain dicts because the backend, not this package,
interprets their payloads.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

SIMULATION_DATA_VERSION = "0.1"

PACKET_KINDS = frozenset(
    {
        "serverURL",
        "repositoryContents",
        "repositoryId",
        "locationHref",
        "documentURL",
        "resource",
        "interaction",
        "websocket",
        "indexedDB",
        "localStorage",
    }
)

SimulationPacket = Dict[str, Any]
SimulationData = List[SimulationPacket]


def decode_simulation_data(buffer: Union[bytes, bytearray, str, list, None]) -> SimulationData:
    """Decode a raw drain buffer into a list of packets.

    An empty or missing buffer means nothing was recorded since the last
    drain. Anything other than a JSON array of objects raises ``ValueError``.
    """
    if buffer is None:
        return []
    if isinstance(buffer, list):
        data: Any = buffer
    else:
        if isinstance(buffer, (bytes, bytearray)):
            buffer = buffer.decode("utf-8")
        if not buffer.strip():
            return []
        data = json.loads(buffer)

    if not isinstance(data, list):
        raise ValueError(f"simulation data must be a list, got {type(data).__name__}")
    for packet in data:
        if not isinstance(packet, dict) or "kind" not in packet:
            raise ValueError(f"malformed simulation packet: {packet!r}")
        if packet["kind"] not in PACKET_KINDS:
            logger.debug("unknown simulation packet kind %r", packet["kind"])
    return data


def repository_id_packet(repository_id: str) -> SimulationPacket:
    return {
        "kind": "repositoryId",
        "repositoryId": repository_id,
        "time": datetime.now(timezone.utc).isoformat(),
    }


class SimulationSession:
    """Collects page data for the preview of one repository snapshot.

    Data arriving after :meth:`finish` is kept in :attr:`page_data` but is not
    forwarded upstream, since the backend has already been told the
    simulation is complete.
    """

    def __init__(
        self,
        repository_id: Optional[str] = None,
        *,
        upstream: Optional[Callable[[SimulationData], Any]] = None,
    ) -> None:
        self.repository_id = repository_id
        self.page_data: SimulationData = []
        self.finished = False
        self._upstream = upstream
        if repository_id:
            self._send([repository_id_packet(repository_id)])

    def add_page_data(self, data: SimulationData) -> None:
        if not self.repository_id:
            raise RuntimeError("simulation session has no repository id")
        self.page_data.extend(data)
        if self.finished:
            return
        logger.debug("simulation %s: added %d packets", self.repository_id, len(data))
        self._send(data)

    def finish(self) -> SimulationData:
        if self.finished:
            raise RuntimeError("simulation has already been finished")
        self.finished = True
        return list(self.page_data)

    def _send(self, data: SimulationData) -> None:
        if self._upstream is not None:
            self._upstream(data)
