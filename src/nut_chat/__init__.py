"""Chat timeline reconciliation, rewind and simulation telemetry.

The HTTP surface is a FastAPI application factory named ``create_app`` in
``nut_chat/server.py`` (see :func:`create_app`).

Typical usage
-------------
from nut_chat import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

from .decision import DecisionError, SimulationDecisionClient
from .messages import ImageMessage, Message, TextMessage
from .rewind import REWIND_NOT_FOUND, resolve_rewind_index
from .session import ConversationSession, SessionRegistry
from .telemetry import SimulationTelemetryCollector
from .timeline import MessageTimeline, StaleTimelineError, TypeMismatch, merge_or_append

__all__ = [
    "create_app",
    "__version__",
    "get_version",
    "ConversationSession",
    "DecisionError",
    "ImageMessage",
    "Message",
    "MessageTimeline",
    "REWIND_NOT_FOUND",
    "SessionRegistry",
    "SimulationDecisionClient",
    "SimulationTelemetryCollector",
    "StaleTimelineError",
    "TextMessage",
    "TypeMismatch",
    "merge_or_append",
    "resolve_rewind_index",
]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"

def get_version() -> str:
    """Return the package version."""
    return __version__


def create_app(*args, **kwargs):
    """Return a configured FastAPI application.

    Imported lazily so the core modules stay usable without the web stack.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
