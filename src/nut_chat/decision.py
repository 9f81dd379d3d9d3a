"""Deciding whether a turn should run in simulation mode.

The client side posts the conversation and the pending input to
``/api/use-simulation``. The server side asks a classifier model and parses
its ``<analyze>true|false</analyze>`` verdict.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional, Sequence, Union

import httpx

from .messages import MessageBase, to_wire

logger = logging.getLogger(__name__)


class DecisionError(RuntimeError):
    """The decision endpoint could not be reached or answered malformed data."""


# -----------------------------
# Client
# -----------------------------
def interpret_decision(result: Dict[str, Any], *, strict: bool = False) -> bool:
    """Map a decoded response body to a verdict.

    Missing or falsy ``useSimulation`` means no. With ``strict`` only a real
    boolean ``True`` counts; otherwise any truthy value does.
    """
    if "useSimulation" not in result:
        return False
    value = result["useSimulation"]
    if strict:
        return value is True
    return bool(value)


class SimulationDecisionClient:
    """Async client for the use-simulation decision endpoint.

    Transport failures, non-2xx statuses and bodies that are not a JSON object
    raise :class:`DecisionError`. Choosing a fallback is left to the caller.
    """

    def __init__(
        self,
        url: str,
        *,
        strict: bool = False,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.strict = strict
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], **kwargs: Any) -> "SimulationDecisionClient":
        sim_cfg = cfg.get("simulation", {}) or {}
        return cls(
            sim_cfg["decision_url"],
            strict=bool(sim_cfg.get("strict_boolean", False)),
            timeout=float(sim_cfg.get("timeout", 30.0)),
            **kwargs,
        )

    async def decide(
        self,
        history: Sequence[Union[MessageBase, Dict[str, Any]]],
        pending_input: str,
    ) -> bool:
        payload = {
            "messages": [to_wire(m) if isinstance(m, MessageBase) else m for m in history],
            "messageInput": pending_input,
        }
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            raise DecisionError(f"use-simulation request failed: {e}") from e
        except ValueError as e:
            raise DecisionError(f"use-simulation response is not JSON: {e}") from e

        if not isinstance(result, dict):
            raise DecisionError(f"use-simulation response must be an object, got {type(result).__name__}")

        verdict = interpret_decision(result, strict=self.strict)
        logger.debug("use-simulation verdict=%s for %d messages", verdict, len(history))
        return verdict


# -----------------------------
# Server-side classification
# -----------------------------
CLASSIFIER_SYSTEM_PROMPT = """
You are a helpful assistant that determines whether a user's message that is asking an AI
to make a change to an application should first perform a detailed analysis of the application's
behavior to generate a better answer.

This is most helpful when the user is asking the AI to fix a problem with the application.
When making straightforward improvements to the application a detailed analysis is not necessary.

The text of the user's message will be wrapped in `<user_message>` tags. You must describe your
reasoning and then respond with either `<analyze>true</analyze>` or `<analyze>false</analyze>`.
""".strip()

_ANALYZE_RE = re.compile(r"<analyze>(.*?)</analyze>", re.DOTALL)


def build_classifier_prompt(message_input: str) -> str:
    return (
        f"{CLASSIFIER_SYSTEM_PROMPT}\n\n"
        f"Here is the user message you need to evaluate: <user_message>{message_input}</user_message>"
    )


def parse_analyze_verdict(response_text: str) -> bool:
    """``True`` only for an explicit ``<analyze>true</analyze>``."""
    match = _ANALYZE_RE.search(response_text or "")
    if not match:
        return False
    return match.group(1) == "true"
