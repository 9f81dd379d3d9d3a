"""Classifier model used by the use-simulation route.

Talks to an Anthropic-style ``/v1/messages`` endpoint over httpx and exposes a
single ``generate(prompt) -> str``, so tests can swap in any object with the
same method.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


# -----------------------------
# Types & defaults
# -----------------------------

@dataclass
class GenerationConfig:
    model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = 1024
    temperature: Optional[float] = None


class ClassifierError(RuntimeError):
    """The classifier backend failed or answered something unusable."""


# -----------------------------
# Anthropic wrapper
# -----------------------------

class AnthropicModel:
    """Minimal synchronous client for the messages API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.anthropic.com",
        gen_cfg: Optional[GenerationConfig] = None,
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not api_key:
            raise ValueError("Anthropic API key is not set")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._gen_cfg = gen_cfg or GenerationConfig()
        self._timeout = timeout
        self._client = client

    def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
        """Send ``prompt`` as a single user turn and return the text reply."""
        body: Dict[str, Any] = {
            "model": self._gen_cfg.model,
            "max_tokens": self._gen_cfg.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            body["system"] = system
        if self._gen_cfg.temperature is not None:
            body["temperature"] = self._gen_cfg.temperature

        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        url = f"{self._base_url}/v1/messages"
        try:
            if self._client is not None:
                r = self._client.post(url, json=body, headers=headers)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    r = client.post(url, json=body, headers=headers)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ClassifierError(f"classifier request failed: {e}") from e

        text = _response_text(data)
        usage = data.get("usage") or {}
        logger.info(
            "classifier tokens in=%s out=%s",
            usage.get("input_tokens"),
            usage.get("output_tokens"),
        )
        return text


def _response_text(data: Any) -> str:
    if not isinstance(data, dict):
        raise ClassifierError("classifier response must be an object")
    parts: List[str] = []
    for block in data.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
        else:
            logger.debug("ignoring classifier content block %r", block)
    return "".join(parts)


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any]) -> Optional[AnthropicModel]:
    """Build the classifier from config; ``None`` when no API key is available."""
    cls_cfg = (cfg or {}).get("classifier", {}) if isinstance(cfg, dict) else {}
    api_key = cls_cfg.get("api_key") or os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        logger.warning("classifier api key missing; /api/use-simulation is disabled")
        return None
    gen_cfg = GenerationConfig(
        model=str(cls_cfg.get("model", GenerationConfig.model)),
        max_tokens=int(cls_cfg.get("max_tokens", GenerationConfig.max_tokens)),
        temperature=cls_cfg.get("temperature"),
    )
    return AnthropicModel(
        str(api_key),
        base_url=str(cls_cfg.get("base_url", "https://api.anthropic.com")),
        gen_cfg=gen_cfg,
    )
