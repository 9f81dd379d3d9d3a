"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from pathlib import Path
import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from nut_chat.messages import ImageMessage, TextMessage  # noqa: E402


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Default config shipped with the repo."""
    return project_root / "config" / "default.yaml"


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in list(os.environ):
        if var.startswith("NUT_CHAT"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    yield


def text(id: str, role: str = "assistant", content: str = "", **kw) -> TextMessage:
    return TextMessage(id=id, role=role, content=content, **kw)


def image(id: str, role: str = "user", data_url: str = "data:image/png;base64,AAAA", **kw) -> ImageMessage:
    return ImageMessage(id=id, role=role, data_url=data_url, **kw)


class FakeSurface:
    """Preview surface whose drains hand out queued batches, oldest first."""

    def __init__(self, *batches, fail: bool = False):
        self.batches = list(batches)
        self.fail = fail
        self.drains = 0

    async def drain(self):
        self.drains += 1
        if self.fail:
            raise RuntimeError("preview torn down")
        if not self.batches:
            return []
        return self.batches.pop(0)
