from pathlib import Path
from typing import Any, Generator
from unittest.mock import MagicMock, patch

import pytest

from shellpilot.config import AgentConfig


class MemoryTokenStore:
    """In-memory stand-in for TokenStore."""

    def __init__(self, token: str | None = None):
        self.token = token
        self.invalidated = 0

    def read(self) -> str | None:
        return self.token

    def save(self, token: str) -> None:
        self.token = token

    def invalidate(self) -> None:
        self.token = None
        self.invalidated += 1


@pytest.fixture(autouse=True)
def isolated_token_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    token_path = tmp_path / "token"
    monkeypatch.setenv("SHELLPILOT_TOKEN_PATH", str(token_path))
    monkeypatch.delenv("SHELLPILOT_API_TOKEN", raising=False)
    return token_path


@pytest.fixture
def config(tmp_path: Path) -> AgentConfig:
    return AgentConfig(
        api_host="http://model.test",
        host_workspace=tmp_path / "sandbox",
        token_path=tmp_path / "token",
        api_token="test-token",
    )


@pytest.fixture
def mock_docker_client() -> Generator[Any, None, None]:
    with patch("shellpilot.runtimes.docker.docker.from_env") as mock:
        yield mock


@pytest.fixture
def token_store() -> MemoryTokenStore:
    return MemoryTokenStore("cached-token")


@pytest.fixture
def mock_container() -> MagicMock:
    container = MagicMock()
    container.id = "c0ffee"
    container.short_id = "c0ffee"
    container.status = "running"
    return container
