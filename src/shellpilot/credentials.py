# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger

DEFAULT_TOKEN_PATH = Path.home() / ".config" / "shellpilot" / "token"


@runtime_checkable
class CredentialStoreProtocol(Protocol):
    """
    Protocol for the cached credential, to allow dependency injection and testing.
    """

    def read(self) -> str | None:
        ...

    def save(self, token: str) -> None:
        ...

    def invalidate(self) -> None:
        ...


class TokenStore:
    """
    File-backed bearer token cache.
    Missing or unreadable files are treated as "no token".
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else DEFAULT_TOKEN_PATH

    def read(self) -> str | None:
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to read token from {self.path}: {e}")
            return None
        return token or None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token, encoding="utf-8")
        logger.info(f"Saved credential to {self.path}")

    def invalidate(self) -> None:
        """Drop the cached token so the next run has to authenticate again."""
        try:
            self.path.unlink()
            logger.info(f"Invalidated cached credential at {self.path}")
        except FileNotFoundError:
            pass
