# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

from shellpilot.credentials import CredentialStoreProtocol
from shellpilot.errors import AuthenticationError, ProtocolError, TransientError
from shellpilot.models import Err, ErrorKind, Ok, Result

T = TypeVar("T")


class RetryPolicy:
    """Wraps remote calls with linear backoff and credential invalidation.

    - TransientError: retried up to `max_retries` times, sleeping
      `attempt * base_delay` before attempt 1, 2, ...; then Err(TRANSIENT).
    - AuthenticationError: the cached credential is invalidated and
      Err(AUTHENTICATION) is returned immediately.
    - ProtocolError: Err(PROTOCOL), not retried.
    - Anything else: retried like a transient failure, then re-raised.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 2.0,
        credentials: CredentialStoreProtocol | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.credentials = credentials
        self._sleep = sleep

    async def _backoff(self, attempt: int, description: str, error: Exception) -> None:
        delay = attempt * self.base_delay
        logger.warning(
            f"{description} failed ({type(error).__name__}: {error}); "
            f"retry {attempt}/{self.max_retries} in {delay:.1f}s"
        )
        await self._sleep(delay)

    async def run(self, call: Callable[[], Awaitable[T]], description: str = "remote call") -> Result[T]:
        attempt = 0
        while True:
            try:
                return Ok(await call())
            except AuthenticationError as e:
                logger.warning(f"{description} was rejected: {e}")
                if self.credentials is not None:
                    self.credentials.invalidate()
                return Err(ErrorKind.AUTHENTICATION, str(e), e.status)
            except ProtocolError as e:
                logger.error(f"{description} violated the protocol: {e}")
                return Err(ErrorKind.PROTOCOL, str(e))
            except TransientError as e:
                if attempt >= self.max_retries:
                    logger.error(f"{description} still unavailable after {attempt} retries: {e}")
                    return Err(ErrorKind.TRANSIENT, str(e), e.status)
                attempt += 1
                await self._backoff(attempt, description, e)
            except Exception as e:
                if attempt >= self.max_retries:
                    logger.error(f"{description} failed after {attempt} retries: {e}")
                    raise
                attempt += 1
                await self._backoff(attempt, description, e)
