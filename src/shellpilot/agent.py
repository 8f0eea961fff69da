# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from collections.abc import Callable
from typing import Any

import httpx
from loguru import logger

from shellpilot.audit import AuditLogger
from shellpilot.client import ModelClient, SessionClient
from shellpilot.config import AgentConfig
from shellpilot.credentials import CredentialStoreProtocol, TokenStore
from shellpilot.dispatcher import ActionDispatcher, Confirmer, Reauthenticator, TurnOutcome
from shellpilot.editor import FileEditor
from shellpilot.factory import SandboxFactory
from shellpilot.models import Session
from shellpilot.retry import RetryPolicy
from shellpilot.runtime import SandboxRuntime


class AgentAsync:
    """Async agent service (The Core).

    Wires the runtime, editor, transport and dispatcher from one config and
    keeps the current `Session` between turns.
    """

    def __init__(
        self,
        config: AgentConfig | None = None,
        client: httpx.AsyncClient | None = None,
        confirm: Confirmer | None = None,
        reauthenticate: Reauthenticator | None = None,
        on_chunk: Callable[[str], Any] | None = None,
        credentials: CredentialStoreProtocol | None = None,
        runtime: SandboxRuntime | None = None,
    ):
        """Initializes the AgentAsync service.

        Args:
            config: Configuration for the agent.
            client: Optional httpx.AsyncClient for connection pooling.
            confirm: Yes/no prompt used for actions that request confirmation.
            reauthenticate: Called after an authentication failure to obtain a new token.
            on_chunk: Optional live-display subscriber for streamed model text.
            credentials: Credential cache; defaults to the token file from config.
            runtime: Sandbox runtime; defaults to the one built from config.
        """
        self.config = config or AgentConfig()
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.request_timeout)
        self.credentials = credentials or TokenStore(self.config.token_path)
        self.runtime = runtime or SandboxFactory.get_runtime(self.config)
        self.dispatcher = ActionDispatcher(
            runtime=self.runtime,
            editor=FileEditor(self.config.host_workspace),
            model=ModelClient(self.config, self._client),
            sessions=SessionClient(self.config, self._client),
            policy=RetryPolicy(
                max_retries=self.config.max_retries,
                base_delay=self.config.retry_base_delay,
                credentials=self.credentials,
            ),
            confirm=confirm,
            reauthenticate=reauthenticate,
            audit=AuditLogger(enabled=self.config.enable_audit_logging),
            on_chunk=on_chunk,
            display_queue_size=self.config.display_queue_size,
        )
        self.session = Session(token=self.config.api_token or self.credentials.read())

    async def __aenter__(self) -> "AgentAsync":
        """Makes sure the sandbox exists and is running."""
        handle = await self.runtime.ensure_sandbox()
        logger.info(f"Sandbox {handle.name} is {handle.state}")
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Releases any open page and closes the HTTP client. The sandbox keeps running."""
        try:
            self.session = await self.dispatcher.release_open_page(self.session)
        finally:
            if self._internal_client:
                await self._client.aclose()

    async def ask(self, user_input: str) -> TurnOutcome:
        """Runs one turn and stores the resulting session.

        Args:
            user_input: The user's request.

        Returns:
            TurnOutcome: The decision and observation of the turn.
        """
        outcome = await self.dispatcher.run_turn(user_input, self.session)
        self.session = outcome.session
        return outcome
