# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

"""The agent loop's state machine.

One call to `run_turn` walks::

    Idle -> Deciding -> [Confirming] -> Executing -> Observing -> Idle

or, for `protocol_complete`, ``Executing -> Completed -> Idle``. Exactly one
side effect happens per decision. Failures become observation text; only
`FatalError` escapes.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from shellpilot.audit import AuditLogger
from shellpilot.client import ModelClient, SessionClient
from shellpilot.editor import FileEditor
from shellpilot.errors import ExecutionError, FatalError
from shellpilot.models import (
    AgentDecision,
    Err,
    ErrorKind,
    ExecuteCommand,
    ExecutionResult,
    ProtocolComplete,
    Session,
    UpdateFile,
)
from shellpilot.prompts import build_prompt
from shellpilot.retry import RetryPolicy
from shellpilot.runtime import SandboxRuntime
from shellpilot.stream import LiveDisplay, StreamEnd

Confirmer = Callable[[str], Awaitable[bool]]
Reauthenticator = Callable[[], Awaitable[str | None]]

OBS_COMMAND_DECLINED = "The user declined to run the previous command."
OBS_FILE_DECLINED = "The user declined the file update."
OBS_TASK_COMPLETED = "The previous task was completed successfully. Ready for a new task."


class DispatcherState(str, Enum):
    IDLE = "idle"
    DECIDING = "deciding"
    CONFIRMING = "confirming"
    EXECUTING = "executing"
    OBSERVING = "observing"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TurnOutcome:
    """What one turn produced.

    Attributes:
        session: The session to pass into the next turn.
        decision: The model's decision, or None when no decision was obtained.
        observation: The observation text (also stored on `session`).
        completed: True when the model declared the task complete.
    """

    session: Session
    decision: AgentDecision | None
    observation: str
    completed: bool = False


def format_command_observation(command: str, result: ExecutionResult) -> str:
    if result.stdout and result.stderr:
        return f'Command "{command}" executed and returned:\n{result.stdout}\nand reported errors:\n{result.stderr}'
    if result.stderr:
        return f'Command "{command}" failed with:\n{result.stderr}'
    if result.stdout:
        return f'Command "{command}" executed and returned:\n{result.stdout}'
    return f'Command "{command}" executed with no output.'


def format_remote_error(error: Err) -> str:
    if error.kind == ErrorKind.AUTHENTICATION:
        status = f" (status {error.status})" if error.status else ""
        return (
            f"Authentication failed{status}. The user was asked to sign in again "
            "and the conversation context was reset."
        )
    if error.kind == ErrorKind.TRANSIENT:
        return f"The model service is temporarily unavailable: {error.message}. The request was not processed."
    return f"The model response could not be processed: {error.message}"


class ActionDispatcher:
    """Drives one decision per turn through confirmation, execution and observation."""

    def __init__(
        self,
        runtime: SandboxRuntime,
        editor: FileEditor,
        model: ModelClient,
        sessions: SessionClient,
        policy: RetryPolicy,
        confirm: Confirmer | None = None,
        reauthenticate: Reauthenticator | None = None,
        audit: AuditLogger | None = None,
        on_chunk: Callable[[str], Any] | None = None,
        display_queue_size: int = 256,
    ):
        """Initializes the ActionDispatcher.

        Args:
            runtime: The sandbox runtime that executes commands.
            editor: The file editor.
            model: Client for model turns.
            sessions: Client for page release notifications.
            policy: Retry policy applied to every remote call.
            confirm: Asks the user a yes/no question. Without it, confirmations are declined.
            reauthenticate: Obtains a fresh token after an authentication failure.
            audit: Audit logger for side effects.
            on_chunk: Optional live-display subscriber for streamed text. If it has a
                `reset` method, that is called before every model attempt.
            display_queue_size: Chunks buffered for the subscriber before dropping.
        """
        self.runtime = runtime
        self.editor = editor
        self.model = model
        self.sessions = sessions
        self.policy = policy
        self.confirm = confirm
        self.reauthenticate = reauthenticate
        self.audit = audit or AuditLogger(enabled=False)
        self.on_chunk = on_chunk
        self.display_queue_size = display_queue_size
        self.state = DispatcherState.IDLE
        self.history: list[DispatcherState] = []

    def _enter(self, state: DispatcherState) -> None:
        logger.debug(f"Dispatcher {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    async def run_turn(self, user_input: str, session: Session) -> TurnOutcome:
        """Send the user's input to the model and act on its decision.

        Args:
            user_input: What the user typed.
            session: The current session; it is not mutated.

        Returns:
            TurnOutcome: The new session and what happened.

        Raises:
            FatalError: If the sandbox environment is unusable.
        """
        self.history = []
        self._enter(DispatcherState.DECIDING)
        prompt = build_prompt(session.last_observation, user_input)

        try:
            result = await self.policy.run(lambda: self._decide(prompt, session), "model turn")
            if isinstance(result, Err):
                return await self._remote_failure(result, session)
            return await self.dispatch(result.value, session)
        except FatalError:
            self._enter(DispatcherState.IDLE)
            raise
        except Exception as e:
            logger.exception(f"Turn failed: {e}")
            observation = f"The last action failed with an error: {e}. Try a different approach."
            return self._finish(session.observe(observation), None, observation)

    async def _decide(self, prompt: str, session: Session) -> StreamEnd:
        if self.on_chunk is None:
            return await self.model.decide(prompt, session.token, session.page_id)
        # Each attempt streams from scratch; a subscriber with state starts over too.
        reset = getattr(self.on_chunk, "reset", None)
        if callable(reset):
            reset()
        async with LiveDisplay(self.on_chunk, self.display_queue_size) as display:
            return await self.model.decide(prompt, session.token, session.page_id, display=display)

    async def dispatch(self, turn: StreamEnd, session: Session) -> TurnOutcome:
        """Apply the single action of a decision.

        Args:
            turn: The finished model turn.
            session: The current session.

        Returns:
            TurnOutcome: The resulting session and observation.
        """
        decision = turn.decision
        action = decision.action
        logger.info(f"Decision: {action.tool}", fallback=decision.is_fallback)

        if isinstance(action, ProtocolComplete):
            self._enter(DispatcherState.EXECUTING)
            return await self._complete(decision, session, turn.page_id)

        # The first page id seen in a conversation sticks until it is released.
        page_id = session.page_id if session.page_id is not None else turn.page_id
        session = session.with_page(page_id)

        if isinstance(action, ExecuteCommand):
            question = action.prompt or f'Run command "{action.command}"?'
            declined = OBS_COMMAND_DECLINED
        elif isinstance(action, UpdateFile):
            question = action.prompt or f'Update file "{action.file}"?'
            declined = OBS_FILE_DECLINED
        else:
            raise TypeError(f"Unhandled action: {type(action).__name__}")  # pragma: no cover

        if action.confirm:
            self._enter(DispatcherState.CONFIRMING)
            if not await self._ask(question):
                logger.warning(f"User declined {action.tool}")
                return self._finish(session.observe(declined), decision, declined)

        self._enter(DispatcherState.EXECUTING)
        if isinstance(action, ExecuteCommand):
            observation = await self._execute_command(action)
        else:
            observation = await self._update_file(action)
        return self._finish(session.observe(observation), decision, observation)

    def _finish(self, session: Session, decision: AgentDecision | None, observation: str) -> TurnOutcome:
        self._enter(DispatcherState.OBSERVING)
        self._enter(DispatcherState.IDLE)
        return TurnOutcome(session=session, decision=decision, observation=observation)

    async def _ask(self, question: str) -> bool:
        if self.confirm is None:
            logger.warning(f"No confirmation handler; declining: {question}")
            return False
        return await self.confirm(question)

    async def _execute_command(self, action: ExecuteCommand) -> str:
        self.audit.log_pre_execution("command", action.command, action.command)
        try:
            result = await self.runtime.execute(action.command)
        except (ExecutionError, TimeoutError) as e:
            logger.error(f"Command could not be executed: {e}")
            return f'Command "{action.command}" could not be executed: {e}'
        if result.stderr:
            logger.warning(f"Command wrote to stderr (exit code {result.exit_code})")
        return format_command_observation(action.command, result)

    async def _update_file(self, action: UpdateFile) -> str:
        self.audit.log_pre_execution("file", action.file, action.edit_spec.model_dump_json())
        result = await self.editor.apply(action.file, action.edit_spec)
        if isinstance(result, Err):
            return f"File update failed: {result.message}"
        return f"File {action.file} updated successfully."

    async def _complete(self, decision: AgentDecision, session: Session, page_id: int | None) -> TurnOutcome:
        self._enter(DispatcherState.COMPLETED)
        open_page = session.page_id if session.page_id is not None else page_id
        if open_page is not None:
            await self.release(open_page, session.token)
        session = Session(page_id=None, last_observation=OBS_TASK_COMPLETED, token=session.token)
        self._enter(DispatcherState.IDLE)
        return TurnOutcome(session=session, decision=decision, observation=OBS_TASK_COMPLETED, completed=True)

    async def release(self, page_id: int, token: str | None) -> bool:
        """Best-effort page release. Failures are logged, never raised.

        Returns:
            bool: True if the server acknowledged the release.
        """
        try:
            result = await self.policy.run(lambda: self.sessions.release(page_id, token), "page release")
        except Exception as e:
            logger.warning(f"Failed to release page {page_id}: {e}")
            return False
        if isinstance(result, Err):
            logger.warning(f"Failed to release page {page_id}: {result.message}")
            return False
        return True

    async def release_open_page(self, session: Session) -> Session:
        """Release the session's page id, if any, and clear it. Used on interrupt and shutdown."""
        if session.page_id is None:
            return session
        await self.release(session.page_id, session.token)
        return session.with_page(None)

    async def _remote_failure(self, error: Err, session: Session) -> TurnOutcome:
        observation = format_remote_error(error)
        if error.kind == ErrorKind.AUTHENTICATION:
            token = None
            if self.reauthenticate is not None:
                token = await self.reauthenticate()
            session = Session(page_id=None, last_observation=observation, token=token)
        else:
            session = session.observe(observation)
        return self._finish(session, None, observation)
