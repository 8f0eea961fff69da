from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from shellpilot.dispatcher import (
    OBS_COMMAND_DECLINED,
    OBS_FILE_DECLINED,
    OBS_TASK_COMPLETED,
    ActionDispatcher,
    DispatcherState,
    format_command_observation,
)
from shellpilot.editor import FileEditor
from shellpilot.errors import AuthenticationError, ExecutionError, RuntimeUnavailableError, TransientError
from shellpilot.models import (
    INITIAL_OBSERVATION,
    AgentDecision,
    ExecuteCommand,
    ExecutionResult,
    Lines,
    LineRange,
    ProtocolComplete,
    Session,
    UpdateFile,
)
from shellpilot.retry import RetryPolicy
from shellpilot.stream import LiveDisplay, StreamEnd


class FakeModel:
    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def decide(
        self, prompt: str, token: str | None, page_id: int | None = None, display: LiveDisplay | None = None
    ) -> StreamEnd:
        self.calls.append({"prompt": prompt, "token": token, "page_id": page_id})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if display is not None:
            display.publish(response.raw)
        return response


class FakeSessions:
    def __init__(self, error: Exception | None = None):
        self.released: list[tuple[int, str | None]] = []
        self.error = error

    async def release(self, page_id: int, token: str | None) -> None:
        if self.error is not None:
            raise self.error
        self.released.append((page_id, token))


async def no_sleep(delay: float) -> None:
    return None


def turn(action: Any, page_id: int | None = 101, display_text: str | None = None) -> StreamEnd:
    decision = AgentDecision(thought="thinking", display_text=display_text, action=action)
    return StreamEnd(decision=decision, page_id=page_id, raw=decision.model_dump_json())


@pytest.fixture
def runtime() -> AsyncMock:
    runtime = AsyncMock()
    runtime.execute.return_value = ExecutionResult(stdout="file1.txt\nfile2.txt\n", exit_code=0)
    return runtime


def make_dispatcher(
    runtime: Any,
    tmp_path: Path,
    model: FakeModel,
    sessions: FakeSessions | None = None,
    credentials: Any = None,
    **kwargs: Any,
) -> ActionDispatcher:
    return ActionDispatcher(
        runtime=runtime,
        editor=FileEditor(tmp_path),
        model=model,  # type: ignore[arg-type]
        sessions=sessions or FakeSessions(),  # type: ignore[arg-type]
        policy=RetryPolicy(credentials=credentials, sleep=no_sleep),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_list_files_turn(runtime: AsyncMock, tmp_path: Path) -> None:
    model = FakeModel(turn(ExecuteCommand(command="ls -F"), display_text="Contents:"))
    dispatcher = make_dispatcher(runtime, tmp_path, model)

    outcome = await dispatcher.run_turn("List all files", Session(token="tok"))

    runtime.execute.assert_awaited_once_with("ls -F")
    assert outcome.observation == 'Command "ls -F" executed and returned:\nfile1.txt\nfile2.txt\n'
    assert outcome.session.last_observation == outcome.observation
    assert outcome.session.page_id == 101
    assert outcome.decision is not None and outcome.decision.display_text == "Contents:"
    assert not outcome.completed

    prompt = model.calls[0]["prompt"]
    assert f"[OBSERVATION]\n{INITIAL_OBSERVATION}\n[USER_REQUEST]\nList all files" in prompt
    assert model.calls[0]["token"] == "tok"
    assert dispatcher.history == [
        DispatcherState.DECIDING,
        DispatcherState.EXECUTING,
        DispatcherState.OBSERVING,
        DispatcherState.IDLE,
    ]


@pytest.mark.asyncio
async def test_next_turn_carries_observation_and_page(runtime: AsyncMock, tmp_path: Path) -> None:
    model = FakeModel(turn(ExecuteCommand(command="pwd"), page_id=9))
    dispatcher = make_dispatcher(runtime, tmp_path, model)

    outcome = await dispatcher.run_turn("where am I", Session(page_id=5, last_observation="earlier", token="tok"))

    assert model.calls[0]["page_id"] == 5
    assert "[OBSERVATION]\nearlier\n" in model.calls[0]["prompt"]
    # The first page id of a conversation sticks.
    assert outcome.session.page_id == 5


@pytest.mark.asyncio
async def test_confirm_declined(runtime: AsyncMock, tmp_path: Path) -> None:
    confirm = AsyncMock(return_value=False)
    model = FakeModel(turn(ExecuteCommand(command="rm -rf build", confirm=True, prompt="Delete build?")))
    dispatcher = make_dispatcher(runtime, tmp_path, model, confirm=confirm)

    outcome = await dispatcher.run_turn("clean up", Session(token="tok"))

    confirm.assert_awaited_once_with("Delete build?")
    runtime.execute.assert_not_awaited()
    assert outcome.observation == OBS_COMMAND_DECLINED
    assert DispatcherState.CONFIRMING in dispatcher.history
    assert DispatcherState.EXECUTING not in dispatcher.history


@pytest.mark.asyncio
async def test_confirm_accepted(runtime: AsyncMock, tmp_path: Path) -> None:
    confirm = AsyncMock(return_value=True)
    model = FakeModel(turn(ExecuteCommand(command="rm -rf build", confirm=True)))
    dispatcher = make_dispatcher(runtime, tmp_path, model, confirm=confirm)

    await dispatcher.run_turn("clean up", Session(token="tok"))

    confirm.assert_awaited_once_with('Run command "rm -rf build"?')
    runtime.execute.assert_awaited_once_with("rm -rf build")


@pytest.mark.asyncio
async def test_file_update_without_confirmer_is_declined(runtime: AsyncMock, tmp_path: Path) -> None:
    model = FakeModel(turn(UpdateFile(file="a.txt", edit_spec=Lines(lines=["x"]), confirm=True)))
    dispatcher = make_dispatcher(runtime, tmp_path, model)

    outcome = await dispatcher.run_turn("write", Session(token="tok"))

    assert outcome.observation == OBS_FILE_DECLINED
    assert not (tmp_path / "a.txt").exists()


@pytest.mark.asyncio
async def test_update_file(runtime: AsyncMock, tmp_path: Path) -> None:
    model = FakeModel(turn(UpdateFile(file="clock.py", edit_spec=Lines(lines=["import datetime", "print(1)"]))))
    dispatcher = make_dispatcher(runtime, tmp_path, model)

    outcome = await dispatcher.run_turn("make a clock", Session(token="tok"))

    assert outcome.observation == "File clock.py updated successfully."
    assert (tmp_path / "clock.py").read_text() == "import datetime\nprint(1)"
    runtime.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_file_failure(runtime: AsyncMock, tmp_path: Path) -> None:
    spec = LineRange(content="x", start_line=1, end_line=1)
    model = FakeModel(turn(UpdateFile(file="missing.txt", edit_spec=spec)))
    dispatcher = make_dispatcher(runtime, tmp_path, model)

    outcome = await dispatcher.run_turn("edit", Session(token="tok"))

    assert outcome.observation == "File update failed: File not found: missing.txt"


@pytest.mark.asyncio
async def test_execution_error_becomes_observation(runtime: AsyncMock, tmp_path: Path) -> None:
    runtime.execute.side_effect = ExecutionError("Docker error: boom")
    model = FakeModel(turn(ExecuteCommand(command="ls")))
    dispatcher = make_dispatcher(runtime, tmp_path, model)

    outcome = await dispatcher.run_turn("ls", Session(token="tok"))

    assert outcome.observation == 'Command "ls" could not be executed: Docker error: boom'
    assert dispatcher.state == DispatcherState.IDLE


@pytest.mark.asyncio
async def test_unexpected_error_becomes_observation(runtime: AsyncMock, tmp_path: Path) -> None:
    runtime.execute.side_effect = RuntimeError("kaboom")
    model = FakeModel(turn(ExecuteCommand(command="ls")))
    dispatcher = make_dispatcher(runtime, tmp_path, model)

    outcome = await dispatcher.run_turn("ls", Session(token="tok"))

    assert outcome.observation.startswith("The last action failed with an error: kaboom")
    assert outcome.decision is None


@pytest.mark.asyncio
async def test_fatal_error_propagates(runtime: AsyncMock, tmp_path: Path) -> None:
    runtime.execute.side_effect = RuntimeUnavailableError("daemon gone")
    model = FakeModel(turn(ExecuteCommand(command="ls")))
    dispatcher = make_dispatcher(runtime, tmp_path, model)

    with pytest.raises(RuntimeUnavailableError):
        await dispatcher.run_turn("ls", Session(token="tok"))
    assert dispatcher.state == DispatcherState.IDLE


@pytest.mark.asyncio
async def test_complete_releases_page(runtime: AsyncMock, tmp_path: Path) -> None:
    sessions = FakeSessions()
    model = FakeModel(turn(ProtocolComplete(), page_id=None))
    dispatcher = make_dispatcher(runtime, tmp_path, model, sessions)

    outcome = await dispatcher.run_turn("thanks", Session(page_id=77, last_observation="x", token="tok"))

    assert sessions.released == [(77, "tok")]
    assert outcome.completed
    assert outcome.observation == OBS_TASK_COMPLETED
    assert outcome.session == Session(page_id=None, last_observation=OBS_TASK_COMPLETED, token="tok")
    runtime.execute.assert_not_awaited()
    assert dispatcher.history[-2:] == [DispatcherState.COMPLETED, DispatcherState.IDLE]


@pytest.mark.asyncio
async def test_complete_releases_page_from_same_turn(runtime: AsyncMock, tmp_path: Path) -> None:
    sessions = FakeSessions()
    model = FakeModel(turn(ProtocolComplete(), page_id=8))
    dispatcher = make_dispatcher(runtime, tmp_path, model, sessions)

    outcome = await dispatcher.run_turn("done", Session(token="tok"))

    assert sessions.released == [(8, "tok")]
    assert outcome.session.page_id is None


@pytest.mark.asyncio
async def test_complete_without_page_skips_release(runtime: AsyncMock, tmp_path: Path) -> None:
    sessions = FakeSessions()
    model = FakeModel(turn(ProtocolComplete(), page_id=None))
    dispatcher = make_dispatcher(runtime, tmp_path, model, sessions)

    outcome = await dispatcher.run_turn("done", Session(token="tok"))

    assert sessions.released == []
    assert outcome.completed


@pytest.mark.asyncio
async def test_release_failure_does_not_break_completion(runtime: AsyncMock, tmp_path: Path) -> None:
    sessions = FakeSessions(error=AuthenticationError("expired", 401))
    model = FakeModel(turn(ProtocolComplete(), page_id=3))
    dispatcher = make_dispatcher(runtime, tmp_path, model, sessions)

    outcome = await dispatcher.run_turn("done", Session(token="tok"))

    assert outcome.completed
    assert outcome.session.page_id is None


@pytest.mark.asyncio
async def test_auth_failure_resets_session(runtime: AsyncMock, tmp_path: Path, token_store: Any) -> None:
    reauthenticate = AsyncMock(return_value="fresh-token")
    model = FakeModel(AuthenticationError("HTTP 401: expired", 401))
    dispatcher = make_dispatcher(runtime, tmp_path, model, credentials=token_store, reauthenticate=reauthenticate)

    outcome = await dispatcher.run_turn("ls", Session(page_id=5, last_observation="old", token="stale"))

    reauthenticate.assert_awaited_once()
    assert token_store.invalidated == 1
    assert outcome.session.page_id is None
    assert outcome.session.token == "fresh-token"
    assert outcome.observation.startswith("Authentication failed (status 401)")
    assert outcome.session.last_observation == outcome.observation
    runtime.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_transient_failure_keeps_session(runtime: AsyncMock, tmp_path: Path) -> None:
    model = FakeModel(*[TransientError("HTTP 503: busy", 503) for _ in range(4)])
    dispatcher = make_dispatcher(runtime, tmp_path, model)

    outcome = await dispatcher.run_turn("ls", Session(page_id=5, token="tok"))

    assert len(model.calls) == 4
    assert "temporarily unavailable" in outcome.observation
    assert outcome.session.page_id == 5
    assert outcome.session.token == "tok"
    runtime.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_fallback_decision_completes(runtime: AsyncMock, tmp_path: Path) -> None:
    fallback = StreamEnd(decision=AgentDecision.fallback(), page_id=None, raw='{"thought": "x, "action": {')
    dispatcher = make_dispatcher(runtime, tmp_path, FakeModel(fallback))

    outcome = await dispatcher.run_turn("ls", Session(token="tok"))

    assert outcome.completed
    runtime.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_live_chunks_reach_subscriber(runtime: AsyncMock, tmp_path: Path) -> None:
    seen: list[str] = []
    model = FakeModel(turn(ExecuteCommand(command="ls")))
    dispatcher = make_dispatcher(runtime, tmp_path, model, on_chunk=seen.append)

    await dispatcher.run_turn("ls", Session(token="tok"))

    assert len(seen) == 1
    assert '"command":"ls"' in seen[0]


@pytest.mark.asyncio
async def test_release_open_page(runtime: AsyncMock, tmp_path: Path) -> None:
    sessions = FakeSessions()
    dispatcher = make_dispatcher(runtime, tmp_path, FakeModel(), sessions)

    session = await dispatcher.release_open_page(Session(page_id=4, token="tok"))

    assert sessions.released == [(4, "tok")]
    assert session.page_id is None
    assert await dispatcher.release_open_page(session) == session


@pytest.mark.parametrize(
    "result, expected",
    [
        (ExecutionResult(stdout="a", stderr="b"), 'Command "c" executed and returned:\na\nand reported errors:\nb'),
        (ExecutionResult(stderr="b"), 'Command "c" failed with:\nb'),
        (ExecutionResult(stdout="a"), 'Command "c" executed and returned:\na'),
        (ExecutionResult(exit_code=1), 'Command "c" executed with no output.'),
    ],
)
def test_format_command_observation(result: ExecutionResult, expected: str) -> None:
    assert format_command_observation("c", result) == expected


class ChunkLog:
    """Subscriber that forgets what it saw whenever the stream starts over."""

    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.resets = 0

    def reset(self) -> None:
        self.resets += 1
        self.chunks = []

    def __call__(self, chunk: str) -> None:
        self.chunks.append(chunk)


class FlakyStreamingModel(FakeModel):
    """Streams a partial thought, then fails with a transient error, once."""

    async def decide(
        self, prompt: str, token: str | None, page_id: int | None = None, display: LiveDisplay | None = None
    ) -> StreamEnd:
        if not self.calls:
            self.calls.append({"prompt": prompt, "token": token, "page_id": page_id})
            if display is not None:
                display.publish('{"thought": "first attempt')
            raise TransientError("HTTP 503: busy", 503)
        return await super().decide(prompt, token, page_id, display)


@pytest.mark.asyncio
async def test_retried_turn_restarts_live_subscriber(runtime: AsyncMock, tmp_path: Path) -> None:
    log = ChunkLog()
    model = FlakyStreamingModel(turn(ExecuteCommand(command="ls")))
    dispatcher = make_dispatcher(runtime, tmp_path, model, on_chunk=log)

    outcome = await dispatcher.run_turn("ls", Session(token="tok"))

    assert len(model.calls) == 2
    assert log.resets == 2
    assert len(log.chunks) == 1
    assert "first attempt" not in log.chunks[0]
    assert '"command":"ls"' in log.chunks[0]
    assert outcome.observation.startswith('Command "ls" executed')
