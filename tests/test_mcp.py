from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from shellpilot.config import AgentConfig
from shellpilot.errors import ProtocolError
from shellpilot.mcp import SandboxMCP
from shellpilot.models import ExecutionResult, SandboxHandle


@pytest.fixture
def mock_runtime() -> Any:
    runtime = AsyncMock()
    runtime.ensure_sandbox.return_value = SandboxHandle(name="shellpilot-sandbox", state="running")
    runtime.execute.return_value = ExecutionResult(stdout="out", stderr="err", exit_code=0, execution_duration=1.0)
    runtime.list_files.return_value = ["a.txt", "src/"]
    runtime.read_file.return_value = "hello"
    return runtime


@pytest.fixture
def mock_factory(mock_runtime: Any) -> Any:
    with patch("shellpilot.mcp.SandboxFactory.get_runtime", return_value=mock_runtime) as mock:
        yield mock


@pytest.mark.asyncio
async def test_execute_command(config: AgentConfig, mock_factory: Any, mock_runtime: Any) -> None:
    mcp = SandboxMCP(config)

    result = await mcp.execute_command("ls")

    mock_runtime.ensure_sandbox.assert_awaited_once()
    mock_runtime.execute.assert_awaited_once_with("ls")
    assert result["stdout"] == "out"
    assert result["stderr"] == "err"
    assert result["exit_code"] == 0


@pytest.mark.asyncio
async def test_sandbox_is_ensured_once(config: AgentConfig, mock_factory: Any, mock_runtime: Any) -> None:
    mcp = SandboxMCP(config)

    await mcp.execute_command("ls")
    await mcp.list_files()
    assert await mcp.read_file("a.txt") == "hello"

    mock_factory.assert_called_once()
    mock_runtime.ensure_sandbox.assert_awaited_once()
    mock_runtime.list_files.assert_awaited_once_with(".")


@pytest.mark.asyncio
async def test_update_file_writes_workspace(config: AgentConfig, mock_factory: Any) -> None:
    mcp = SandboxMCP(config)

    message = await mcp.update_file("src/app.py", {"code_lines": ["print('hi')"]})

    assert message == "File src/app.py updated successfully."
    assert (Path(config.host_workspace) / "src" / "app.py").read_text() == "print('hi')"
    # Editing files does not need the container.
    mock_factory.assert_not_called()


@pytest.mark.asyncio
async def test_update_file_errors(config: AgentConfig, mock_factory: Any) -> None:
    mcp = SandboxMCP(config)

    with pytest.raises(ProtocolError):
        await mcp.update_file("a.txt", {})
    with pytest.raises(RuntimeError, match="File not found"):
        await mcp.update_file("a.txt", {"code": "x", "edit": True, "startLine": 1, "endLine": 1})


@pytest.mark.asyncio
async def test_server_tools_format_output() -> None:
    import shellpilot.main as server

    sandbox = AsyncMock()
    sandbox.execute_command.return_value = {"stdout": "out", "stderr": "", "exit_code": 0}
    with patch.object(server, "sandbox", sandbox):
        contents = await server.execute_command("ls")

    texts = [content.text for content in contents]
    assert texts == ["STDOUT:\nout", "Exit Code: 0"]


@pytest.mark.asyncio
async def test_server_tools_report_errors_as_text() -> None:
    import shellpilot.main as server

    sandbox = AsyncMock()
    sandbox.execute_command.side_effect = RuntimeError("daemon down")
    sandbox.update_file.side_effect = ProtocolError("update_file requires one of 'code'")
    sandbox.read_file.side_effect = RuntimeError("cat failed")
    with patch.object(server, "sandbox", sandbox):
        contents = await server.execute_command("ls")
        updated = await server.update_file("a.txt")
        read = await server.read_file("a.txt")

    assert contents[0].text == "Error executing command: daemon down"
    assert updated.startswith("Error updating file:")
    assert read == "Error reading file: cat failed"


@pytest.mark.asyncio
async def test_server_update_file_passes_parameters() -> None:
    import shellpilot.main as server

    sandbox = AsyncMock()
    sandbox.update_file.return_value = "File a.txt updated successfully."
    with patch.object(server, "sandbox", sandbox):
        await server.update_file("a.txt", code="x", edit=True, startLine=2, endLine=3)

    file, parameters = sandbox.update_file.call_args[0]
    assert file == "a.txt"
    assert parameters["code"] == "x"
    assert parameters["edit"] is True
    assert (parameters["startLine"], parameters["endLine"]) == (2, 3)
