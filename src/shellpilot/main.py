# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from typing import Any, cast

from mcp.server.fastmcp import FastMCP
from mcp.types import TextContent

from shellpilot.mcp import SandboxMCP
from shellpilot.utils.logger import logger

# Initialize Sandbox Logic
sandbox = SandboxMCP()

# Initialize MCP Server
mcp = FastMCP("shellpilot")


@mcp.tool()  # type: ignore[misc]
async def execute_command(command: str) -> list[TextContent]:
    """
    Execute a shell command in the sandbox (/bin/sh -c).
    Returns stdout and stderr.
    """
    try:
        result = await sandbox.execute_command(command)
    except Exception as e:
        logger.error(f"execute_command failed: {e}")
        return [TextContent(type="text", text=f"Error executing command: {e!s}")]

    output: list[TextContent] = []

    stdout = cast(str, result.get("stdout", ""))
    stderr = cast(str, result.get("stderr", ""))
    exit_code = cast(int | None, result.get("exit_code"))

    if stdout:
        output.append(TextContent(type="text", text=f"STDOUT:\n{stdout}"))
    if stderr:
        output.append(TextContent(type="text", text=f"STDERR:\n{stderr}"))
    if not stdout and not stderr:
        output.append(TextContent(type="text", text="Command produced no output."))
    if exit_code is not None:
        output.append(TextContent(type="text", text=f"Exit Code: {exit_code}"))

    return output


@mcp.tool()  # type: ignore[misc]
async def update_file(
    file: str,
    code: str | None = None,
    code_lines: list[str] | None = None,
    line_operations: dict[str, dict[str, Any]] | None = None,
    edit: bool = False,
    startLine: int | None = None,
    endLine: int | None = None,
) -> str:
    """
    Create or modify a file in the sandbox workspace.
    Provide exactly one of code, code_lines or line_operations.
    """
    parameters = {
        "code": code,
        "code_lines": code_lines,
        "line_operations": line_operations,
        "edit": edit,
        "startLine": startLine,
        "endLine": endLine,
    }
    try:
        return await sandbox.update_file(file, parameters)
    except Exception as e:
        return f"Error updating file: {e!s}"


@mcp.tool()  # type: ignore[misc]
async def list_files(path: str = ".") -> list[str]:
    """
    List files in a sandbox directory.
    """
    try:
        return await sandbox.list_files(path)
    except Exception as e:
        return [f"Error listing files: {e!s}"]


@mcp.tool()  # type: ignore[misc]
async def read_file(path: str) -> str:
    """
    Read a file from the sandbox.
    """
    try:
        return await sandbox.read_file(path)
    except Exception as e:
        return f"Error reading file: {e!s}"


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
