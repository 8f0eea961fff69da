import asyncio
from typing import Any

from loguru import logger

from shellpilot.audit import AuditLogger
from shellpilot.config import AgentConfig
from shellpilot.editor import FileEditor
from shellpilot.factory import SandboxFactory
from shellpilot.models import Err, ExecutionResult
from shellpilot.models.decision import edit_spec_from_wire
from shellpilot.runtime import SandboxRuntime


class SandboxMCP:
    """
    MCP server logic wrapper for the shellpilot sandbox.
    Exposes the command channel and the file editor as tools.
    The sandbox is ensured once, on first use.
    """

    def __init__(self, config: AgentConfig | None = None):
        self.config = config or AgentConfig()
        self.audit = AuditLogger(enabled=self.config.enable_audit_logging)
        self.editor = FileEditor(self.config.host_workspace)
        self._runtime: SandboxRuntime | None = None
        self._creation_lock = asyncio.Lock()

    async def _get_runtime(self) -> SandboxRuntime:
        if self._runtime is not None:
            return self._runtime

        async with self._creation_lock:
            if self._runtime is None:
                runtime = SandboxFactory.get_runtime(self.config)
                await runtime.ensure_sandbox()
                self._runtime = runtime
        return self._runtime

    async def execute_command(self, command: str) -> dict[str, Any]:
        """
        Execute a shell command in the sandbox.
        """
        runtime = await self._get_runtime()
        self.audit.log_pre_execution("command", command, command)
        result: ExecutionResult = await runtime.execute(command)
        return result.model_dump()

    async def update_file(self, file: str, parameters: dict[str, Any]) -> str:
        """
        Apply an update_file edit to the sandbox workspace.
        """
        spec = edit_spec_from_wire(parameters)
        self.audit.log_pre_execution("file", file, spec.model_dump_json())
        result = await self.editor.apply(file, spec)
        if isinstance(result, Err):
            raise RuntimeError(result.message)
        logger.info(f"MCP updated {file}")
        return f"File {file} updated successfully."

    async def list_files(self, path: str = ".") -> list[str]:
        runtime = await self._get_runtime()
        return await runtime.list_files(path)

    async def read_file(self, path: str) -> str:
        runtime = await self._get_runtime()
        return await runtime.read_file(path)
