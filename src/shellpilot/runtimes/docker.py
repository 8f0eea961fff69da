import asyncio
import io
import shlex
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.models.containers import Container
from loguru import logger

from shellpilot.demux import demux_chunks
from shellpilot.errors import ExecutionError, ImageMissingError, RuntimeUnavailableError, SandboxNotFoundError
from shellpilot.models import ExecutionResult, SandboxHandle
from shellpilot.runtime import SandboxRuntime

SHELL = ["/bin/sh", "-c"]
READ_SIZE = 4096


class DockerRuntime(SandboxRuntime):
    """
    Docker-based implementation of the SandboxRuntime.

    Owns one long-lived named container. It is created once from a local image,
    started when stopped, and never removed here.
    """

    def __init__(
        self,
        image: str = "shellpilot-sandbox:latest",
        container_name: str = "shellpilot-sandbox",
        work_dir: str = "/workspace",
        host_workspace: Path = Path("sandbox"),
        timeout: float | None = 300.0,
    ):
        try:
            self.client = docker.from_env()
        except DockerException as e:
            raise RuntimeUnavailableError(f"Docker daemon is not reachable: {e}") from e
        self.image = image
        self.container_name = container_name
        self.work_dir = work_dir
        self.host_workspace = Path(host_workspace)
        self.timeout = timeout

    def _find_container(self) -> Container | None:
        try:
            return self.client.containers.get(self.container_name)
        except NotFound:
            return None
        except DockerException as e:
            raise RuntimeUnavailableError(f"Failed to query container '{self.container_name}': {e}") from e

    def _start(self, container: Container) -> None:
        try:
            container.start()
        except APIError as e:
            # The daemon may have started it between our inspect and this call.
            if e.status_code == 304 or "already" in str(e).lower():
                logger.warning(f"Sandbox {self.container_name} was already running")
                return
            raise RuntimeUnavailableError(f"Failed to start sandbox '{self.container_name}': {e}") from e

    def _ensure_sync(self) -> SandboxHandle:
        container = self._find_container()
        if container is not None:
            if container.status != "running":
                logger.info(f"Starting stopped sandbox {self.container_name}")
                self._start(container)
            return SandboxHandle(name=self.container_name, state="running", container_id=container.id)

        try:
            self.client.images.get(self.image)
        except ImageNotFound as e:
            raise ImageMissingError(
                f"Sandbox image '{self.image}' not found. Build or pull it before starting the agent."
            ) from e
        except DockerException as e:
            raise RuntimeUnavailableError(f"Failed to inspect image '{self.image}': {e}") from e

        host_dir = self.host_workspace.resolve()
        host_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Creating sandbox {self.container_name} from {self.image} (workspace {host_dir})")
        try:
            container = self.client.containers.create(
                self.image,
                command="tail -f /dev/null",
                name=self.container_name,
                tty=True,
                working_dir=self.work_dir,
                volumes={str(host_dir): {"bind": self.work_dir, "mode": "rw"}},
            )
        except APIError as e:
            if e.status_code != 409:
                raise RuntimeUnavailableError(f"Failed to create sandbox '{self.container_name}': {e}") from e
            # Name conflict: someone else created it first.
            container = self.client.containers.get(self.container_name)

        self._start(container)
        logger.info(f"Docker sandbox ready: {container.short_id}")
        return SandboxHandle(name=self.container_name, state="running", container_id=container.id)

    async def ensure_sandbox(self) -> SandboxHandle:
        """
        Create or reuse the named sandbox container.
        """
        return await asyncio.to_thread(self._ensure_sync)

    def _running_container(self) -> Container:
        container = self._find_container()
        if container is None or container.status != "running":
            raise SandboxNotFoundError(f"Sandbox container '{self.container_name}' not found or not running.")
        return container

    def _exec_sync(self, command: str) -> tuple[str, str, int | None]:
        container = self._running_container()
        try:
            exec_id = self.client.api.exec_create(
                container.id,
                SHELL + [command],
                stdout=True,
                stderr=True,
                workdir=self.work_dir,
            )["Id"]
            sock = self.client.api.exec_start(exec_id, socket=True)
        except NotFound as e:
            raise SandboxNotFoundError(f"Sandbox container '{self.container_name}' disappeared: {e}") from e

        stdout, stderr = io.BytesIO(), io.BytesIO()
        try:
            demux_chunks(_iter_socket(sock), stdout, stderr)
        finally:
            sock.close()

        return (
            stdout.getvalue().decode("utf-8", errors="replace"),
            stderr.getvalue().decode("utf-8", errors="replace"),
            self._exit_code(exec_id),
        )

    def _exit_code(self, exec_id: str) -> int | None:
        try:
            code = self.client.api.exec_inspect(exec_id).get("ExitCode")
        except DockerException as e:
            logger.debug(f"Could not inspect exec {exec_id}: {e}")
            return None
        return code if isinstance(code, int) else None

    def _restart(self) -> None:
        container = self._find_container()
        if container is None:
            return
        try:
            container.restart()
        except DockerException as e:
            logger.error(f"Failed to restart sandbox {self.container_name}: {e}")

    async def execute(self, command: str) -> ExecutionResult:
        """
        Run a shell command and capture separated output.
        """
        logger.info(f"Executing command in sandbox {self.container_name}")

        start_time = time.time()
        try:
            stdout, stderr, exit_code = await asyncio.wait_for(
                asyncio.to_thread(self._exec_sync, command),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                f"Execution timed out ({self.timeout}s). "
                f"Restarting container {self.container_name} to cleanup process."
            )
            await asyncio.to_thread(self._restart)
            raise TimeoutError(f"Execution exceeded {self.timeout} seconds limit.") from e
        except DockerException as e:
            logger.error(f"Execution failed: {e}")
            raise ExecutionError(f"Docker error: {e}") from e

        duration = time.time() - start_time
        logger.debug(f"Command finished in {duration:.3f}s with exit code {exit_code}")
        return ExecutionResult(stdout=stdout, stderr=stderr, exit_code=exit_code, execution_duration=duration)

    async def list_files(self, path: str = ".") -> list[str]:
        """
        List files in the directory.
        """
        result = await self.execute(f"ls -F {shlex.quote(path)}")
        if result.stderr:
            raise ExecutionError(result.stderr.strip())
        return [f.strip() for f in result.stdout.splitlines() if f.strip()]

    async def read_file(self, path: str) -> str:
        """
        Read a file from the sandbox.
        """
        result = await self.execute(f"cat {shlex.quote(path)}")
        if result.stderr:
            raise ExecutionError(result.stderr.strip())
        return result.stdout


def _iter_socket(sock: Any, size: int = READ_SIZE) -> Iterator[bytes]:
    read = sock.read if hasattr(sock, "read") else sock.recv
    while True:
        chunk = read(size)
        if not chunk:
            return
        yield chunk
