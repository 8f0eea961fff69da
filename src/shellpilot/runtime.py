# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from abc import ABC, abstractmethod

from shellpilot.models import ExecutionResult, SandboxHandle


class SandboxRuntime(ABC):
    """
    Abstract base class for sandbox runtimes.
    Follows the Strategy Pattern.
    """

    @abstractmethod
    async def ensure_sandbox(self) -> SandboxHandle:
        """Create or reuse the named sandbox and make sure it is running.

        Idempotent: a second call finds the running sandbox and does nothing.

        Returns:
            SandboxHandle: The running sandbox.

        Raises:
            ImageMissingError: If the sandbox has to be created and its image is absent.
            RuntimeUnavailableError: If the container daemon cannot be reached.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def execute(self, command: str) -> ExecutionResult:
        """Run a shell command inside the running sandbox.

        The whole string is interpreted by `/bin/sh -c`; quoting is the caller's job.
        This does not provision the sandbox.

        Args:
            command: The shell command line.

        Returns:
            ExecutionResult: Separated stdout and stderr text.

        Raises:
            SandboxNotFoundError: If the sandbox is absent or stopped.
            TimeoutError: If the command exceeds the configured timeout.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def list_files(self, path: str = ".") -> list[str]:
        """List directory entries inside the sandbox.

        Args:
            path: Directory path, relative to the sandbox working directory.

        Returns:
            list[str]: Entry names with type suffixes (as `ls -F` prints them).

        Raises:
            ExecutionError: If the listing fails.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def read_file(self, path: str) -> str:
        """Read a text file inside the sandbox.

        Raises:
            ExecutionError: If the file cannot be read.
        """
        pass  # pragma: no cover
