# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from typing import Literal

from pydantic import BaseModel, ConfigDict


class SandboxHandle(BaseModel):
    """Identifies the single reusable sandbox container.

    Attributes:
        name: The fixed container name.
        state: Whether the container is running or stopped.
        container_id: The runtime's identifier, when known.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    state: Literal["running", "stopped"]
    container_id: str | None = None


class ExecutionResult(BaseModel):
    """Represents the output of one command run inside the sandbox.

    Attributes:
        stdout: Standard output captured from the command.
        stderr: Standard error captured from the command.
        exit_code: The exit status if the runtime reported one. Informational only.
        execution_duration: Wall-clock duration of the call in seconds.
    """

    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    execution_duration: float = 0.0
