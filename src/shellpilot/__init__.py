# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

"""
shellpilot: a conversational shell agent that drives a sandboxed container
"""

__version__ = "0.1.0"

from .agent import AgentAsync
from .config import AgentConfig
from .dispatcher import ActionDispatcher, TurnOutcome
from .models import AgentDecision, ExecutionResult, Session
from .runtime import SandboxRuntime
from .runtimes.docker import DockerRuntime

__all__ = [
    "AgentAsync",
    "AgentConfig",
    "ActionDispatcher",
    "TurnOutcome",
    "AgentDecision",
    "ExecutionResult",
    "Session",
    "SandboxRuntime",
    "DockerRuntime",
]
