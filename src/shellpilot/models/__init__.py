# src/shellpilot/models/__init__.py

"""
Data models for decisions, execution results and session state.
"""

from .decision import (
    AgentAction,
    AgentDecision,
    EditSpec,
    ExecuteCommand,
    LineOperation,
    LineOps,
    LineRange,
    Lines,
    ProtocolComplete,
    UpdateFile,
    WholeFile,
)
from .execution import ExecutionResult, SandboxHandle
from .result import Err, ErrorKind, Ok, Result
from .session import INITIAL_OBSERVATION, Session

__all__ = [
    "AgentAction",
    "AgentDecision",
    "EditSpec",
    "Err",
    "ErrorKind",
    "ExecuteCommand",
    "ExecutionResult",
    "INITIAL_OBSERVATION",
    "LineOperation",
    "LineOps",
    "LineRange",
    "Lines",
    "Ok",
    "ProtocolComplete",
    "Result",
    "SandboxHandle",
    "Session",
    "UpdateFile",
    "WholeFile",
]
