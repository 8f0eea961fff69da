# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

"""Typed model decisions.

The model answers every turn with one JSON object::

    {"thought": "...", "displayText": "...",
     "action": {"tool": "execute_command" | "update_file" | "protocol_complete",
                "parameters": {...} | null}}

`AgentDecision.from_wire` turns that loose shape into closed variants. Anything
that does not fit is a `ProtocolError`.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from shellpilot.errors import ProtocolError

FALLBACK_THOUGHT = "The model response could not be parsed as a decision object; ending the task."


class WholeFile(BaseModel):
    """Replace the entire file with `content`."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["whole_file"] = "whole_file"
    content: str


class Lines(BaseModel):
    """Replace the entire file with `lines` joined by newlines."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["lines"] = "lines"
    lines: list[str]

    @property
    def content(self) -> str:
        return "\n".join(self.lines)


class LineRange(BaseModel):
    """Replace the 1-based inclusive range [start_line, end_line] with `content`."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["line_range"] = "line_range"
    content: str
    start_line: int = Field(ge=1)
    end_line: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_order(self) -> "LineRange":
        if self.end_line < self.start_line:
            raise ValueError(f"endLine ({self.end_line}) must be >= startLine ({self.start_line})")
        return self


class LineOperation(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: Literal["insert", "replace", "delete"]
    content: str | None = None

    @model_validator(mode="after")
    def _require_content(self) -> "LineOperation":
        if self.action != "delete" and self.content is None:
            raise ValueError(f"'{self.action}' operation requires 'content'")
        return self


class LineOps(BaseModel):
    """Sparse per-line edits keyed by 1-based line number."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["line_ops"] = "line_ops"
    ops: dict[int, LineOperation]

    @field_validator("ops")
    @classmethod
    def _check_line_numbers(cls, ops: dict[int, LineOperation]) -> dict[int, LineOperation]:
        bad = [n for n in ops if n < 1]
        if bad:
            raise ValueError(f"line numbers must be >= 1, got {bad}")
        return ops


EditSpec = Annotated[Union[WholeFile, Lines, LineRange, LineOps], Field(discriminator="kind")]


class ExecuteCommand(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool: Literal["execute_command"] = "execute_command"
    command: str
    confirm: bool = False
    prompt: str | None = None


class UpdateFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool: Literal["update_file"] = "update_file"
    file: str
    edit_spec: EditSpec
    confirm: bool = False
    prompt: str | None = None


class ProtocolComplete(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool: Literal["protocol_complete"] = "protocol_complete"


AgentAction = Annotated[Union[ExecuteCommand, UpdateFile, ProtocolComplete], Field(discriminator="tool")]


class AgentDecision(BaseModel):
    """The model's reply for one turn: reasoning, optional display text, one action."""

    model_config = ConfigDict(frozen=True)

    thought: str = ""
    display_text: str | None = None
    action: AgentAction
    is_fallback: bool = False

    @classmethod
    def fallback(cls, reason: str | None = None) -> "AgentDecision":
        """Synthetic decision used when the model output cannot be parsed."""
        thought = FALLBACK_THOUGHT if not reason else f"{FALLBACK_THOUGHT} ({reason})"
        return cls(
            thought=thought,
            display_text="Could not parse the model response.",
            action=ProtocolComplete(),
            is_fallback=True,
        )

    @classmethod
    def from_wire(cls, payload: Any) -> "AgentDecision":
        """Build a decision from the model's JSON object.

        Args:
            payload: The decoded JSON value.

        Returns:
            AgentDecision: The validated decision.

        Raises:
            ProtocolError: If the shape, tool name or parameters are invalid.
        """
        if not isinstance(payload, dict):
            raise ProtocolError(f"Decision must be a JSON object, got {type(payload).__name__}")

        action = payload.get("action")
        if not isinstance(action, dict):
            raise ProtocolError("Decision is missing the 'action' object")

        tool = action.get("tool")
        params = action.get("parameters")

        try:
            parsed: ExecuteCommand | UpdateFile | ProtocolComplete
            if tool == "execute_command":
                parsed = ExecuteCommand.model_validate(_require_params(tool, params))
            elif tool == "update_file":
                parsed = _update_file_from_wire(_require_params(tool, params))
            elif tool == "protocol_complete":
                parsed = ProtocolComplete()
            else:
                raise ProtocolError(f"Unknown tool: {tool!r}")

            return cls(
                thought=payload.get("thought") or "",
                display_text=payload.get("displayText"),
                action=parsed,
            )
        except ValidationError as e:
            raise ProtocolError(f"Invalid parameters for {tool!r}: {e}") from e


def _require_params(tool: str, params: Any) -> dict[str, Any]:
    if not isinstance(params, dict):
        raise ProtocolError(f"Tool {tool!r} requires a 'parameters' object")
    return params


def _update_file_from_wire(params: dict[str, Any]) -> UpdateFile:
    return UpdateFile(
        file=params.get("file"),
        edit_spec=edit_spec_from_wire(params),
        confirm=bool(params.get("confirm", False)),
        prompt=params.get("prompt"),
    )


def edit_spec_from_wire(params: dict[str, Any]) -> WholeFile | Lines | LineRange | LineOps:
    """Pick the edit encoding from `update_file` parameters.

    `line_operations` wins over `code_lines`, which wins over `code`. A range is
    only applied when `edit` is true and both bounds are present.

    Raises:
        ProtocolError: If no content is given or the chosen encoding is invalid.
    """
    try:
        return _edit_spec(params)
    except ValidationError as e:
        raise ProtocolError(f"Invalid edit: {e}") from e


def _edit_spec(params: dict[str, Any]) -> WholeFile | Lines | LineRange | LineOps:
    if params.get("line_operations") is not None:
        return LineOps(ops=params["line_operations"])

    start, end = params.get("startLine"), params.get("endLine")
    ranged = bool(params.get("edit")) and start is not None and end is not None

    if params.get("code_lines") is not None:
        lines = params["code_lines"]
        if not isinstance(lines, list):
            raise ProtocolError("'code_lines' must be an array of strings")
        if ranged:
            return LineRange(content="\n".join(str(line) for line in lines), start_line=start, end_line=end)
        return Lines(lines=lines)

    if params.get("code") is not None:
        if ranged:
            return LineRange(content=params["code"], start_line=start, end_line=end)
        return WholeFile(content=params["code"])

    raise ProtocolError("update_file requires one of 'code', 'code_lines' or 'line_operations'")
