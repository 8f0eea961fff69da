# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

"""Exception taxonomy shared by the runtime, the transport and the dispatcher."""


class ShellpilotError(Exception):
    """Base class for all shellpilot errors."""


class TransientError(ShellpilotError):
    """The remote service is temporarily unavailable. Safe to retry."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class AuthenticationError(ShellpilotError):
    """The credential was rejected (401/403/404 class responses)."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class ProtocolError(ShellpilotError):
    """The model emitted something that does not satisfy the decision schema."""


class ExecutionError(ShellpilotError):
    """A command or file operation failed. Reported back to the model, never fatal."""


class SandboxNotFoundError(ExecutionError):
    """The named sandbox container does not exist or is not running."""


class InvalidPathError(ExecutionError):
    """A file path tried to escape the working root."""


class FatalError(ShellpilotError):
    """An environment prerequisite is missing. Ends the session."""


class ImageMissingError(FatalError):
    """The sandbox image is not present locally."""


class RuntimeUnavailableError(FatalError):
    """The container daemon cannot be reached."""
