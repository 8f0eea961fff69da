# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

"""Explicit outcome values for remote calls and file I/O."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    AUTHENTICATION = "authentication"
    PROTOCOL = "protocol"
    EXECUTION = "execution"
    FATAL = "fatal"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    status: int | None = None

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
