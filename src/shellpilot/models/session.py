# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from dataclasses import dataclass, replace

INITIAL_OBSERVATION = "You are at the beginning of the session."


@dataclass(frozen=True)
class Session:
    """Conversation state threaded explicitly through the agent loop.

    Each turn receives a Session and returns a new one; nothing reads it from
    module state.

    Attributes:
        page_id: Server-side continuation token, set from the first response that has one.
        last_observation: Summary of the last action, fed into the next prompt.
        token: Bearer credential for remote calls. None means re-authentication is needed.
    """

    page_id: int | None = None
    last_observation: str = ""
    token: str | None = None

    def observe(self, observation: str) -> "Session":
        return replace(self, last_observation=observation)

    def with_page(self, page_id: int | None) -> "Session":
        return replace(self, page_id=page_id)

    def with_token(self, token: str | None) -> "Session":
        return replace(self, token=token)
