# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

"""Interactive terminal front end.

Reads one request per line, streams the model's thought while it arrives,
then prints the display text and the observation. ``exit`` or ``quit`` leaves
the loop; ``/logout`` drops the cached credential.
"""

import sys

import anyio

from shellpilot.agent import AgentAsync
from shellpilot.config import AgentConfig
from shellpilot.credentials import TokenStore
from shellpilot.errors import FatalError
from shellpilot.stream import ThoughtPreview
from shellpilot.utils.logger import logger

EXIT_WORDS = frozenset({"exit", "quit"})
LOGOUT = "/logout"


async def _ainput(prompt: str) -> str:
    return await anyio.to_thread.run_sync(input, prompt)


async def confirm(question: str) -> bool:
    """Ask a yes/no question on the terminal. Anything but y/yes declines."""
    answer = await _ainput(f"{question} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


class ThoughtPrinter:
    """Live-display subscriber that echoes the model's reasoning as it streams."""

    def __init__(self) -> None:
        self.preview = ThoughtPreview()

    def reset(self) -> None:
        """End the current preview line and start a new preview."""
        if self.preview.shown:
            print()
        self.preview = ThoughtPreview()

    def __call__(self, chunk: str) -> None:
        text = self.preview.feed(chunk)
        if text:
            print(text, end="", flush=True)


def make_reauthenticator(store: TokenStore):
    async def reauthenticate() -> str | None:
        print("Authentication required.")
        token = (await _ainput("Paste a new API token (empty to skip): ")).strip()
        if not token:
            return None
        store.save(token)
        return token

    return reauthenticate


async def run(config: AgentConfig | None = None) -> int:
    """Run the read-decide-act loop until the user exits.

    Returns:
        int: The process exit code.
    """
    config = config or AgentConfig()
    store = TokenStore(config.token_path)
    printer = ThoughtPrinter()

    try:
        async with AgentAsync(
            config,
            confirm=confirm,
            reauthenticate=make_reauthenticator(store),
            on_chunk=printer,
            credentials=store,
        ) as agent:
            if agent.session.token is None:
                token = await make_reauthenticator(store)()
                agent.session = agent.session.with_token(token)

            while True:
                user_input = (await _ainput("\n> ")).strip()
                if not user_input:
                    continue
                if user_input.lower() in EXIT_WORDS:
                    break
                if user_input == LOGOUT:
                    store.invalidate()
                    released = await agent.dispatcher.release_open_page(agent.session)
                    agent.session = released.with_token(None)
                    print("Logged out.")
                    continue

                outcome = await agent.ask(user_input)
                printer.reset()
                if outcome.decision is not None and outcome.decision.display_text:
                    print(outcome.decision.display_text)
                print(outcome.observation)
    except FatalError as e:
        logger.error(f"Cannot continue: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    """Entry point for the interactive agent."""
    try:
        code = anyio.run(run)
    except (KeyboardInterrupt, EOFError):
        code = 130
    sys.exit(code)


if __name__ == "__main__":  # pragma: no cover
    main()
