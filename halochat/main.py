"""Terminal harness for talking to the configured chat endpoint.

Usage:
    python -m halochat.main

Commands: ``/clear`` starts a new session, ``/dark`` toggles the dark-mode
preference, ``/quit`` exits. Every other line is submitted as a turn.
"""

import asyncio
import contextlib
import logging

from halochat.activity import start_inactivity_watch
from halochat.app import create_conversation
from halochat.config import settings
from halochat.preferences import Preferences
from halochat.storage import open_storage

logger = logging.getLogger(__name__)


async def run() -> None:
    """Read lines from stdin and submit them until ``/quit`` or EOF."""
    if not settings.chat_endpoint_url:
        logger.warning("CHAT_ENDPOINT_URL is empty — every turn will fail")

    storage = open_storage()
    preferences = Preferences(storage)
    conversation = create_conversation(storage)
    watch = start_inactivity_watch(conversation.sessions)

    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            command = line.strip()
            if command == "/quit":
                break
            if command == "/clear":
                session = conversation.clear()
                print(f"[new session {session.id}]")
                continue
            if command == "/dark":
                enabled = preferences.toggle_dark_mode()
                print(f"[dark mode {'on' if enabled else 'off'}]")
                continue

            result = await conversation.submit(line)
            if result is not None:
                print(conversation.transcript[-1].text)
    finally:
        watch.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watch


def main() -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level),
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
