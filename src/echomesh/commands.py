"""
EchoMesh - Local slash directives.

Input starting with "/" is handled here instead of being encrypted and
sent. Directives never touch the network or the room key; they only
produce local lines for the message buffer. /joinroom is the one directive
that asks the session to change rooms, which it reports through
DirectiveResult.join_room_id.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .constants import SENDER_ECHO, SENDER_ME, SENDER_SYSTEM

logger = logging.getLogger(__name__)

DIRECTIVE_PREFIX = "/"

HELP_LINES = [
    "Available commands:",
    "/room - Shows the current room id",
    "/joinroom <room> - Join a different room",
    "/status - Show your current status",
    "/clear - Clears the chat",
    "/me <message> - Perform an action",
    "/whisper <user> <message> - Show a private note (local only)",
    "/echo <message> - Repeat back your message",
    "/help - Show this list",
]


@dataclass
class DirectiveResult:
    """What a directive asks the session to do.

    Attributes:
        lines: (sender, text) pairs to append to the buffer
        clear: Clear the buffer before appending lines
        join_room_id: Room id to join, for /joinroom
    """

    lines: List[Tuple[str, str]] = field(default_factory=list)
    clear: bool = False
    join_room_id: Optional[str] = None

    def say(self, text: str, sender: str = SENDER_SYSTEM) -> "DirectiveResult":
        self.lines.append((sender, text))
        return self


def is_directive(text: str) -> bool:
    return text.startswith(DIRECTIVE_PREFIX)


def handle_directive(text: str, room_id: Optional[str], status: str) -> DirectiveResult:
    """
    Interpret a slash directive.

    Args:
        text: Raw input, including the leading "/"
        room_id: Current room id, if any
        status: Human-readable session state for /status

    Returns:
        DirectiveResult describing the local effect
    """
    parts = text.split()
    command = parts[0] if parts else text
    args = parts[1:]
    result = DirectiveResult()

    if command == "/room":
        return result.say(f"Current room: {room_id or 'none'}")

    if command == "/status":
        return result.say(f"Status: {status}")

    if command == "/clear":
        result.clear = True
        return result.say("Chat cleared.")

    if command == "/help":
        for line in HELP_LINES:
            result.say(line)
        return result

    if command == "/joinroom":
        if not args:
            return result.say("Usage: /joinroom <room_id>")
        result.join_room_id = args[0]
        return result

    if command == "/me":
        if not args:
            return result.say("Usage: /me <message>")
        return result.say(f"*{' '.join(args)}*", SENDER_ME)

    if command == "/whisper":
        if len(args) < 2:
            return result.say("Usage: /whisper <user> <message>")
        return result.say(f"(whisper to {args[0]}): {' '.join(args[1:])}", SENDER_ME)

    if command == "/echo":
        if not args:
            return result.say("Usage: /echo <message>")
        return result.say(" ".join(args), SENDER_ECHO)

    logger.debug(f"Unknown directive: {command}")
    return result.say(f"Unknown command: {command}. Type /help for a list of commands.")
