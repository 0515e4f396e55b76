"""
EchoMesh - In-memory message buffer.

Holds the messages of the current room in insertion order. Nothing here is
written to disk; the buffer is cleared on every room or key change and
entries older than the message lifetime are purged by a periodic sweep.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, Iterator, List, Optional

from .constants import MESSAGE_LIFETIME

logger = logging.getLogger(__name__)


@dataclass
class Message:
    """A message shown in the room.

    Attributes:
        text: Decrypted or locally generated text
        sender: Peer handle, or one of the local sender names
        timestamp: Seconds since the epoch when the message was buffered
        message_id: Random identifier for UI bookkeeping
    """

    text: str
    sender: str
    timestamp: float = field(default_factory=time.time)
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.timestamp

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to dictionary for display layers."""
        return {
            "message_id": self.message_id,
            "text": self.text,
            "sender": self.sender,
            "timestamp": self.timestamp,
        }


class MessageBuffer:
    """Ordered, thread-safe buffer of room messages.

    Attributes:
        lifetime: Seconds a message stays before the sweep removes it
        clock: Wall-clock time source (injectable for tests)
    """

    def __init__(
        self, lifetime: float = MESSAGE_LIFETIME, clock: Optional[Callable[[], float]] = None
    ):
        self.lifetime = lifetime
        self.clock = clock or time.time
        self._messages: List[Message] = []
        self._lock = Lock()

    def append(self, text: str, sender: str) -> Message:
        """Buffer a new message stamped with the current time."""
        message = Message(text=text, sender=sender, timestamp=self.clock())
        with self._lock:
            self._messages.append(message)
        return message

    def clear(self) -> int:
        """Remove every message. Returns how many were removed."""
        with self._lock:
            count = len(self._messages)
            self._messages.clear()
        return count

    def purge_expired(self) -> int:
        """Remove messages older than the lifetime. Returns how many."""
        now = self.clock()
        with self._lock:
            kept = [m for m in self._messages if m.age(now) < self.lifetime]
            removed = len(self._messages) - len(kept)
            self._messages = kept

        if removed:
            logger.debug(f"Purged {removed} expired messages")
        return removed

    def snapshot(self) -> List[Message]:
        """Copy of the buffered messages, oldest first."""
        with self._lock:
            return list(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)
