"""
EchoMesh - Send Rate Limiting

This module enforces a minimum interval between outbound sends of a room
session. A send attempted inside the cooldown is rejected outright; it is
not queued and not retried.

Author: echomesh contributors
Version: 1.0.0
"""

import logging
import time
from threading import Lock
from typing import Callable, Optional

from .constants import SEND_COOLDOWN
from .errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class SendCooldown:
    """Cooldown timestamp for outbound sends.

    Attributes:
        interval: Minimum seconds between two accepted sends
        clock: Monotonic time source (injectable for tests)
        last_send: Timestamp of the last accepted send, or None
        lock: Thread lock for synchronization
    """

    def __init__(
        self, interval: float = SEND_COOLDOWN, clock: Optional[Callable[[], float]] = None
    ):
        """Initialize the cooldown.

        Args:
            interval: Minimum interval in seconds
            clock: Time source, defaults to time.monotonic
        """
        if interval < 0:
            raise ValueError("Cooldown interval must not be negative")

        self.interval = interval
        self.clock = clock or time.monotonic
        self.last_send: Optional[float] = None
        self.lock = Lock()

    def remaining(self) -> float:
        """Seconds left before the next send is allowed."""
        with self.lock:
            if self.last_send is None:
                return 0.0
            return max(0.0, self.interval - (self.clock() - self.last_send))

    def check(self) -> None:
        """Accept a send and stamp the time, or reject it.

        Raises:
            RateLimitExceeded: If called within interval of the last
                accepted send. The timestamp is not moved.
        """
        with self.lock:
            now = self.clock()
            if self.last_send is not None:
                elapsed = now - self.last_send
                if elapsed < self.interval:
                    retry_after = self.interval - elapsed
                    logger.debug(f"Send rejected by cooldown, retry in {retry_after:.3f}s")
                    raise RateLimitExceeded(retry_after)

            self.last_send = now

    def reset(self) -> None:
        """Forget the last send so the next one is allowed immediately."""
        with self.lock:
            self.last_send = None
