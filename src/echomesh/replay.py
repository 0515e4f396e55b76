"""
EchoMesh - Replay protection for inbound messages.

A ReplayGuard remembers the nonces seen under the current key epoch. The
transport may duplicate or re-deliver payloads, and an attacker may resend
captured ones; both are rejected here before plaintext reaches the buffer.

The window is bounded. When it is full the oldest nonce is evicted (FIFO),
so a nonce evicted from a full window would be accepted again.
"""

import base64
import logging
from collections import deque
from threading import Lock
from typing import Deque, Set

from .constants import REPLAY_WINDOW_SIZE
from .errors import ErrorCode, ReplayDetected

logger = logging.getLogger(__name__)


class ReplayGuard:
    """Bounded set of nonce encodings scoped to one key epoch.

    Attributes:
        max_size: Maximum number of nonces remembered
        epoch: Key epoch the window currently belongs to
        lock: Thread lock making check-and-record atomic
    """

    def __init__(self, max_size: int = REPLAY_WINDOW_SIZE, epoch: int = 0):
        if max_size <= 0:
            raise ValueError("Replay window size must be positive")

        self.max_size = max_size
        self.epoch = epoch
        self._seen: Set[str] = set()
        self._order: Deque[str] = deque()
        self.lock = Lock()

    def check_and_record(self, nonce: bytes) -> None:
        """Record a nonce, failing if it was already seen.

        Membership test and insertion happen under one lock, so two
        concurrent deliveries of the same message cannot both pass.

        Raises:
            ReplayDetected: If the nonce is already in the window. The
                window is left unchanged.
        """
        encoded = base64.b64encode(nonce).decode("ascii")

        with self.lock:
            if encoded in self._seen:
                raise ReplayDetected(
                    ErrorCode.E207_REPLAY_DETECTED,
                    "Nonce already seen under the current key",
                    {"epoch": self.epoch},
                )

            if len(self._order) >= self.max_size:
                evicted = self._order.popleft()
                self._seen.discard(evicted)

            self._seen.add(encoded)
            self._order.append(encoded)

    def reset(self, epoch: int) -> None:
        """Forget every nonce and bind the window to a new key epoch."""
        with self.lock:
            cleared = len(self._seen)
            self._seen.clear()
            self._order.clear()
            self.epoch = epoch

        logger.debug(f"Replay window reset for epoch {epoch} ({cleared} nonces dropped)")

    def __contains__(self, nonce: bytes) -> bool:
        encoded = base64.b64encode(nonce).decode("ascii")
        with self.lock:
            return encoded in self._seen

    def __len__(self) -> int:
        with self.lock:
            return len(self._seen)
