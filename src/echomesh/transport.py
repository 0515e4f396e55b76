"""
EchoMesh - Transport contract and in-memory loopback.

The real peer-to-peer rendezvous lives outside this package. A transport
only has to deliver opaque strings between members of a namespace:

    channel = transport.join(namespace)
    channel.on_receive(handler)   # handler(data, peer_id)
    channel.send(data)
    channel.leave()

Ordering, duplication and loss are not guaranteed, which is why every
inbound message is authenticated and replay-checked independently.

LoopbackHub implements the contract in memory for tests and the CLI demo.
"""

import logging
import secrets
from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable, Dict, List, Optional

from .errors import ErrorCode, TransportError

logger = logging.getLogger(__name__)

ReceiveHandler = Callable[[str, str], None]


class Channel(ABC):
    """A joined namespace on some transport."""

    @abstractmethod
    def send(self, data: str) -> None:
        """Broadcast data to every other member of the namespace."""

    @abstractmethod
    def on_receive(self, handler: ReceiveHandler) -> None:
        """Register the handler called as handler(data, peer_id)."""

    @abstractmethod
    def leave(self) -> None:
        """Stop receiving and release the namespace."""


class Transport(ABC):
    """Factory for channels."""

    @abstractmethod
    def join(self, namespace: str) -> Channel:
        """Join a namespace. Raises TransportError on failure."""


class LoopbackChannel(Channel):
    """Channel attached to a LoopbackHub."""

    def __init__(self, hub: "LoopbackHub", namespace: str, peer_id: str):
        self.hub = hub
        self.namespace = namespace
        self.peer_id = peer_id
        self.handler: Optional[ReceiveHandler] = None
        self.active = True

    def send(self, data: str) -> None:
        if not self.active:
            raise TransportError(ErrorCode.E402_SEND_FAILED, "Channel has been left")
        self.hub.deliver(self, data)

    def on_receive(self, handler: ReceiveHandler) -> None:
        self.handler = handler

    def leave(self) -> None:
        if self.active:
            self.active = False
            self.hub.detach(self)

    def __repr__(self) -> str:
        return f"LoopbackChannel(namespace={self.namespace!r}, peer_id={self.peer_id!r})"


class LoopbackHub(Transport):
    """In-memory transport: synchronous broadcast within a namespace.

    Attributes:
        channels: Active channels per namespace
        sent: Every payload sent, as (namespace, peer_id, data), for inspection
    """

    def __init__(self):
        self.channels: Dict[str, List[LoopbackChannel]] = {}
        self.sent: List[tuple] = []
        self.lock = Lock()

    def join(self, namespace: str) -> LoopbackChannel:
        if not namespace:
            raise TransportError(ErrorCode.E401_JOIN_FAILED, "Namespace must not be empty")

        channel = LoopbackChannel(self, namespace, secrets.token_hex(8))
        with self.lock:
            self.channels.setdefault(namespace, []).append(channel)

        logger.debug(f"Peer {channel.peer_id} joined {namespace}")
        return channel

    def detach(self, channel: LoopbackChannel) -> None:
        with self.lock:
            members = self.channels.get(channel.namespace, [])
            if channel in members:
                members.remove(channel)
            if not members:
                self.channels.pop(channel.namespace, None)

    def deliver(self, sender: LoopbackChannel, data: str) -> None:
        with self.lock:
            self.sent.append((sender.namespace, sender.peer_id, data))
            targets = [c for c in self.channels.get(sender.namespace, []) if c is not sender]

        for target in targets:
            if target.handler is not None:
                target.handler(data, sender.peer_id)

    def inject(self, namespace: str, data: str, peer_id: str = "injected") -> None:
        """Deliver raw data to every member of a namespace, as a hostile peer would."""
        with self.lock:
            targets = list(self.channels.get(namespace, []))

        for target in targets:
            if target.handler is not None:
                target.handler(data, peer_id)

    def members(self, namespace: str) -> int:
        with self.lock:
            return len(self.channels.get(namespace, []))
