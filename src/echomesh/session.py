"""
EchoMesh - Room Session

This module owns everything that changes while a user sits in a room: the
room id, the password, the derived key and its epoch, the message buffer,
the replay window, the send cooldown and the expiry sweep.

Lifecycle:
- create_room(): new random room id and password, unlocked immediately
- request_join(room_id): validate, wait for the password provider, unlock
- submit_password(password): derive the key, unlock
- leave_room() / close(): wipe the key and cancel background work

Security properties:
- Every room or key change clears the buffer and the replay window
- Inbound text reaches the buffer only after AEAD authentication and the
  replay check, and only if the key epoch did not move meanwhile
- The password stays in memory; nothing here persists it

Author: echomesh contributors
Version: 1.0.0
"""

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from threading import RLock
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from .codec import WireCodec
from .commands import handle_directive, is_directive
from .constants import (
    APP_ID,
    MAX_TEXT_MESSAGE_SIZE,
    MESSAGE_LIFETIME,
    REPLAY_WINDOW_SIZE,
    SEND_COOLDOWN,
    SENDER_ME,
    SENDER_SYSTEM,
    SWEEP_INTERVAL,
    WIRE_FIELDS_DEFAULT,
)
from .crypto import CryptoProvider, SessionKey
from .errors import (
    CryptoInitializationError,
    DecryptionError,
    ErrorCode,
    KeyDerivationError,
    SessionError,
    TransportError,
    ValidationError,
)
from .message import Message, MessageBuffer
from .rate_limiter import SendCooldown
from .replay import ReplayGuard
from .room import RoomIdentity, generate_room, validate_room_id
from .room_fsm import RoomEvent, RoomState, RoomStateMachine
from .transport import Channel, Transport

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

PasswordProvider = Callable[[str], Union[Awaitable[Optional[str]], Optional[str]]]

STATUS_LABELS = {
    RoomState.IDLE: "Idle (no room)",
    RoomState.ROOM_READY: "Waiting for password",
    RoomState.UNLOCKED: "Online",
    RoomState.CLOSED: "Closed",
}


@dataclass(frozen=True)
class SessionSettings:
    """Tunables of a room session."""

    message_lifetime: float = MESSAGE_LIFETIME
    sweep_interval: float = SWEEP_INTERVAL
    send_cooldown: float = SEND_COOLDOWN
    replay_window_size: int = REPLAY_WINDOW_SIZE
    max_message_length: int = MAX_TEXT_MESSAGE_SIZE
    wire_fields: int = WIRE_FIELDS_DEFAULT

    @classmethod
    def from_config(cls, config: "Config") -> "SessionSettings":
        return cls(
            message_lifetime=float(config.get("session", "message_lifetime", MESSAGE_LIFETIME)),
            sweep_interval=float(config.get("session", "sweep_interval", SWEEP_INTERVAL)),
            send_cooldown=float(config.get("session", "send_cooldown", SEND_COOLDOWN)),
            replay_window_size=int(
                config.get("session", "replay_window_size", REPLAY_WINDOW_SIZE)
            ),
            max_message_length=int(
                config.get("session", "max_message_length", MAX_TEXT_MESSAGE_SIZE)
            ),
            wire_fields=int(config.get("crypto", "wire_fields", WIRE_FIELDS_DEFAULT)),
        )


class RoomSession:
    """Single owner of one user's room state.

    Attributes:
        provider: Initialized CryptoProvider
        transport: Transport used to join the room namespace
        password_provider: Callable awaited for the password of a joined room
        settings: SessionSettings
        codec: WireCodec bound to the provider
        fsm: RoomStateMachine
        buffer: MessageBuffer of the current room
        replay_guard: ReplayGuard of the current key epoch
        cooldown: SendCooldown for outbound sends
        epoch: Counter bumped on every room or key change
        on_message: Optional callback fired for every buffered message
    """

    def __init__(
        self,
        provider: CryptoProvider,
        transport: Transport,
        password_provider: Optional[PasswordProvider] = None,
        settings: Optional[SessionSettings] = None,
        clock: Optional[Callable[[], float]] = None,
        monotonic: Optional[Callable[[], float]] = None,
    ):
        if not provider.ready:
            raise CryptoInitializationError(
                ErrorCode.E201_NOT_INITIALIZED,
                "RoomSession requires a provider returned by initialize()",
            )

        self.provider = provider
        self.transport = transport
        self.password_provider = password_provider
        self.settings = settings or SessionSettings()

        self.codec = WireCodec(provider, self.settings.wire_fields)
        self.fsm = RoomStateMachine()
        self.buffer = MessageBuffer(self.settings.message_lifetime, clock)
        self.replay_guard = ReplayGuard(self.settings.replay_window_size)
        self.cooldown = SendCooldown(self.settings.send_cooldown, monotonic)

        self.room_id: Optional[str] = None
        self.epoch = 0
        self._password: Optional[str] = None
        self._key: Optional[SessionKey] = None
        self._channel: Optional[Channel] = None
        self._lock = RLock()

        self._sweep_task: Optional[asyncio.Task] = None
        self._password_task: Optional[asyncio.Future] = None
        self._abandoned: Set[asyncio.Future] = set()

        self.stats: Dict[str, int] = {"sent": 0, "received": 0, "dropped": 0}
        self.on_message: Optional[Callable[[Message], Any]] = None

    # State

    @property
    def state(self) -> RoomState:
        return self.fsm.get_state()

    @property
    def is_unlocked(self) -> bool:
        return self.state == RoomState.UNLOCKED

    @property
    def messages(self) -> List[Message]:
        return self.buffer.snapshot()

    @property
    def key_fingerprint(self) -> Optional[str]:
        key = self._key
        return key.fingerprint() if key else None

    def room_info(self) -> Dict[str, Any]:
        """Non-secret description of the current room."""
        with self._lock:
            return {
                "room_id": self.room_id,
                "state": self.state.name,
                "epoch": self.epoch,
                "key_fingerprint": self.key_fingerprint,
                "messages": len(self.buffer),
                "connected": self._channel is not None,
            }

    def _ensure_open(self) -> None:
        if self.state == RoomState.CLOSED:
            raise SessionError(ErrorCode.E303_SESSION_CLOSED, "Session has been closed")

    # Background work

    def start(self) -> None:
        """Start the periodic expiry sweep. Requires a running event loop."""
        self._ensure_open()
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.debug(f"Expiry sweep started (every {self.settings.sweep_interval}s)")

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.settings.sweep_interval)
                self.purge_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in expiry sweep: {e}")

    def purge_expired(self) -> int:
        """Drop buffered messages older than the message lifetime."""
        return self.buffer.purge_expired()

    async def close(self) -> None:
        """Cancel timers and pending password requests, wipe the key."""
        if self.state == RoomState.CLOSED:
            return

        self._cancel_pending_join()

        if self._sweep_task:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

        with self._lock:
            self._reset_room(None)
            self.fsm.transition(RoomEvent.CLOSED)

        logger.info("Room session closed")

    async def __aenter__(self) -> "RoomSession":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Room transitions

    def _reset_room(self, room_id: Optional[str]) -> None:
        """Leave the current room: channel, key, password, buffer, window.

        Caller must hold the lock.
        """
        if self._channel is not None:
            try:
                self._channel.leave()
            except Exception as e:
                logger.warning(f"Error leaving channel: {e}")
            self._channel = None

        self._key = None
        self._password = None
        self.epoch += 1
        self.replay_guard.reset(self.epoch)
        self.buffer.clear()
        self.cooldown.reset()
        self.room_id = room_id

    def _install_key(self, key: SessionKey, password: str, channel: Channel) -> None:
        """Bind a freshly derived key to a new epoch. Caller must hold the lock."""
        self.epoch += 1
        self._key = key.with_epoch(self.epoch)
        self._password = password
        self.replay_guard.reset(self.epoch)
        self._channel = channel
        logger.info(f"Room key installed for {self.room_id} (epoch {self.epoch})")

    def _join_channel(self, room_id: str) -> Channel:
        namespace = f"{APP_ID}/{room_id}"
        try:
            channel = self.transport.join(namespace)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(
                ErrorCode.E401_JOIN_FAILED, f"Failed to join {namespace}: {e}"
            ) from e

        channel.on_receive(self.receive)
        return channel

    def _cancel_pending_join(self) -> bool:
        task = self._password_task
        if task is None or task.done():
            return False
        self._abandoned.add(task)
        task.cancel()
        return True

    def create_room(self) -> RoomIdentity:
        """
        Create a new room with a random id and password and unlock it.

        Returns:
            The new RoomIdentity, so the caller can share it out of band

        Raises:
            KeyDerivationError: If the key cannot be derived
            TransportError: If the room namespace cannot be joined
        """
        self._ensure_open()
        identity = generate_room()
        key = self.provider.derive_key(identity.password, identity.room_id)
        channel = self._join_channel(identity.room_id)

        self._cancel_pending_join()
        with self._lock:
            self._reset_room(identity.room_id)
            self._install_key(key, identity.password, channel)
            self.fsm.transition(RoomEvent.ROOM_CREATED)

        logger.info(f"Created room {identity.room_id}")
        return identity

    async def request_join(self, candidate_room_id: str) -> bool:
        """
        Move to a room and wait for its password.

        The current room is left immediately. The password provider is then
        awaited; while it is pending the session sits in ROOM_READY and
        refuses to send. cancel_join() abandons the wait.

        Returns:
            True if the room ended up unlocked, False if the password is
            still outstanding, was cancelled, was empty, or the join was
            superseded by another room change

        Raises:
            ValidationError: If the room id does not match the policy; the
                session is left untouched
            SessionError: If the password provider raises; the session
                stays in ROOM_READY
        """
        self._ensure_open()
        room_id = validate_room_id(candidate_room_id)

        self._cancel_pending_join()
        with self._lock:
            self._reset_room(room_id)
            self.fsm.transition(RoomEvent.JOIN_REQUESTED)
            join_epoch = self.epoch

        logger.info(f"Joining room {room_id}")

        if self.password_provider is None:
            return False

        task = self._request_password(room_id)
        self._password_task = task
        try:
            password = await task
        except asyncio.CancelledError:
            if task in self._abandoned:
                self._abandoned.discard(task)
                logger.info(f"Password request for {room_id} cancelled")
                return False
            raise
        except Exception as e:
            raise SessionError(
                ErrorCode.E305_PASSWORD_UNAVAILABLE,
                f"Password provider failed for {room_id}: {e}",
                {"room_id": room_id},
            ) from e
        finally:
            if self._password_task is task:
                self._password_task = None

        if self.epoch != join_epoch or self.state != RoomState.ROOM_READY:
            logger.info(f"Join of {room_id} superseded by another room change")
            return False

        if not password:
            logger.warning(f"No password provided for {room_id}, sending stays disabled")
            return False

        try:
            self.submit_password(password)
        except KeyDerivationError as e:
            logger.warning(f"Key derivation failed for {room_id}: {e.message}")
            return False

        return True

    def _request_password(self, room_id: str) -> asyncio.Future:
        """Schedule the password provider without blocking the event loop.

        Coroutine providers run as a task; plain callables such as a
        getpass prompt run in the default executor.
        """
        if inspect.iscoroutinefunction(self.password_provider):
            return asyncio.ensure_future(self.password_provider(room_id))

        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, self.password_provider, room_id)

    def cancel_join(self) -> bool:
        """Abandon a pending password request. The session stays in ROOM_READY."""
        return self._cancel_pending_join()

    def submit_password(self, password: str) -> None:
        """
        Derive the key for the room waiting in ROOM_READY and unlock it.

        Raises:
            SessionError: If no room is waiting for a password
            KeyDerivationError: If derivation fails; the session stays in
                ROOM_READY with sending disabled
            TransportError: If the room namespace cannot be joined
        """
        self._ensure_open()
        if self.state != RoomState.ROOM_READY or self.room_id is None:
            raise SessionError(
                ErrorCode.E301_INVALID_TRANSITION,
                "No room is waiting for a password",
                {"state": self.state.name},
            )

        room_id = self.room_id
        try:
            key = self.provider.derive_key(password, room_id)
        except KeyDerivationError:
            self.fsm.transition(RoomEvent.PASSWORD_REJECTED)
            raise

        channel = self._join_channel(room_id)

        with self._lock:
            if self.room_id != room_id or self.state != RoomState.ROOM_READY:
                channel.leave()
                raise SessionError(
                    ErrorCode.E301_INVALID_TRANSITION, "Room changed while deriving the key"
                )
            self._install_key(key, password, channel)
            self.fsm.transition(RoomEvent.PASSWORD_ACCEPTED)

    def leave_room(self) -> None:
        """Leave the current room and return to IDLE."""
        self._ensure_open()
        self._cancel_pending_join()
        with self._lock:
            self._reset_room(None)
            self.fsm.transition(RoomEvent.LEFT)

    # Messaging

    def _append(self, text: str, sender: str) -> Message:
        message = self.buffer.append(text, sender)
        if self.on_message:
            try:
                self.on_message(message)
            except Exception as e:
                logger.error(f"Message callback error: {e}")
        return message

    async def send(self, text: str) -> List[Message]:
        """
        Send text to the room, or run it locally if it is a slash directive.

        Returns:
            Messages appended to the local buffer (empty for blank input)

        Raises:
            SessionError: If the room is not unlocked
            ValidationError: If the text exceeds the maximum length
            RateLimitExceeded: If called within the send cooldown; the
                text is dropped, not queued
            TransportError: If the transport rejects the payload
        """
        self._ensure_open()

        if not text or not text.strip():
            return []

        if is_directive(text):
            return await self._run_directive(text)

        with self._lock:
            key = self._key
            channel = self._channel
            unlocked = self.state == RoomState.UNLOCKED

        if not unlocked or key is None:
            raise SessionError(ErrorCode.E302_NOT_UNLOCKED, "Room is not unlocked")

        if len(text) > self.settings.max_message_length:
            raise ValidationError(
                ErrorCode.E103_MESSAGE_TOO_LARGE,
                f"Message exceeds {self.settings.max_message_length} characters",
            )

        if channel is None:
            raise TransportError(ErrorCode.E402_SEND_FAILED, "Not connected to the room")

        self.cooldown.check()
        sealed = self.codec.seal(text, key)

        # Own nonces count as seen, so reflected copies are replays
        with self._lock:
            if self.epoch != key.epoch:
                return []
            self.replay_guard.check_and_record(sealed.nonce)

        wire = sealed.encode()
        try:
            channel.send(wire)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(ErrorCode.E402_SEND_FAILED, f"Send failed: {e}") from e

        with self._lock:
            if self.epoch != key.epoch:
                return []
            self.stats["sent"] += 1

        return [self._append(text, SENDER_ME)]

    async def _run_directive(self, text: str) -> List[Message]:
        result = handle_directive(text, self.room_id, STATUS_LABELS[self.state])

        if result.clear:
            self.buffer.clear()

        appended = [self._append(line, sender) for sender, line in result.lines]

        if result.join_room_id is not None:
            try:
                joined = await self.request_join(result.join_room_id)
            except ValidationError as e:
                appended.append(self._append(f"Cannot join: {e.message}", SENDER_SYSTEM))
            else:
                if joined:
                    note = f"Joined room: {self.room_id}"
                else:
                    note = f"Room {self.room_id} is waiting for a password"
                appended.append(self._append(note, SENDER_SYSTEM))

        return appended

    def receive(self, data: str, peer_id: str) -> Optional[Message]:
        """
        Handle one inbound payload from the transport.

        The key is snapshotted first. Authentication runs against that
        snapshot; the replay check and the append then run under the session
        lock and only if the epoch is unchanged. Every decryption-path error
        drops the payload and is logged.

        Returns:
            The buffered message, or None if the payload was dropped
        """
        with self._lock:
            key = self._key
            if key is None or self.state != RoomState.UNLOCKED:
                logger.debug(f"Dropped payload from {peer_id}: room not unlocked")
                self.stats["dropped"] += 1
                return None

        try:
            parsed = self.codec.parse(data)
            text = self.codec.open(parsed, key)
            with self._lock:
                if self.epoch != key.epoch:
                    logger.debug(f"Dropped payload from {peer_id}: key epoch changed")
                    self.stats["dropped"] += 1
                    return None
                self.replay_guard.check_and_record(parsed.nonce)
                self.stats["received"] += 1
                message = self.buffer.append(text, peer_id)
        except DecryptionError as e:
            with self._lock:
                self.stats["dropped"] += 1
            logger.warning(f"Dropped payload from {peer_id}: [{e.code.value}] {e.message}")
            return None

        if self.on_message:
            try:
                self.on_message(message)
            except Exception as e:
                logger.error(f"Message callback error: {e}")

        return message

    def __repr__(self) -> str:
        return (
            f"RoomSession(room_id={self.room_id!r}, state={self.state.name}, "
            f"epoch={self.epoch})"
        )
