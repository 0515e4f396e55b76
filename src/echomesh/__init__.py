"""
EchoMesh - Password-keyed encrypted rooms over untrusted peer transports

Two or more peers that share a room id and a password derive the same
symmetric key and exchange authenticated, replay-protected messages
without any server holding keys.

Author: echomesh contributors
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "echomesh contributors"
__license__ = "MIT"

# Import core modules for easy access
from .codec import WireCodec, WireMessage
from .config import Config
from .constants import APP_NAME, VERSION
from .crypto import CryptoProvider, KdfParams, SessionKey, initialize
from .errors import (
    AuthenticationError,
    ConfigError,
    CryptoError,
    CryptoInitializationError,
    DecryptionError,
    EchomeshError,
    EncryptionError,
    ErrorCode,
    FormatError,
    KeyDerivationError,
    RateLimitExceeded,
    ReplayDetected,
    SessionError,
    TransportError,
    ValidationError,
)
from .message import Message, MessageBuffer
from .rate_limiter import SendCooldown
from .replay import ReplayGuard
from .room import RoomIdentity, generate_room_id, is_valid_room_id, validate_room_id
from .room_fsm import RoomState
from .session import RoomSession, SessionSettings
from .transport import Channel, LoopbackHub, Transport

__all__ = [
    "APP_NAME",
    "VERSION",
    "AuthenticationError",
    "Channel",
    "Config",
    "ConfigError",
    "CryptoError",
    "CryptoInitializationError",
    "CryptoProvider",
    "DecryptionError",
    "EchomeshError",
    "EncryptionError",
    "ErrorCode",
    "FormatError",
    "KdfParams",
    "KeyDerivationError",
    "LoopbackHub",
    "Message",
    "MessageBuffer",
    "RateLimitExceeded",
    "ReplayDetected",
    "ReplayGuard",
    "RoomIdentity",
    "RoomSession",
    "RoomState",
    "SendCooldown",
    "SessionError",
    "SessionKey",
    "SessionSettings",
    "Transport",
    "TransportError",
    "ValidationError",
    "WireCodec",
    "WireMessage",
    "generate_room_id",
    "initialize",
    "is_valid_room_id",
    "validate_room_id",
    "__author__",
    "__license__",
    "__version__",
]
