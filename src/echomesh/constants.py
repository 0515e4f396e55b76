"""
EchoMesh - Global Constants and Configuration Values

This module defines all constants used throughout the EchoMesh package.
All magic numbers and configuration defaults are centralized here.

Author: echomesh contributors
Version: 1.0.0
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "EchoMesh"
APP_ID = "echomesh"

# Room Identifier Policy
ROOM_ID_POLICY_VERSION = 2
ROOM_ID_PREFIX = "room-"
ROOM_ID_LENGTH = 20  # characters after the prefix
ROOM_ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"
ROOM_PASSWORD_BYTES = 24  # 192 bits before url-safe encoding

# Cryptography Constants
KEY_SIZE = 32  # 256-bit session key
NONCE_SIZE = 24  # 192 bits for XChaCha20-Poly1305
TAG_SIZE = 16  # Poly1305 tag
SALT_SIZE = 16  # Argon2 salt taken from SHA-256(room id)
INTEGRITY_TAG_SIZE = 32  # HMAC-SHA256
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 1
WIRE_SEPARATOR = ":"
WIRE_FIELDS_DEFAULT = 2
WIRE_FIELDS_HARDENED = 3
WIRE_INTEGRITY_INFO = b"echomesh-wire-integrity"
FINGERPRINT_LENGTH = 16  # hex characters shown to users

# Session Constants
MESSAGE_LIFETIME = 3600  # 1 hour in seconds
SWEEP_INTERVAL = 60  # seconds
SEND_COOLDOWN = 1.0  # seconds between outbound sends
REPLAY_WINDOW_SIZE = 4096  # nonce encodings kept per key epoch
MAX_TEXT_MESSAGE_SIZE = 100 * 1024  # 100 KB
STATE_HISTORY_SIZE = 100

# Message Senders
SENDER_ME = "Me"
SENDER_SYSTEM = "System"
SENDER_ECHO = "EchoBot"

# File Paths
DEFAULT_DATA_DIR = "~/.echomesh"
CONFIG_FILENAME = "config.toml"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
