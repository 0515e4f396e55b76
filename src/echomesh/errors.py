"""
EchoMesh - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
EchoMesh. Each error has a unique code for logging and debugging.

Author: echomesh contributors
Version: 1.0.0
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all EchoMesh error codes."""

    # General Errors (E001-E099)
    E001_UNKNOWN_ERROR = "E001"

    # Validation Errors (E100-E199)
    E100_VALIDATION_ERROR = "E100"
    E101_INVALID_ROOM_ID = "E101"
    E102_EMPTY_PASSWORD = "E102"
    E103_MESSAGE_TOO_LARGE = "E103"

    # Crypto Errors (E200-E299)
    E200_CRYPTO_ERROR = "E200"
    E201_NOT_INITIALIZED = "E201"
    E202_INITIALIZATION_FAILED = "E202"
    E203_KEY_DERIVATION_FAILED = "E203"
    E204_ENCRYPTION_FAILED = "E204"
    E205_DECRYPTION_FAILED = "E205"
    E206_AUTHENTICATION_FAILED = "E206"
    E207_REPLAY_DETECTED = "E207"
    E208_INVALID_FORMAT = "E208"

    # Session Errors (E300-E399)
    E300_SESSION_ERROR = "E300"
    E301_INVALID_TRANSITION = "E301"
    E302_NOT_UNLOCKED = "E302"
    E303_SESSION_CLOSED = "E303"
    E304_RATE_LIMIT_EXCEEDED = "E304"
    E305_PASSWORD_UNAVAILABLE = "E305"

    # Transport Errors (E400-E499)
    E400_TRANSPORT_ERROR = "E400"
    E401_JOIN_FAILED = "E401"
    E402_SEND_FAILED = "E402"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E701_CONFIG_LOAD_FAILED = "E701"
    E702_CONFIG_SAVE_FAILED = "E702"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"


class EchomeshError(Exception):
    """Base exception class for all EchoMesh errors.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    default_code = ErrorCode.E001_UNKNOWN_ERROR
    default_message = "Operation failed"

    def __init__(
        self,
        code: Optional[ErrorCode] = None,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize an EchoMesh error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            details: Additional error context (optional)
        """
        self.code = code or self.default_code
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(f"[{self.code.value}] {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization.

        Returns:
            Dictionary containing error information
        """
        return {"code": self.code.value, "message": self.message, "details": self.details}


class ValidationError(EchomeshError):
    """Raised for malformed user input such as a bad room id."""

    default_code = ErrorCode.E100_VALIDATION_ERROR
    default_message = "Validation failed"


class CryptoError(EchomeshError):
    """Exception raised for cryptographic operation failures."""

    default_code = ErrorCode.E200_CRYPTO_ERROR
    default_message = "Cryptographic operation failed"


class CryptoInitializationError(CryptoError):
    """Raised when the primitives are unavailable or used before initialize()."""

    default_code = ErrorCode.E201_NOT_INITIALIZED
    default_message = "Cryptographic provider is not initialized"


class KeyDerivationError(CryptoError):
    default_code = ErrorCode.E203_KEY_DERIVATION_FAILED
    default_message = "Key derivation failed"


class EncryptionError(CryptoError):
    default_code = ErrorCode.E204_ENCRYPTION_FAILED
    default_message = "Encryption failed"


class DecryptionError(CryptoError):
    """Base class for every failure on the inbound message path.

    Callers that only need to drop bad input catch this one type.
    """

    default_code = ErrorCode.E205_DECRYPTION_FAILED
    default_message = "Decryption failed"


class AuthenticationError(DecryptionError):
    """Tag or integrity mismatch: tampered data or the wrong key."""

    default_code = ErrorCode.E206_AUTHENTICATION_FAILED
    default_message = "Message authentication failed"


class ReplayDetected(DecryptionError):
    default_code = ErrorCode.E207_REPLAY_DETECTED
    default_message = "Nonce already seen under the current key"


class FormatError(DecryptionError):
    default_code = ErrorCode.E208_INVALID_FORMAT
    default_message = "Malformed wire message"


class RateLimitExceeded(EchomeshError):
    """Raised when a send is attempted inside the cooldown window.

    The attempted send is dropped, not queued. Callers may retry once
    ``retry_after`` seconds have elapsed.
    """

    default_code = ErrorCode.E304_RATE_LIMIT_EXCEEDED
    default_message = "Sending too fast"

    def __init__(self, retry_after: float = 0.0, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(
            ErrorCode.E304_RATE_LIMIT_EXCEEDED,
            message or f"Sending too fast, retry in {retry_after:.2f}s",
            {"retry_after": retry_after},
        )


class SessionError(EchomeshError):
    """Exception raised for room session state violations."""

    default_code = ErrorCode.E300_SESSION_ERROR
    default_message = "Session operation failed"


class TransportError(EchomeshError):
    """Opaque passthrough for failures of the external transport."""

    default_code = ErrorCode.E400_TRANSPORT_ERROR
    default_message = "Transport operation failed"


class ConfigError(EchomeshError):
    """Exception raised for configuration failures."""

    default_code = ErrorCode.E700_CONFIG_ERROR
    default_message = "Configuration operation failed"
