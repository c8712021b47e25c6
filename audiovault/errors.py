"""Error types raised by the encryption core.

Every failure carries a ``kind`` (stable, machine readable) and a
``message`` (human readable) so callers can show it and offer a retry.
"""
from typing import Optional


class AudioVaultError(Exception):
    kind = "AudioVaultError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class InvalidPublicKey(AudioVaultError):
    kind = "InvalidPublicKey"


class EncryptionFailure(AudioVaultError):
    kind = "EncryptionFailure"


class DecryptionFailure(AudioVaultError):
    """MAC/tag mismatch, wrong key, or a malformed envelope."""
    kind = "DecryptionFailure"


class MissingParameters(AudioVaultError):
    kind = "MissingParameters"


class NotFound(AudioVaultError):
    """The remote service answered with a non-success status."""
    kind = "NotFound"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkFailure(AudioVaultError):
    kind = "NetworkFailure"


class UnsupportedInput(AudioVaultError):
    kind = "UnsupportedInput"
