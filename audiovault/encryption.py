"""
Encryptor: whole-file AES-256-GCM with the file key sealed to a recipient.

A fresh 256-bit key and 12-byte IV are drawn for every file. The payload
is ``ciphertext || 16-byte GCM tag``; the key leaves this module only
inside a KeyEnvelope.
"""
import logging
import mimetypes
import os
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import AES_KEY_SIZE, DEFAULT_CONTENT_TYPE, GCM_IV_SIZE
from .errors import DecryptionFailure, EncryptionFailure, UnsupportedInput
from .key_envelope import KeyEnvelope, seal


@dataclass
class Blob:
    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE
    name: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Union[str, "os.PathLike[str]"], content_type: Optional[str] = None) -> "Blob":
        """Read a file from disk, guessing its MIME type from the extension."""
        path = os.fspath(path)
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except OSError as exc:
            raise UnsupportedInput(f"Cannot read {path}: {exc}") from exc
        guessed = content_type or mimetypes.guess_type(path)[0] or DEFAULT_CONTENT_TYPE
        return cls(data=data, content_type=guessed, name=os.path.basename(path))


@dataclass
class EncryptionResult:
    encrypted_file: Blob
    iv: str
    encrypted_key: KeyEnvelope
    file_name: str
    file_type: str


FileInput = Union[Blob, bytes, bytearray, memoryview, str, "os.PathLike[str]"]


def generate_aes_key() -> bytes:
    return os.urandom(AES_KEY_SIZE)


def generate_iv() -> bytes:
    return os.urandom(GCM_IV_SIZE)


def encrypt_bytes(data: bytes, key: bytes, iv: bytes) -> bytes:
    """AES-GCM encrypt; returns ciphertext with the tag appended."""
    try:
        return AESGCM(key).encrypt(iv, data, None)
    except (ValueError, OverflowError) as exc:
        raise EncryptionFailure(f"AES-GCM encryption failed: {exc}") from exc


def decrypt_bytes(data: bytes, key: bytes, iv: bytes) -> bytes:
    """AES-GCM decrypt ``ciphertext || tag``. Raises DecryptionFailure on tamper."""
    if len(key) != AES_KEY_SIZE:
        raise DecryptionFailure(f"AES key must be {AES_KEY_SIZE} bytes, got {len(key)}")
    if len(iv) != GCM_IV_SIZE:
        raise DecryptionFailure(f"IV must be {GCM_IV_SIZE} bytes, got {len(iv)}")
    try:
        return AESGCM(key).decrypt(iv, data, None)
    except InvalidTag as exc:
        raise DecryptionFailure("AES-GCM authentication failed: payload tampered or wrong key") from exc


def read_input(file: FileInput) -> Blob:
    if isinstance(file, Blob):
        return file
    if isinstance(file, (bytes, bytearray, memoryview)):
        return Blob(data=bytes(file))
    if isinstance(file, (str, os.PathLike)):
        return Blob.from_path(file)
    raise UnsupportedInput(f"Cannot read {type(file).__name__} as bytes")


def require_audio(blob: Blob) -> None:
    if not (blob.content_type or "").startswith("audio/"):
        raise UnsupportedInput(
            f"Please upload an audio file (got {blob.content_type or 'unknown type'})"
        )


def encrypt_file(file: FileInput, recipient_public_key: str) -> EncryptionResult:
    """Encrypt ``file`` for the holder of ``recipient_public_key``.

    Args:
        file: Blob, path on disk, or raw bytes
        recipient_public_key: secp256k1 public key hex of the custody service

    Returns:
        EncryptionResult with the octet-stream payload, IV hex and key envelope
    """
    aes_key = generate_aes_key()
    iv = generate_iv()
    blob = read_input(file)

    encrypted = encrypt_bytes(blob.data, aes_key, iv)
    encrypted_key = seal(aes_key.hex(), recipient_public_key)

    file_name = blob.name or "file"
    logging.info(f"✅ Encrypted {file_name} ({blob.size} bytes -> {len(encrypted)} bytes)")
    return EncryptionResult(
        encrypted_file=Blob(data=encrypted, content_type=DEFAULT_CONTENT_TYPE, name=file_name),
        iv=iv.hex(),
        encrypted_key=encrypted_key,
        file_name=file_name,
        file_type=blob.content_type,
    )
