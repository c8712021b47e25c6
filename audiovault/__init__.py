"""
audiovault - hybrid end-to-end encryption for rented audio.

Files are encrypted once with AES-256-GCM; the file key is sealed to the
custody service's secp256k1 public key and only the custody service can
open it again.
"""
from .encryption import Blob, EncryptionResult, encrypt_file
from .decryption import download_decrypted_file, fetch_decrypted_audio, get_and_decrypt_file
from .custody import CustodyClient, UploadResponse
from .errors import (
    AudioVaultError,
    DecryptionFailure,
    EncryptionFailure,
    InvalidPublicKey,
    MissingParameters,
    NetworkFailure,
    NotFound,
    UnsupportedInput,
)
from .key_envelope import KeyEnvelope, generate_keypair, open_envelope, seal

__version__ = "0.1.0"

__all__ = [
    "Blob",
    "EncryptionResult",
    "encrypt_file",
    "get_and_decrypt_file",
    "download_decrypted_file",
    "fetch_decrypted_audio",
    "CustodyClient",
    "UploadResponse",
    "KeyEnvelope",
    "seal",
    "open_envelope",
    "generate_keypair",
    "AudioVaultError",
    "InvalidPublicKey",
    "EncryptionFailure",
    "DecryptionFailure",
    "MissingParameters",
    "NotFound",
    "NetworkFailure",
    "UnsupportedInput",
]
