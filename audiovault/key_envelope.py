"""
Key envelope: seal a short secret to a secp256k1 public key (ECIES).

The construction matches the ECIES flavour used by the JavaScript
``eccrypto``/``eth-crypto`` libraries, so an envelope sealed here can be
opened by the custody service and vice versa:

    shared   = ECDH(ephemeral_sk, recipient_pk).x          (32 bytes)
    digest   = SHA-512(shared)
    enc_key  = digest[:32]                                  AES-256-CBC, PKCS#7
    mac_key  = digest[32:]
    mac      = HMAC-SHA256(mac_key, iv || ephemeral_pk || ciphertext)

The envelope travels as ``{"iv", "ephemPublicKey", "ciphertext", "mac"}``,
every value lowercase hex.
"""
import hashlib
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, hmac, padding, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import DecryptionFailure, EncryptionFailure, InvalidPublicKey

CURVE = ec.SECP256K1()
ENVELOPE_IV_SIZE = 16
MAC_SIZE = 32
UNCOMPRESSED_POINT_SIZE = 65
PRIVATE_KEY_SIZE = 32

PrivateKeyLike = Union[str, ec.EllipticCurvePrivateKey]


@dataclass(frozen=True)
class KeyEnvelope:
    iv: str
    ephem_public_key: str
    ciphertext: str
    mac: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "iv": self.iv,
            "ephemPublicKey": self.ephem_public_key,
            "ciphertext": self.ciphertext,
            "mac": self.mac,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KeyEnvelope":
        try:
            fields = [data["iv"], data["ephemPublicKey"], data["ciphertext"], data["mac"]]
        except (KeyError, TypeError) as exc:
            raise DecryptionFailure(f"Malformed key envelope: missing field {exc}") from exc
        if not all(isinstance(value, str) and value for value in fields):
            raise DecryptionFailure("Malformed key envelope: fields must be non-empty hex strings")
        iv, ephem_public_key, ciphertext, mac = (value.lower() for value in fields)
        return cls(iv=iv, ephem_public_key=ephem_public_key, ciphertext=ciphertext, mac=mac)

    @classmethod
    def from_json(cls, text: str) -> "KeyEnvelope":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DecryptionFailure(f"Malformed key envelope JSON: {exc}") from exc
        if not isinstance(data, Mapping):
            raise DecryptionFailure("Malformed key envelope JSON: expected an object")
        return cls.from_dict(data)

    @classmethod
    def coerce(cls, value: Union["KeyEnvelope", Mapping[str, Any], str]) -> "KeyEnvelope":
        """Accept an envelope, its dict form, or its JSON form."""
        if isinstance(value, KeyEnvelope):
            return value
        if isinstance(value, str):
            return cls.from_json(value)
        return cls.from_dict(value)


EnvelopeInput = Union[KeyEnvelope, Mapping[str, Any], str]


# ---------- Key helpers ----------

def _strip_0x(value: str) -> str:
    value = value.strip()
    return value[2:] if value[:2].lower() == "0x" else value


def load_public_key(public_key_hex: str) -> ec.EllipticCurvePublicKey:
    """Parse a hex secp256k1 public key.

    Accepts 65-byte uncompressed (``04`` prefixed), 64-byte raw ``x || y``
    (the ``04`` dropped, as Ethereum tooling prints it) and 33-byte
    compressed points, each optionally ``0x`` prefixed.
    """
    if not isinstance(public_key_hex, str) or not public_key_hex.strip():
        raise InvalidPublicKey("Public key must be a non-empty hex string")
    hex_value = _strip_0x(public_key_hex)
    try:
        raw = bytes.fromhex(hex_value)
    except ValueError as exc:
        raise InvalidPublicKey(f"Public key is not valid hex: {exc}") from exc
    if len(raw) == 64:
        raw = b"\x04" + raw
    if len(raw) not in (33, UNCOMPRESSED_POINT_SIZE):
        raise InvalidPublicKey(f"Public key has unexpected length {len(raw)} bytes")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, raw)
    except ValueError as exc:
        raise InvalidPublicKey(f"Public key is not a point on secp256k1: {exc}") from exc


def load_private_key(private_key_hex: str) -> ec.EllipticCurvePrivateKey:
    hex_value = _strip_0x(private_key_hex)
    try:
        raw = bytes.fromhex(hex_value)
    except ValueError as exc:
        raise ValueError(f"Private key is not valid hex: {exc}") from exc
    if len(raw) != PRIVATE_KEY_SIZE:
        raise ValueError(f"Private key must be {PRIVATE_KEY_SIZE} bytes, got {len(raw)}")
    return ec.derive_private_key(int.from_bytes(raw, "big"), CURVE, default_backend())


def _as_private_key(private_key: PrivateKeyLike) -> ec.EllipticCurvePrivateKey:
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return private_key
    return load_private_key(private_key)


def _uncompressed(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )


def public_key_hex(private_key: PrivateKeyLike) -> str:
    """Uncompressed public key hex (``04...``, no ``0x``) for a private key."""
    return _uncompressed(_as_private_key(private_key).public_key()).hex()


def private_key_hex(private_key: ec.EllipticCurvePrivateKey) -> str:
    return private_key.private_numbers().private_value.to_bytes(PRIVATE_KEY_SIZE, "big").hex()


def generate_keypair() -> Tuple[str, str]:
    """
    Returns (private_key_hex, public_key_hex)
    """
    sk = ec.generate_private_key(CURVE, default_backend())
    return private_key_hex(sk), public_key_hex(sk)


# ---------- ECIES internals ----------

def _derive_keys(private_key: ec.EllipticCurvePrivateKey,
                 public_key: ec.EllipticCurvePublicKey) -> Tuple[bytes, bytes]:
    shared = private_key.exchange(ec.ECDH(), public_key)
    digest = hashlib.sha512(shared).digest()
    return digest[:32], digest[32:]


def _compute_mac(mac_key: bytes, iv: bytes, ephem_public: bytes, ciphertext: bytes) -> hmac.HMAC:
    h = hmac.HMAC(mac_key, hashes.SHA256(), backend=default_backend())
    h.update(iv + ephem_public + ciphertext)
    return h


def seal(secret: str, recipient_public_key: str) -> KeyEnvelope:
    """Seal ``secret`` so only the holder of the matching private key can read it.

    Args:
        secret: Short text secret, here the hex-encoded AES file key
        recipient_public_key: secp256k1 public key, hex

    Returns:
        A fresh KeyEnvelope (new ephemeral key and IV on every call)
    """
    recipient = load_public_key(recipient_public_key)
    try:
        ephemeral = ec.generate_private_key(CURVE, default_backend())
        ephem_public = _uncompressed(ephemeral.public_key())
        enc_key, mac_key = _derive_keys(ephemeral, recipient)

        iv = os.urandom(ENVELOPE_IV_SIZE)
        padder = padding.PKCS7(128).padder()
        padded = padder.update(secret.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv), backend=default_backend()).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        mac = _compute_mac(mac_key, iv, ephem_public, ciphertext).finalize()
    except (ValueError, TypeError) as exc:
        raise EncryptionFailure(f"Failed to seal key envelope: {exc}") from exc

    return KeyEnvelope(
        iv=iv.hex(),
        ephem_public_key=ephem_public.hex(),
        ciphertext=ciphertext.hex(),
        mac=mac.hex(),
    )


def open_envelope(envelope: EnvelopeInput,
                  private_key: PrivateKeyLike) -> str:
    """Recover the sealed secret. Raises DecryptionFailure on any mismatch."""
    env = KeyEnvelope.coerce(envelope)
    try:
        iv = bytes.fromhex(env.iv)
        ephem_public = bytes.fromhex(env.ephem_public_key)
        ciphertext = bytes.fromhex(env.ciphertext)
        mac = bytes.fromhex(env.mac)
    except ValueError as exc:
        raise DecryptionFailure(f"Malformed key envelope: {exc}") from exc

    if len(iv) != ENVELOPE_IV_SIZE:
        raise DecryptionFailure(f"Malformed key envelope: IV must be {ENVELOPE_IV_SIZE} bytes")
    if len(mac) != MAC_SIZE:
        raise DecryptionFailure(f"Malformed key envelope: MAC must be {MAC_SIZE} bytes")
    if not ciphertext or len(ciphertext) % 16:
        raise DecryptionFailure("Malformed key envelope: ciphertext is not whole AES blocks")

    try:
        ephemeral = load_public_key(env.ephem_public_key)
    except InvalidPublicKey as exc:
        raise DecryptionFailure(f"Malformed key envelope: {exc.message}") from exc

    try:
        sk = _as_private_key(private_key)
    except ValueError as exc:
        raise DecryptionFailure(f"Unusable private key: {exc}") from exc
    enc_key, mac_key = _derive_keys(sk, ephemeral)

    # MAC is over the ephemeral key exactly as transmitted
    try:
        _compute_mac(mac_key, iv, ephem_public, ciphertext).verify(mac)
    except InvalidSignature as exc:
        raise DecryptionFailure("Key envelope MAC mismatch: wrong private key or tampered envelope") from exc

    try:
        decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv), backend=default_backend()).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as exc:
        raise DecryptionFailure(f"Key envelope plaintext is corrupt: {exc}") from exc
