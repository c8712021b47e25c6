"""
Custody-side key holder.

This is the half of the protocol that runs next to the private key: it
opens key envelopes, pulls ciphertext from the IPFS gateway and decrypts
it. Client code (upload, streamed decrypt) never imports it; only the
custody service and the operator ``open-local`` command do.
"""
import logging
from typing import Iterator, Optional, Union

import requests
from cryptography.hazmat.primitives.asymmetric import ec

from .config import AES_KEY_SIZE, CHUNK_SIZE, GATEWAY_URL, HTTP_TIMEOUT, PRIVATE_KEY
from .encryption import decrypt_bytes
from .errors import DecryptionFailure, MissingParameters, NetworkFailure, NotFound
from .key_envelope import EnvelopeInput, KeyEnvelope, load_private_key, open_envelope, public_key_hex


class KeyCustodian:
    def __init__(self, private_key: Union[str, ec.EllipticCurvePrivateKey]):
        if isinstance(private_key, str):
            try:
                private_key = load_private_key(private_key)
            except ValueError as exc:
                raise MissingParameters(f"No usable custody private key: {exc}") from exc
        self._private_key = private_key

    @classmethod
    def from_env(cls) -> "KeyCustodian":
        if not PRIVATE_KEY:
            raise MissingParameters("AUDIOVAULT_PRIVATE_KEY is not set")
        return cls(PRIVATE_KEY)

    @classmethod
    def from_file(cls, path: str) -> "KeyCustodian":
        with open(path, 'r', encoding='utf-8') as f:
            content = f.read().strip()
        if not content:
            raise MissingParameters(f"Private key file {path} is empty")
        return cls(content)

    def public_key(self) -> str:
        return public_key_hex(self._private_key)

    def open_envelope(self, envelope: EnvelopeInput) -> str:
        """Return the hex AES key sealed in ``envelope``."""
        key_hex = open_envelope(KeyEnvelope.coerce(envelope), self._private_key)
        if len(key_hex) != AES_KEY_SIZE * 2:
            raise DecryptionFailure(f"Envelope does not hold a {AES_KEY_SIZE * 8}-bit key")
        return key_hex

    def decrypt_payload(self, ciphertext: bytes, iv: str, envelope: EnvelopeInput) -> bytes:
        key_hex = self.open_envelope(envelope)
        try:
            key = bytes.fromhex(key_hex)
            iv_bytes = bytes.fromhex(iv)
        except ValueError as exc:
            raise DecryptionFailure(f"Invalid hex in key or IV: {exc}") from exc
        return decrypt_bytes(ciphertext, key, iv_bytes)

    def iter_plaintext(self, ciphertext: bytes, iv: str, envelope: EnvelopeInput,
                       chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        # GCM authenticates the whole payload, so nothing is yielded before the tag checks out
        plaintext = self.decrypt_payload(ciphertext, iv, envelope)
        for offset in range(0, len(plaintext), chunk_size):
            yield plaintext[offset:offset + chunk_size]


def fetch_ciphertext(cid: str, gateway_url: str = GATEWAY_URL,
                     session: Optional[requests.Session] = None) -> bytes:
    """Download an encrypted payload from an IPFS gateway."""
    if not cid:
        raise MissingParameters("Missing required parameter: cid")
    base = gateway_url.rstrip("/")
    if "://" not in base:
        base = f"https://{base}"
    url = f"{base}/ipfs/{cid}"

    http = session or requests
    try:
        resp = http.get(url, timeout=HTTP_TIMEOUT)
    except requests.RequestException as exc:
        raise NetworkFailure(f"Gateway request failed: {exc}") from exc
    if not resp.ok:
        raise NotFound(f"Gateway returned {resp.status_code} for {cid}", status_code=resp.status_code)
    logging.info(f"✅ Fetched {cid} from gateway ({len(resp.content)} bytes)")
    return resp.content
