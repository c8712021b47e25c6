"""
Decryptor: stream plaintext back from the key-custody service.

The private key never leaves custody, so the client never opens the
envelope itself. It hands ``(cid, iv, envelope)`` to the custody service,
which fetches the ciphertext, decrypts it and streams the plaintext back.
This module reads that stream chunk by chunk and reports progress.
"""
import logging
import os
from typing import Any, Callable, List, Mapping, Optional

import requests

from .config import CHUNK_SIZE, CUSTODY_URI, DECRYPT_PATH, DEFAULT_CONTENT_TYPE, HTTP_TIMEOUT
from .encryption import Blob
from .errors import MissingParameters, NetworkFailure, NotFound
from .key_envelope import EnvelopeInput, KeyEnvelope

ProgressCallback = Callable[[int, Optional[int]], None]


def _envelope_param(encrypted_key: EnvelopeInput) -> str:
    if isinstance(encrypted_key, str):
        return encrypted_key
    return KeyEnvelope.coerce(encrypted_key).to_json()


def _content_length(response: requests.Response) -> Optional[int]:
    value = response.headers.get("content-length")
    if not value:
        return None
    try:
        total = int(value)
    except ValueError:
        return None
    return total if total >= 0 else None


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping) and body.get("message"):
        return str(body["message"])
    return response.reason or f"HTTP error! status: {response.status_code}"


def get_and_decrypt_file(
    cid: str,
    iv: str,
    encrypted_key: EnvelopeInput,
    file_name: Optional[str] = None,
    file_type: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
    base_url: str = CUSTODY_URI,
    session: Optional[requests.Session] = None,
    chunk_size: int = CHUNK_SIZE,
    timeout: float = HTTP_TIMEOUT,
) -> Blob:
    """Fetch and decrypt a stored payload through the custody service.

    Args:
        cid: Content identifier of the encrypted payload
        iv: Hex IV produced at encryption time
        encrypted_key: KeyEnvelope (object, dict or JSON string)
        file_name: Original file name, forwarded to the service
        file_type: MIME type of the result (default application/octet-stream)
        on_progress: Called as ``on_progress(received, total)`` after each chunk;
            ``total`` is None for every call when no usable Content-Length is sent
            (missing, unparsable, or the body is content-encoded)
        base_url: Custody service base URL
        session: Optional requests session (connection reuse, testing)
        chunk_size: Streaming read size in bytes
        timeout: Connect timeout in seconds; reads are not timed out

    Returns:
        The plaintext as a Blob
    """
    if not cid or not iv or not encrypted_key:
        raise MissingParameters("Missing required parameters: cid, iv, encryptedKey")

    params = {
        "cid": cid,
        "iv": iv,
        "encryptedKey": _envelope_param(encrypted_key),
    }
    if file_name:
        params["fileName"] = file_name
    if file_type:
        params["fileType"] = file_type

    http = session or requests
    url = f"{base_url.rstrip('/')}{DECRYPT_PATH}"
    try:
        response = http.post(url, params=params, stream=True, timeout=(timeout, None))
    except requests.RequestException as exc:
        raise NetworkFailure(f"Request to custody service failed: {exc}") from exc

    with response:
        if not response.ok:
            raise NotFound(_error_message(response), status_code=response.status_code)

        # iter_content decodes gzip/deflate; Content-Length counts wire bytes
        encoded = response.headers.get("content-encoding", "identity").lower() != "identity"
        total = None if encoded else _content_length(response)
        chunks: List[bytes] = []
        received = 0
        try:
            for chunk in response.iter_content(chunk_size=chunk_size):
                if not chunk:
                    continue
                chunks.append(chunk)
                received += len(chunk)
                if on_progress:
                    on_progress(received, total)
        except requests.RequestException as exc:
            raise NetworkFailure(f"Stream interrupted after {received} bytes: {exc}") from exc

        if total is not None and received != total:
            raise NetworkFailure(f"Stream ended after {received} of {total} bytes")

    logging.info(f"✅ Decrypted {cid} ({received} bytes)")
    return Blob(
        data=b"".join(chunks),
        content_type=file_type or DEFAULT_CONTENT_TYPE,
        name=file_name,
    )


def download_decrypted_file(
    cid: str,
    iv: str,
    encrypted_key: EnvelopeInput,
    output_path: Optional[str] = None,
    file_name: Optional[str] = None,
    file_type: Optional[str] = None,
    **kwargs: Any,
) -> str:
    """Decrypt and save to disk. Returns the path written."""
    blob = get_and_decrypt_file(cid, iv, encrypted_key, file_name=file_name, file_type=file_type, **kwargs)
    path = output_path or file_name or f"decrypted-{cid}"
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, 'wb') as f:
        f.write(blob.data)
    logging.info(f"✅ Decrypted file saved to {path}")
    return path


def log_progress(label: str = "Loading") -> ProgressCallback:
    def report(received: int, total: Optional[int]) -> None:
        percent = f"{received / total * 100:.2f}" if total else "?"
        logging.info(f"{label}: {percent}%")
    return report


def fetch_decrypted_audio(
    cid: str,
    iv: str,
    encrypted_key: EnvelopeInput,
    on_progress: Optional[ProgressCallback] = None,
    **kwargs: Any,
) -> Blob:
    kwargs.setdefault("file_type", "audio/mpeg")
    return get_and_decrypt_file(
        cid, iv, encrypted_key,
        on_progress=on_progress or log_progress("Loading"),
        **kwargs,
    )
