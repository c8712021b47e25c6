"""Client for the key-custody service: public key, upload, streamed decrypt."""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import requests

from .config import CUSTODY_URI, HTTP_TIMEOUT, PUBLIC_KEY_PATH, UPLOAD_PATH
from .decryption import get_and_decrypt_file
from .encryption import Blob, EncryptionResult, FileInput, encrypt_file, read_input, require_audio
from .errors import InvalidPublicKey, NetworkFailure, NotFound
from .key_envelope import EnvelopeInput, load_public_key


@dataclass
class FileData:
    file_name: str
    file_type: str
    iv: str
    encrypted_key: Dict[str, str]


@dataclass
class UploadPayload:
    ipfs_hash: str
    pin_size: Optional[int] = None
    timestamp: Optional[str] = None
    file_data: Optional[FileData] = None


@dataclass
class UploadResponse:
    success: bool
    status: Optional[int] = None
    message: str = ""
    payload: Optional[UploadPayload] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_json(cls, body: Mapping[str, Any]) -> "UploadResponse":
        payload_raw = body.get("payload")
        if not isinstance(payload_raw, Mapping):
            payload_raw = {}
        file_data_raw = payload_raw.get("fileData")
        file_data = None
        if isinstance(file_data_raw, Mapping):
            file_data = FileData(
                file_name=file_data_raw.get("fileName", ""),
                file_type=file_data_raw.get("fileType", ""),
                iv=file_data_raw.get("iv", ""),
                encrypted_key=dict(file_data_raw.get("encryptedKey") or {}),
            )
        payload = None
        if payload_raw.get("ipfsHash"):
            payload = UploadPayload(
                ipfs_hash=payload_raw["ipfsHash"],
                pin_size=payload_raw.get("pinSize"),
                timestamp=payload_raw.get("timestamp"),
                file_data=file_data,
            )
        return cls(
            success=bool(body.get("success", payload is not None)),
            status=body.get("status"),
            message=body.get("message", ""),
            payload=payload,
            raw=dict(body),
        )


def _json_or_none(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class CustodyClient:
    """
    Talks to the custody service that holds the platform's private key.

    One instance per caller; the fetched public key is cached on the
    instance and nowhere else.
    """

    def __init__(self, base_url: str = CUSTODY_URI,
                 session: Optional[requests.Session] = None,
                 timeout: float = HTTP_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self._public_key: Optional[str] = None

    def _post(self, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self.session.post(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise NetworkFailure(f"Request to {url} failed: {exc}") from exc

    def get_public_key(self, refresh: bool = False) -> str:
        if self._public_key and not refresh:
            return self._public_key

        response = self._post(PUBLIC_KEY_PATH)
        if not response.ok:
            raise NotFound(f"Failed to fetch public key: {response.status_code}",
                           status_code=response.status_code)

        body = _json_or_none(response)
        public_key: Any = body
        if isinstance(body, Mapping):
            payload = body.get("payload")
            if isinstance(payload, Mapping):
                public_key = payload.get("publicKey") or body.get("publicKey")
            else:
                public_key = body.get("publicKey")
        if not public_key or not isinstance(public_key, str):
            raise InvalidPublicKey("Invalid public key response")

        public_key = public_key[2:] if public_key.lower().startswith("0x") else public_key
        load_public_key(public_key)
        self._public_key = public_key
        logging.info(f"✅ Fetched custody public key {public_key[:10]}…")
        return public_key

    def upload_encrypted_file(self, result: EncryptionResult) -> UploadResponse:
        files = {
            "encryptedFile": (result.file_name, result.encrypted_file.data, result.encrypted_file.content_type),
        }
        data = {
            "iv": result.iv,
            "encryptedKey": json.dumps(result.encrypted_key.to_dict()),
            "fileName": result.file_name,
            "fileType": result.file_type,
        }
        response = self._post(UPLOAD_PATH, files=files, data=data)
        body = _json_or_none(response)
        if not response.ok:
            message = body.get("message") if isinstance(body, Mapping) else None
            raise NotFound(message or "Upload failed", status_code=response.status_code)
        if not isinstance(body, Mapping):
            raise NotFound("Upload failed: unexpected response body", status_code=response.status_code)

        upload = UploadResponse.from_json(body)
        cid = upload.payload.ipfs_hash if upload.payload else None
        logging.info(f"✅ Uploaded {result.file_name} (CID: {cid})")
        return upload

    def upload_music(self, file: FileInput) -> UploadResponse:
        """Fetch key (cached), encrypt an audio file and upload it."""
        blob: Blob = read_input(file)
        require_audio(blob)
        public_key = self.get_public_key()
        result = encrypt_file(blob, public_key)
        return self.upload_encrypted_file(result)

    def decrypt_file(self, cid: str, iv: str, encrypted_key: EnvelopeInput, **kwargs: Any) -> Blob:
        kwargs.setdefault("session", self.session)
        kwargs.setdefault("timeout", self.timeout)
        return get_and_decrypt_file(cid, iv, encrypted_key, base_url=self.base_url, **kwargs)
