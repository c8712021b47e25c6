import hashlib
import json
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import pytest
import requests

from audiovault.config import DECRYPT_PATH, PUBLIC_KEY_PATH, UPLOAD_PATH
from audiovault.custodian import KeyCustodian
from audiovault.key_envelope import public_key_hex

TEST_PRIVATE_KEY = hashlib.sha256(b"audiovault test custody key").hexdigest()
OTHER_PRIVATE_KEY = hashlib.sha256(b"audiovault someone else").hexdigest()


class FakeResponse:
    """Just enough of requests.Response for the client code."""

    def __init__(self, status_code: int = 200, chunks: Iterable[bytes] = (),
                 headers: Optional[Dict[str, str]] = None, json_body: Any = None,
                 reason: str = "OK", error_after: Optional[int] = None):
        self.status_code = status_code
        self.chunks = list(chunks)
        self.headers = requests.structures.CaseInsensitiveDict(headers or {})
        self.json_body = json_body
        self.reason = reason
        self.error_after = error_after
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def content(self) -> bytes:
        return b"".join(self.chunks)

    def json(self) -> Any:
        if self.json_body is None:
            raise ValueError("No JSON body")
        return self.json_body

    def iter_content(self, chunk_size: int = 1):
        for index, chunk in enumerate(self.chunks):
            if self.error_after is not None and index >= self.error_after:
                raise requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead")
            yield chunk

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class FakeSession:
    """Replays queued responses and records every call."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def _next(self, method: str, url: str, kwargs: Dict[str, Any]) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("POST", url, kwargs)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("GET", url, kwargs)


class FakeCustodyService:
    """In-memory custody service: stores uploads, streams back plaintext."""

    def __init__(self, custodian: KeyCustodian, chunk_size: int = 1024,
                 send_length: bool = True):
        self.custodian = custodian
        self.chunk_size = chunk_size
        self.send_length = send_length
        self.stored: Dict[str, bytes] = {}
        self.calls: List[Dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        path = urlparse(url).path
        if path == PUBLIC_KEY_PATH:
            return FakeResponse(json_body={"payload": {"publicKey": self.custodian.public_key()}})
        if path == UPLOAD_PATH:
            return self._upload(kwargs["files"], kwargs["data"])
        if path == DECRYPT_PATH:
            return self._decrypt(kwargs["params"])
        return FakeResponse(status_code=404, reason="Not Found")

    def _upload(self, files: Dict[str, Any], data: Dict[str, str]) -> FakeResponse:
        _, payload, _ = files["encryptedFile"]
        cid = f"bafyfake{len(self.stored)}"
        self.stored[cid] = payload
        body = {
            "status": 200,
            "success": True,
            "message": "File uploaded",
            "payload": {
                "ipfsHash": cid,
                "pinSize": len(payload),
                "timestamp": "2026-10-18T00:00:00Z",
                "fileData": {
                    "fileName": data["fileName"],
                    "fileType": data["fileType"],
                    "iv": data["iv"],
                    "encryptedKey": json.loads(data["encryptedKey"]),
                },
            },
        }
        return FakeResponse(json_body=body)

    def _decrypt(self, params: Dict[str, str]) -> FakeResponse:
        ciphertext = self.stored.get(params["cid"])
        if ciphertext is None:
            return FakeResponse(status_code=404, reason="Not Found",
                                json_body={"message": f"No record for {params['cid']}"})
        chunks = list(self.custodian.iter_plaintext(
            ciphertext, params["iv"], params["encryptedKey"], chunk_size=self.chunk_size))
        headers = {}
        if self.send_length:
            headers["Content-Length"] = str(sum(len(c) for c in chunks))
        return FakeResponse(chunks=chunks, headers=headers)


@pytest.fixture
def custodian() -> KeyCustodian:
    return KeyCustodian(TEST_PRIVATE_KEY)


@pytest.fixture
def public_key() -> str:
    return public_key_hex(TEST_PRIVATE_KEY)


@pytest.fixture
def other_private_key() -> str:
    return OTHER_PRIVATE_KEY


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def custody_service(custodian) -> FakeCustodyService:
    return FakeCustodyService(custodian)


@pytest.fixture
def private_key() -> str:
    return TEST_PRIVATE_KEY
