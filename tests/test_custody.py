import json
import os

import pytest
import requests

from audiovault.config import PUBLIC_KEY_PATH, UPLOAD_PATH
from audiovault.custodian import KeyCustodian, fetch_ciphertext
from audiovault.custody import CustodyClient, UploadResponse
from audiovault.encryption import Blob, encrypt_file
from audiovault.errors import (
    DecryptionFailure,
    InvalidPublicKey,
    MissingParameters,
    NetworkFailure,
    NotFound,
    UnsupportedInput,
)
from audiovault.metadata import build_record_metadata, metadata_hash, record_metadata_for

BASE = "http://custody.test"


def _paths(service):
    return [call["url"].replace(BASE, "") for call in service.calls]


def test_public_key_is_cached_per_client(custody_service, public_key):
    client = CustodyClient(BASE, session=custody_service)
    assert client.get_public_key() == public_key
    assert client.get_public_key() == public_key
    assert _paths(custody_service).count(PUBLIC_KEY_PATH) == 1

    client.get_public_key(refresh=True)
    assert _paths(custody_service).count(PUBLIC_KEY_PATH) == 2

    # a second client does not share the first one's cache
    CustodyClient(BASE, session=custody_service).get_public_key()
    assert _paths(custody_service).count(PUBLIC_KEY_PATH) == 3


def test_public_key_0x_prefix_is_stripped(fake_session, fake_response, public_key):
    session = fake_session([fake_response(json_body={"payload": {"publicKey": "0x" + public_key}})])
    assert CustodyClient(BASE, session=session).get_public_key() == public_key


@pytest.mark.parametrize("body", [
    {"payload": {}},
    {"payload": {"publicKey": 42}},
    {"payload": {"publicKey": "04" + "00" * 64}},
    {"payload": "04abcdef"},
    {"payload": ["04abcdef"]},
    ["not", "an", "object"],
    None,
])
def test_public_key_bad_body(fake_session, fake_response, body):
    session = fake_session([fake_response(json_body=body)])
    with pytest.raises(InvalidPublicKey):
        CustodyClient(BASE, session=session).get_public_key()


def test_public_key_service_errors(fake_session, fake_response):
    client = CustodyClient(BASE, session=fake_session([fake_response(status_code=503, reason="Unavailable")]))
    with pytest.raises(NotFound) as excinfo:
        client.get_public_key()
    assert excinfo.value.status_code == 503

    client = CustodyClient(BASE, session=fake_session([requests.exceptions.Timeout("slow")]))
    with pytest.raises(NetworkFailure):
        client.get_public_key()


def test_upload_sends_multipart_fields(custody_service, public_key):
    client = CustodyClient(BASE, session=custody_service)
    result = encrypt_file(Blob(b"\x00" * 100, "audio/mpeg", "beat.mp3"), public_key)

    upload = client.upload_encrypted_file(result)

    call = custody_service.calls[-1]
    assert call["url"] == BASE + UPLOAD_PATH
    name, payload, content_type = call["files"]["encryptedFile"]
    assert (name, content_type) == ("beat.mp3", "application/octet-stream")
    assert payload == result.encrypted_file.data
    assert call["data"]["iv"] == result.iv
    assert call["data"]["fileName"] == "beat.mp3"
    assert call["data"]["fileType"] == "audio/mpeg"
    assert json.loads(call["data"]["encryptedKey"]) == result.encrypted_key.to_dict()

    assert upload.success
    assert upload.payload.ipfs_hash == "bafyfake0"
    assert upload.payload.pin_size == len(payload)
    assert upload.payload.file_data.encrypted_key == result.encrypted_key.to_dict()


def test_upload_failure_uses_server_message(fake_session, fake_response, public_key):
    session = fake_session([fake_response(status_code=400, reason="Bad Request",
                                          json_body={"message": "File too large"})])
    result = encrypt_file(Blob(b"x", "audio/mpeg", "x.mp3"), public_key)
    with pytest.raises(NotFound) as excinfo:
        CustodyClient(BASE, session=session).upload_encrypted_file(result)
    assert excinfo.value.message == "File too large"
    assert excinfo.value.status_code == 400


def test_upload_music_rejects_non_audio_before_any_request(custody_service):
    client = CustodyClient(BASE, session=custody_service)
    with pytest.raises(UnsupportedInput):
        client.upload_music(Blob(b"\x89PNG", "image/png", "cover.png"))
    assert custody_service.calls == []


def test_upload_then_stream_back(custody_service, tmp_path):
    track = tmp_path / "loop.mp3"
    data = os.urandom(5000)
    track.write_bytes(data)
    client = CustodyClient(BASE, session=custody_service)

    upload = client.upload_music(str(track))
    file_data = upload.payload.file_data
    progress = []
    blob = client.decrypt_file(
        upload.payload.ipfs_hash, file_data.iv, file_data.encrypted_key,
        file_name=file_data.file_name, file_type=file_data.file_type,
        on_progress=lambda r, t: progress.append(r),
    )

    assert blob.data == data
    assert blob.content_type == "audio/mpeg"
    assert progress[-1] == len(data)
    # the stored object is ciphertext, not the original audio
    assert custody_service.stored[upload.payload.ipfs_hash] != data


def test_upload_response_from_json_without_payload():
    upload = UploadResponse.from_json({"success": False, "message": "nope"})
    assert upload.payload is None
    assert not upload.success
    assert upload.message == "nope"


def test_custodian_opens_only_its_own_envelopes(custodian, other_private_key, public_key):
    result = encrypt_file(b"secret audio", public_key)
    assert len(custodian.open_envelope(result.encrypted_key)) == 64
    with pytest.raises(DecryptionFailure):
        KeyCustodian(other_private_key).open_envelope(result.encrypted_key)


def test_custodian_rejects_envelope_without_aes_key(custodian, public_key):
    from audiovault.key_envelope import seal
    with pytest.raises(DecryptionFailure):
        custodian.open_envelope(seal("not a key", public_key))


def test_custodian_yields_nothing_for_tampered_payload(custodian, public_key):
    result = encrypt_file(os.urandom(300), public_key)
    tampered = bytearray(result.encrypted_file.data)
    tampered[10] ^= 0xFF
    chunks = custodian.iter_plaintext(bytes(tampered), result.iv, result.encrypted_key, chunk_size=64)
    with pytest.raises(DecryptionFailure):
        next(chunks)


def test_custodian_chunks(custodian, public_key):
    data = os.urandom(300)
    result = encrypt_file(data, public_key)
    chunks = list(custodian.iter_plaintext(result.encrypted_file.data, result.iv, result.encrypted_key,
                                           chunk_size=128))
    assert [len(c) for c in chunks] == [128, 128, 44]
    assert b"".join(chunks) == data


def test_custodian_from_env(monkeypatch, private_key, public_key):
    monkeypatch.setattr("audiovault.custodian.PRIVATE_KEY", private_key)
    assert KeyCustodian.from_env().public_key() == public_key
    monkeypatch.setattr("audiovault.custodian.PRIVATE_KEY", None)
    with pytest.raises(MissingParameters):
        KeyCustodian.from_env()


def test_custodian_from_file(tmp_path, private_key, public_key):
    path = tmp_path / "sk.hex"
    path.write_text(private_key + "\n")
    assert KeyCustodian.from_file(str(path)).public_key() == public_key
    (tmp_path / "empty.hex").write_text("")
    with pytest.raises(MissingParameters):
        KeyCustodian.from_file(str(tmp_path / "empty.hex"))


def test_fetch_ciphertext(fake_session, fake_response):
    session = fake_session([fake_response(chunks=[b"cipher", b"text"])])
    assert fetch_ciphertext("bafy123", "gateway.example", session=session) == b"ciphertext"
    assert session.calls[0]["url"] == "https://gateway.example/ipfs/bafy123"

    session = fake_session([fake_response(status_code=404, reason="Not Found")])
    with pytest.raises(NotFound):
        fetch_ciphertext("bafy404", "http://localhost:8080/", session=session)
    assert session.calls[0]["url"] == "http://localhost:8080/ipfs/bafy404"

    session = fake_session([requests.exceptions.ConnectionError("down")])
    with pytest.raises(NetworkFailure):
        fetch_ciphertext("bafy", "gateway.example", session=session)

    with pytest.raises(MissingParameters):
        fetch_ciphertext("", "gateway.example", session=fake_session())


def test_metadata_hash(public_key):
    result = encrypt_file(Blob(b"abc", "audio/mpeg", "a.mp3"), public_key)
    record = record_metadata_for(result, "bafyabc")

    assert set(record) == {"iv", "encryptedKey", "fileCID", "fileName", "fileType"}
    digest = metadata_hash(record)
    assert digest.startswith("0x") and len(digest) == 66
    # key order does not matter
    assert metadata_hash(dict(reversed(list(record.items())))) == digest
    same = build_record_metadata(result.iv, result.encrypted_key.to_json(), "bafyabc", "a.mp3", "audio/mpeg")
    assert metadata_hash(same) == digest
    assert metadata_hash(record_metadata_for(result, "bafyother")) != digest


@pytest.mark.parametrize("payload", ["bafyabc", ["bafyabc"], 42])
def test_upload_response_tolerates_non_object_payload(payload):
    upload = UploadResponse.from_json({"success": True, "payload": payload})
    assert upload.payload is None


def test_upload_with_non_object_payload_returns_no_cid(fake_session, fake_response, public_key):
    session = fake_session([fake_response(json_body={"success": True, "payload": "bafyabc"})])
    result = encrypt_file(Blob(b"x", "audio/mpeg", "x.mp3"), public_key)
    upload = CustodyClient(BASE, session=session).upload_encrypted_file(result)
    assert upload.payload is None


def test_decrypt_file_uses_client_timeout(fake_session, fake_response):
    session = fake_session([fake_response(chunks=[b"abc"], headers={"Content-Length": "3"})])
    client = CustodyClient(BASE, session=session, timeout=5)
    assert client.decrypt_file("bafy", "00" * 12, '{"iv":"aa"}').data == b"abc"
    assert session.calls[0]["timeout"] == (5, None)


@pytest.mark.parametrize("bad_key", ["not-hex", "abcd", "00" * 33])
def test_custodian_rejects_malformed_private_key(monkeypatch, tmp_path, bad_key):
    with pytest.raises(MissingParameters):
        KeyCustodian(bad_key)
    monkeypatch.setattr("audiovault.custodian.PRIVATE_KEY", bad_key)
    with pytest.raises(MissingParameters):
        KeyCustodian.from_env()
    path = tmp_path / "sk.hex"
    path.write_text(bad_key)
    with pytest.raises(MissingParameters):
        KeyCustodian.from_file(str(path))
