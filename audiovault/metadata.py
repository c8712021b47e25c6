"""Record metadata stored next to an encrypted upload."""
import hashlib
import json
from typing import Any, Dict, Mapping, Optional

from .encryption import EncryptionResult
from .key_envelope import EnvelopeInput, KeyEnvelope


def build_record_metadata(iv: str, encrypted_key: EnvelopeInput, file_cid: str,
                          file_name: Optional[str], file_type: Optional[str]) -> Dict[str, Any]:
    return {
        "iv": iv,
        "encryptedKey": KeyEnvelope.coerce(encrypted_key).to_dict(),
        "fileCID": file_cid,
        "fileName": file_name,
        "fileType": file_type,
    }


def record_metadata_for(result: EncryptionResult, file_cid: str) -> Dict[str, Any]:
    return build_record_metadata(result.iv, result.encrypted_key, file_cid,
                                 result.file_name, result.file_type)


def metadata_hash(metadata: Mapping[str, Any]) -> str:
    """SHA-256 over canonical JSON, ``0x`` prefixed for on-chain registration.

    Identifies the metadata record only; it says nothing about the audio bytes.
    """
    canonical = json.dumps(metadata, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return "0x" + hashlib.sha256(canonical).hexdigest()
