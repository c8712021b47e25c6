#!/usr/bin/env python3
"""
Audio Encryption/Decryption Utility

Command-line front end for the audiovault encryption core: encrypt audio for
the custody service's public key, upload it, and stream it back decrypted.

Usage:
    Key management (custody operator):
        python -m audiovault keygen --out custody_sk.hex
        python -m audiovault public-key
        python -m audiovault public-key --local

    Encryption / upload:
        python -m audiovault encrypt track.wav --out-dir encrypted/
        python -m audiovault upload track.mp3

    Decryption:
        python -m audiovault decrypt --cid bafy... --iv 00ab... \\
            --encrypted-key track.envelope.json --output track.mp3
        python -m audiovault open-local --encrypted-file track.wav.enc \\
            --envelope track.wav.envelope.json --output track.wav
"""
import argparse
import hashlib
import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import config
from .custodian import KeyCustodian
from .custody import CustodyClient
from .decryption import download_decrypted_file, log_progress
from .encryption import encrypt_file
from .errors import AudioVaultError, NotFound
from .key_envelope import KeyEnvelope, generate_keypair
from .metadata import build_record_metadata, metadata_hash


def setup_logging(log_file: Optional[str] = config.LOG_FILE_PATH, level: int = logging.INFO) -> logging.Logger:
    """Configure logging to output to the console and, optionally, a file."""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove any existing handlers
    logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
        logger.addHandler(file_handler)

    return logger


def compute_file_sha256(path: str) -> Optional[str]:
    """Compute SHA-256 hex digest for a file in a streaming manner.

    Returns hex digest string or None if file can't be read.
    """
    try:
        h = hashlib.sha256()
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(8192), b''):
                h.update(chunk)
        return h.hexdigest()
    except OSError as e:
        logging.warning(f"⚠️ Could not compute SHA-256 for {path}: {e}")
        return None


def _load_envelope_arg(value: str) -> Dict[str, Any]:
    """``--encrypted-key`` takes inline JSON or a path to a JSON file.

    A file written by ``encrypt`` holds the whole record; the envelope is
    under ``encryptedKey`` there.
    """
    text = value
    if os.path.exists(value):
        with open(value, 'r', encoding='utf-8') as f:
            text = f.read()
    data = json.loads(text)
    if isinstance(data, dict) and "encryptedKey" in data:
        data = data["encryptedKey"]
    return KeyEnvelope.coerce(data).to_dict()


def cmd_keygen(args: argparse.Namespace) -> None:
    private_hex, public_hex = generate_keypair()
    if args.out:
        with open(args.out, 'w', encoding='utf-8') as f:
            f.write(private_hex)
        os.chmod(args.out, 0o600)
        logging.info(f"✅ Private key saved to {args.out}")
    else:
        logging.warning("⚠️ No --out given; private key is not saved anywhere")
    logging.info(f"• Public key: {public_hex}")


def cmd_public_key(args: argparse.Namespace) -> None:
    if args.local:
        public_key = KeyCustodian.from_env().public_key()
    else:
        public_key = CustodyClient(args.custody_uri).get_public_key()
    print(public_key)


def cmd_encrypt(args: argparse.Namespace) -> None:
    public_key = args.public_key or CustodyClient(args.custody_uri).get_public_key()
    result = encrypt_file(args.file, public_key)

    out_dir = args.out_dir or os.path.dirname(os.path.abspath(args.file))
    os.makedirs(out_dir, exist_ok=True)
    encrypted_path = os.path.join(out_dir, f"{result.file_name}.enc")
    envelope_path = os.path.join(out_dir, f"{result.file_name}.envelope.json")

    with open(encrypted_path, 'wb') as f:
        f.write(result.encrypted_file.data)
    record = {
        "iv": result.iv,
        "encryptedKey": result.encrypted_key.to_dict(),
        "fileName": result.file_name,
        "fileType": result.file_type,
    }
    with open(envelope_path, 'w', encoding='utf-8') as f:
        json.dump(record, f, indent=2)

    logging.info("\n🔐 Encryption Summary:")
    logging.info(f"• Encrypted file: {encrypted_path}")
    logging.info(f"• Envelope: {envelope_path}")
    logging.info(f"• IV: {result.iv}")
    file_hash = compute_file_sha256(encrypted_path)
    if file_hash:
        logging.info(f"• Encrypted file SHA-256: {file_hash}")


def cmd_upload(args: argparse.Namespace) -> None:
    client = CustodyClient(args.custody_uri)
    upload = client.upload_music(args.file)
    if not upload.payload:
        raise NotFound(f"Upload returned no CID: {upload.message or 'empty payload'}")

    logging.info("\n📤 Upload Summary:")
    logging.info(f"• IPFS CID: {upload.payload.ipfs_hash}")
    logging.info(f"• Pin size: {upload.payload.pin_size}")
    file_data = upload.payload.file_data
    if file_data:
        record = build_record_metadata(file_data.iv, file_data.encrypted_key, upload.payload.ipfs_hash,
                                       file_data.file_name, file_data.file_type)
        logging.info(f"• Metadata hash: {metadata_hash(record)}")
        logging.info("\n📋 Record metadata as JSON:")
        logging.info(json.dumps(record, indent=2))


def cmd_decrypt(args: argparse.Namespace) -> None:
    envelope = _load_envelope_arg(args.encrypted_key)
    path = download_decrypted_file(
        args.cid,
        args.iv,
        envelope,
        output_path=args.output,
        file_name=args.file_name,
        file_type=args.file_type,
        on_progress=log_progress("Downloading"),
        base_url=args.custody_uri,
    )
    logging.info("\n🔓 Decryption Summary:")
    logging.info(f"• CID: {args.cid}")
    logging.info(f"• Decrypted file: {path}")
    file_hash = compute_file_sha256(path)
    if file_hash:
        logging.info(f"• Decrypted file SHA-256: {file_hash}")


def cmd_open_local(args: argparse.Namespace) -> None:
    custodian = KeyCustodian.from_file(args.private_key) if args.private_key else KeyCustodian.from_env()
    with open(args.envelope, 'r', encoding='utf-8') as f:
        record = json.load(f)
    with open(args.encrypted_file, 'rb') as f:
        ciphertext = f.read()

    plaintext = custodian.decrypt_payload(ciphertext, record["iv"], record["encryptedKey"])
    with open(args.output, 'wb') as f:
        f.write(plaintext)

    logging.info("\n🔓 Decryption Summary:")
    logging.info(f"• Encrypted file: {args.encrypted_file}")
    logging.info(f"• Decrypted file: {args.output}")
    if args.cid:
        meta = build_record_metadata(record["iv"], record["encryptedKey"], args.cid,
                                     record.get("fileName"), record.get("fileType"))
        logging.info(f"• Metadata hash: {metadata_hash(meta)}")
    file_hash = compute_file_sha256(args.output)
    if file_hash:
        logging.info(f"• Decrypted file SHA-256: {file_hash}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='audiovault',
        description='Encrypt audio for the custody service and stream it back decrypted',
        epilog='Examples:\n'
               '  python -m audiovault encrypt track.wav\n'
               '  python -m audiovault upload track.mp3\n'
               '  python -m audiovault decrypt --cid bafy... --iv 00ab... --encrypted-key env.json\n'
               '\n'
               'For command help, use: python -m audiovault <command> --help',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        '--custody-uri',
        default=config.CUSTODY_URI,
        metavar='URL',
        help=f'Base URL of the key-custody service (default: {config.CUSTODY_URI})'
    )
    parser.add_argument('--log-file', default=config.LOG_FILE_PATH, metavar='PATH',
                        help='Also append log lines to this file')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('keygen', help='Generate a secp256k1 custody key pair')
    p.add_argument('--out', metavar='PATH', help='Write the private key hex here (mode 0600)')
    p.set_defaults(func=cmd_keygen)

    p = sub.add_parser('public-key', help='Print the custody public key')
    p.add_argument('--local', action='store_true',
                   help='Derive from AUDIOVAULT_PRIVATE_KEY instead of asking the service')
    p.set_defaults(func=cmd_public_key)

    p = sub.add_parser('encrypt', help='Encrypt a file to <name>.enc and <name>.envelope.json')
    p.add_argument('file', metavar='FILE')
    p.add_argument('--public-key', metavar='HEX',
                   help='Recipient public key (default: fetched from the custody service)')
    p.add_argument('--out-dir', metavar='DIR', help='Output directory (default: next to FILE)')
    p.set_defaults(func=cmd_encrypt)

    p = sub.add_parser('upload', help='Encrypt an audio file and upload it through the custody service')
    p.add_argument('file', metavar='FILE')
    p.set_defaults(func=cmd_upload)

    p = sub.add_parser('decrypt', help='Stream a stored file back decrypted from the custody service')
    p.add_argument('--cid', required=True, help='Content identifier of the encrypted payload - required')
    p.add_argument('--iv', required=True, metavar='HEX', help='IV hex from encryption - required')
    p.add_argument('--encrypted-key', required=True, metavar='JSON|PATH',
                   help='Key envelope as inline JSON or a JSON file - required')
    p.add_argument('--file-name', help='Original file name')
    p.add_argument('--file-type', help='MIME type of the decrypted file')
    p.add_argument('--output', metavar='PATH', help='Where to save (default: file name or decrypted-<cid>)')
    p.set_defaults(func=cmd_decrypt)

    p = sub.add_parser('open-local', help='Custody operator: decrypt with the locally held private key')
    p.add_argument('--encrypted-file', required=True, metavar='PATH')
    p.add_argument('--envelope', required=True, metavar='PATH', help='Record JSON written by encrypt')
    p.add_argument('--output', required=True, metavar='PATH')
    p.add_argument('--private-key', metavar='PATH',
                   help='Private key hex file (default: AUDIOVAULT_PRIVATE_KEY)')
    p.add_argument('--cid', help='If given, also print the record metadata hash for this CID')
    p.set_defaults(func=cmd_open_local)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_file)

    cmd_line = ' '.join(sys.argv) if argv is None else f"audiovault {' '.join(argv)}"
    logging.info("=" * 80)
    logging.info(f"Command invoked: {cmd_line}")
    logging.info(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logging.info("=" * 80)

    try:
        args.func(args)
    except AudioVaultError as e:
        logging.error(f"❌ {e}")
        return 1
    except (OSError, ValueError, KeyError) as e:
        logging.error(f"❌ {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
