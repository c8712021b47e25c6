"""Runtime configuration, read once from the environment (and ``.env``)."""
import os

from dotenv import load_dotenv

load_dotenv()

# === CONFIGURATION ===
CUSTODY_URI = os.getenv("AUDIOVAULT_CUSTODY_URI", "http://127.0.0.1:8000").rstrip("/")
GATEWAY_URL = os.getenv("AUDIOVAULT_GATEWAY_URL", "gateway.pinata.cloud")
PRIVATE_KEY = os.getenv("AUDIOVAULT_PRIVATE_KEY")
LOG_FILE_PATH = os.getenv("AUDIOVAULT_LOG_FILE")
CHUNK_SIZE = int(os.getenv("AUDIOVAULT_CHUNK_SIZE", str(64 * 1024)))
HTTP_TIMEOUT = float(os.getenv("AUDIOVAULT_HTTP_TIMEOUT", "30"))

# Custody service endpoints
PUBLIC_KEY_PATH = "/api/v1/hash/getpublickey"
UPLOAD_PATH = "/api/v1/pinata/upload"
DECRYPT_PATH = "/api/v1/pinata/decrypt"

# AES-256-GCM parameters
AES_KEY_SIZE = 32
GCM_IV_SIZE = 12
GCM_TAG_SIZE = 16

DEFAULT_CONTENT_TYPE = "application/octet-stream"
