"""Configuration settings for the replicator service."""

import os

from common.constants import (
    UPLOAD_CHUNK_SIZE_BYTES,
    POLL_INTERVAL_SECONDS,
    EXPORT_TIMEOUT_SECONDS,
    IMPORT_TIMEOUT_SECONDS,
    APPLY_TIMEOUT_SECONDS,
    CACHE_TTL_SECONDS,
    CACHE_SWEEP_INTERVAL_SECONDS,
    DEFAULT_STAGING_DIR,
    LOCAL_NODE_HOST,
    LOCAL_NODE_PORT,
)


REPLICATOR_HOST = os.environ.get("REPLICATOR_HOST", "0.0.0.0")

REPLICATOR_PORT = int(os.environ.get("REPLICATOR_PORT", "8000"))

STAGING_DIR = os.environ.get("REPLICATOR_STAGING_DIR", DEFAULT_STAGING_DIR)

CACHE_TTL = int(os.environ.get("REPLICATOR_CACHE_TTL", str(CACHE_TTL_SECONDS)))
CACHE_SWEEP_INTERVAL = int(os.environ.get("REPLICATOR_CACHE_SWEEP_INTERVAL", str(CACHE_SWEEP_INTERVAL_SECONDS)))

POLL_INTERVAL = float(os.environ.get("REPLICATOR_POLL_INTERVAL", str(POLL_INTERVAL_SECONDS)))
EXPORT_TIMEOUT = float(os.environ.get("REPLICATOR_EXPORT_TIMEOUT", str(EXPORT_TIMEOUT_SECONDS)))
IMPORT_TIMEOUT = float(os.environ.get("REPLICATOR_IMPORT_TIMEOUT", str(IMPORT_TIMEOUT_SECONDS)))
APPLY_TIMEOUT = float(os.environ.get("REPLICATOR_APPLY_TIMEOUT", str(APPLY_TIMEOUT_SECONDS)))

UPLOAD_CHUNK_SIZE = int(os.environ.get("REPLICATOR_CHUNK_SIZE", str(UPLOAD_CHUNK_SIZE_BYTES)))

LOCAL_HOST = os.environ.get("REPLICATOR_LOCAL_HOST", LOCAL_NODE_HOST)
LOCAL_PORT = int(os.environ.get("REPLICATOR_LOCAL_PORT", str(LOCAL_NODE_PORT)))
LOCAL_USER = os.environ.get("REPLICATOR_LOCAL_USER", "admin:")
LOCAL_VERSION = os.environ.get("REPLICATOR_LOCAL_VERSION")

VERIFY_TLS = os.environ.get("REPLICATOR_VERIFY_TLS", "false").lower() in ("1", "true", "yes")
REQUEST_TIMEOUT = float(os.environ.get("REPLICATOR_REQUEST_TIMEOUT", "30"))

ALLOWED_URL_SCHEMES = tuple(
    scheme.strip().lower()
    for scheme in os.environ.get("REPLICATOR_ALLOWED_URL_SCHEMES", "http,https").split(",")
    if scheme.strip()
)

JOB_TIMEOUTS = {
    "export": EXPORT_TIMEOUT,
    "import": IMPORT_TIMEOUT,
    "apply": APPLY_TIMEOUT,
}
