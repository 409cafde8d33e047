"""Project-wide constants (chunk size, poll interval, job timeouts, node defaults)."""

UPLOAD_CHUNK_SIZE_BYTES: int = 512000
DOWNLOAD_PIECE_SIZE_BYTES: int = 64 * 1024

POLL_INTERVAL_SECONDS: float = 2.0
EXPORT_TIMEOUT_SECONDS: float = 60.0
IMPORT_TIMEOUT_SECONDS: float = 120.0
APPLY_TIMEOUT_SECONDS: float = 120.0
DEFAULT_JOB_TIMEOUT_SECONDS: float = 30.0

CACHE_TTL_SECONDS: int = 3600
CACHE_SWEEP_INTERVAL_SECONDS: int = 3600
STAGED_FILE_PREFIX: str = "exportedPolicy_"
STAGED_FILE_SUFFIX: str = ".xml"
DEFAULT_STAGING_DIR: str = "/var/tmp"

LOCAL_NODE_HOST: str = "localhost"
LOCAL_NODE_PORT: int = 8100
REMOTE_NODE_PORT: int = 443

DEVICE_GROUP_PREFIX: str = "TrustProxy_"
DEVICE_STATE_UNDISCOVERED: str = "UNDISCOVERED"

REMOTE_STATUS_COMPLETED: str = "COMPLETED"
REMOTE_STATUS_SUCCESS: str = "SUCCESS"
REMOTE_STATUS_FAILURE: str = "FAILURE"
REMOTE_STATUS_FAILED: str = "FAILED"

ARTIFACT_SELECT_FIELDS = "id,name,fullPath,enforcementMode,active,versionDatetime"
