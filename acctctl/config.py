"""acctctl — Application-wide constants and path configuration."""

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Runtime state directory  (~/.acctctl/)
# ---------------------------------------------------------------------------
STATE_DIR = Path(os.environ.get("ACCTCTL_STATE_DIR", Path.home() / ".acctctl"))
DB_FILE = STATE_DIR / "accounts.db"
LOGS_DIR = STATE_DIR / "logs"
LOG_FILE = LOGS_DIR / "acctctl.log"

# ---------------------------------------------------------------------------
# Cloudflare API
# ---------------------------------------------------------------------------
CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"

# ---------------------------------------------------------------------------
# Remote archive (WebDAV)
# ---------------------------------------------------------------------------
DEFAULT_BACKUP_PATH = "/CloudFlareAssistant/"
HTTP_TIMEOUT_SECONDS = 30

# ---------------------------------------------------------------------------
# Remote archive (R2, S3-compatible)
# ---------------------------------------------------------------------------
R2_ENDPOINT_TEMPLATE = "https://{account_id}.r2.cloudflarestorage.com"
R2_REGION = "auto"
DEFAULT_R2_BACKUP_PATH = "CloudFlareAssistant/"

# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------
SNAPSHOT_FORMAT_VERSION = "1.1"
SUPPORTED_SNAPSHOT_VERSIONS = ("1.0", "1.1")
BACKUP_FILE_PREFIX = "cloudflare_backup_"
BACKUP_FILE_SUFFIX = ".json"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Number of backup attempts kept in the coordinator history
BACKUP_HISTORY_SIZE = 20
