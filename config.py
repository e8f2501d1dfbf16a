import logging
import os
from pathlib import Path

# Load .env early so os.getenv picks up local dev secrets.
try:  # pragma: no cover - environment bootstrap
    from dotenv import load_dotenv

    _DOTENV_PATHS = [Path.cwd() / ".env", Path(__file__).resolve().parent / ".env"]
    for _env_path in _DOTENV_PATHS:
        if _env_path.exists():
            load_dotenv(dotenv_path=_env_path, override=False)
except OSError as exc:
    logging.getLogger(__name__).warning("Failed to load .env: %s", exc)

APP_NAME = "SOS Inventory Snapshot Service"
APP_VERSION = "1.0.0"

# ----------------------------
# Helpers
# ----------------------------
def _int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default

def _bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")

def _csv_list(name: str, default: str = "") -> list[str]:
    raw = (os.getenv(name) or default).strip()
    if not raw:
        return []
    return [x.strip().lower() for x in raw.split(",") if x.strip()]

# ----------------------------
# SOS Inventory API
# ----------------------------
# The key is only checked when a request is made (see auth.sos_auth).
SOS_API_KEY = (os.getenv("SOS_API_KEY") or "").strip()
SOS_BASE_URL = os.getenv("SOS_BASE_URL", "https://api.sosinventory.com/api/v2").rstrip("/")
SOS_ITEM_ENDPOINT = "/item"
SOS_PROCESS_ENDPOINT = "/process"

SOS_PAGE_SIZE = _int("SOS_PAGE_SIZE", 500)
SOS_TIMEOUT_SECONDS = _int("SOS_TIMEOUT_SECONDS", 180)
SOS_MAX_RETRIES = _int("SOS_MAX_RETRIES", 3)
SOS_THROTTLE_WAIT_SECONDS = _int("SOS_THROTTLE_WAIT_SECONDS", 30)
SOS_RATE_LIMIT_MS = _int("SOS_RATE_LIMIT_MS", 100)
SOS_CONCURRENT_REQUESTS = _int("SOS_CONCURRENT_REQUESTS", 3)

# ----------------------------
# Document store
# ----------------------------
INVENTORY_DB_PATH = Path(
    os.getenv("INVENTORY_DB_PATH") or Path(__file__).resolve().parent / "inventory.db"
)
# Hard per-batch operation ceiling and the margin kept below it for archival batches.
STORE_MAX_BATCH_OPERATIONS = _int("STORE_MAX_BATCH_OPERATIONS", 500)
STORE_BATCH_SAFETY_MARGIN = _int("STORE_BATCH_SAFETY_MARGIN", 50)
# Each item is written twice per chunk, so 250 fills a 500-operation batch.
INVENTORY_WRITE_CHUNK_SIZE = _int("INVENTORY_WRITE_CHUNK_SIZE", 250)
INVENTORY_CHUNK_DELAY_MS = _int("INVENTORY_CHUNK_DELAY_MS", 100)

# ----------------------------
# Daily snapshot schedule
# ----------------------------
SNAPSHOT_SCHEDULE_ENABLED = _bool("SNAPSHOT_SCHEDULE_ENABLED", True)
SNAPSHOT_SCHEDULE_HOUR = _int("SNAPSHOT_SCHEDULE_HOUR", 9)
SNAPSHOT_SCHEDULE_TZ = os.getenv("SNAPSHOT_SCHEDULE_TZ", "America/New_York")

# ----------------------------
# Access policy
# ----------------------------
ACCESS_POLICY_ENABLED = _bool("ACCESS_POLICY_ENABLED", False)
ACCESS_READ_DOMAIN = (os.getenv("ACCESS_READ_DOMAIN") or "").strip().lower()
ACCESS_ADMIN_DOMAINS = _csv_list("ACCESS_ADMIN_DOMAINS")
ACCESS_ADMIN_EMAILS = _csv_list("ACCESS_ADMIN_EMAILS")

LOG_LEVEL = os.getenv("INVENTORY_LOG_LEVEL", "INFO").upper()
