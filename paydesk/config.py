"""
PAYDESK — Configuration.
Shared settings read from the environment.
"""

import os
from pathlib import Path

PAYDESK_DIR = Path(os.environ.get("PAYDESK_HOME", str(Path.home() / ".paydesk")))
DEFAULT_DB_PATH = PAYDESK_DIR / "paydesk.db"
DB_PATH = os.environ.get("PAYDESK_DB", str(DEFAULT_DB_PATH))

# ─── Storage ─────────────────────────────────────────────────────────
# PAYDESK_STORAGE: "memory" (default) | "sqlite" | "http"
STORAGE_MODE = os.environ.get("PAYDESK_STORAGE", "memory")
CONNECTION_POOL_SIZE = int(os.environ.get("PAYDESK_POOL_SIZE", "5"))
HTTP_BASE_URL = os.environ.get("PAYDESK_HTTP_URL", "http://localhost:8090/v1")
HTTP_API_KEY = os.environ.get("PAYDESK_API_KEY", "")
POLL_INTERVAL = float(os.environ.get("PAYDESK_POLL_INTERVAL", "5"))

# ─── Cache ───────────────────────────────────────────────────────────
CACHE_TIME = float(os.environ.get("PAYDESK_CACHE_TIME", "300"))
STALE_TIME = float(os.environ.get("PAYDESK_STALE_TIME", "30"))
SWEEP_INTERVAL = float(os.environ.get("PAYDESK_SWEEP_INTERVAL", "60"))


def reload() -> None:
    """Re-read every setting from the environment."""
    global PAYDESK_DIR, DEFAULT_DB_PATH, DB_PATH, STORAGE_MODE, CONNECTION_POOL_SIZE
    global HTTP_BASE_URL, HTTP_API_KEY, POLL_INTERVAL, CACHE_TIME, STALE_TIME, SWEEP_INTERVAL

    PAYDESK_DIR = Path(os.environ.get("PAYDESK_HOME", str(Path.home() / ".paydesk")))
    DEFAULT_DB_PATH = PAYDESK_DIR / "paydesk.db"
    DB_PATH = os.environ.get("PAYDESK_DB", str(DEFAULT_DB_PATH))
    STORAGE_MODE = os.environ.get("PAYDESK_STORAGE", "memory")
    CONNECTION_POOL_SIZE = int(os.environ.get("PAYDESK_POOL_SIZE", "5"))
    HTTP_BASE_URL = os.environ.get("PAYDESK_HTTP_URL", "http://localhost:8090/v1")
    HTTP_API_KEY = os.environ.get("PAYDESK_API_KEY", "")
    POLL_INTERVAL = float(os.environ.get("PAYDESK_POLL_INTERVAL", "5"))
    CACHE_TIME = float(os.environ.get("PAYDESK_CACHE_TIME", "300"))
    STALE_TIME = float(os.environ.get("PAYDESK_STALE_TIME", "30"))
    SWEEP_INTERVAL = float(os.environ.get("PAYDESK_SWEEP_INTERVAL", "60"))
