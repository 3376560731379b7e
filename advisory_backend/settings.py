from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
DATA_DIR.mkdir(parents=True, exist_ok=True)

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'console.db'}")
# The direct client is a second engine even when it points at the same store.
DIRECT_DATABASE_URL = os.getenv("DIRECT_DATABASE_URL", DATABASE_URL)

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(DATA_DIR / "uploads")))
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
UPLOAD_URL_PREFIX = os.getenv("UPLOAD_URL_PREFIX", "/uploads")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

DEFAULT_ADMIN_EMAIL = os.getenv("BACKEND_ADMIN_EMAIL", "admin@localhost")
DEFAULT_ADMIN_PASSWORD = os.getenv("BACKEND_ADMIN_PASSWORD", "admin123")

ROLE_ASSIGNMENTS = os.getenv("ROLE_ASSIGNMENTS", "")
ROLE_ASSIGNMENTS_FILE = os.getenv("ROLE_ASSIGNMENTS_FILE", "")

# Column letter holding the delinquency flag in overdue exports; header text varies.
OVERDUE_STATUS_COLUMN = os.getenv("OVERDUE_STATUS_COLUMN", "L").strip().upper()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
