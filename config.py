"""Runtime configuration for the Agility Qs service.

All values come from environment variables (a local ``.env`` file is loaded
first).  Set DATABASE_URL to use Postgres; otherwise SQLite at
AGILITY_DB_PATH is used.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import List

import dotenv

dotenv.load_dotenv()

# ---------------------------------------------------------------------------
# Configuration (all from env vars)
# ---------------------------------------------------------------------------

DATABASE_URL = os.environ.get("DATABASE_URL", "")
DB_PATH = Path(os.environ.get("AGILITY_DB_PATH", "agility.db"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "8000"))
CORS_ORIGINS: List[str] = [
    o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()
]
