from __future__ import annotations

import os
from pathlib import Path


def _project_root() -> Path:
    # core/config.py -> bookkeeper/core -> bookkeeper -> project root
    return Path(__file__).resolve().parents[2]


def _env_flag(name: str, default: str) -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


PROJECT_ROOT: Path = _project_root()

# Data directory (SQLite DB)
DATA_DIR: Path = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
DB_PATH: Path = Path(os.getenv("BOOKKEEPER_DB_PATH", str(DATA_DIR / "bookkeeper.db")))

LOG_DIR: Path = Path(os.getenv("LOG_DIR", str(PROJECT_ROOT / "logs")))
IS_PRODUCTION: bool = os.getenv("ENVIRONMENT") == "production"

# Bearer token expected on the processing trigger; empty disables the check
CRON_SECRET: str = os.getenv("CRON_SECRET", "")

CRON_ENABLED: bool = _env_flag("CRON_ENABLED", "1")
RECURRING_CRON_HOUR: int = int(os.getenv("RECURRING_CRON_HOUR", "3"))
RECURRING_CRON_MINUTE: int = int(os.getenv("RECURRING_CRON_MINUTE", "15"))

# Remote ledger endpoint; when unset transactions go to the local SQLite ledger
LEDGER_URL: str = os.getenv("LEDGER_URL", "")
LEDGER_TOKEN: str = os.getenv("LEDGER_TOKEN", "")
LEDGER_TIMEOUT_SECONDS: float = float(os.getenv("LEDGER_TIMEOUT_SECONDS", "5"))

PROCESSOR_LEASE_SECONDS: int = int(os.getenv("PROCESSOR_LEASE_SECONDS", "600"))
MAX_CATCHUP_OCCURRENCES: int = int(os.getenv("MAX_CATCHUP_OCCURRENCES", "500"))
