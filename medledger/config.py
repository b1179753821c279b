"""
Configuration module for MedLedger.

Centralizes all configuration with environment variable support
and validation.
"""

import os
from pathlib import Path
from typing import Dict

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("MEDLEDGER_ENV", "dev")  # dev|stage|prod

# Persistence
DB_PATH = os.getenv("MEDLEDGER_DB_PATH", "data/medledger.db")

# Logging
LOG_LEVEL = os.getenv("MEDLEDGER_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("MEDLEDGER_LOG_JSON", "1").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("MEDLEDGER_LOG_FILE", "")

# Header set by the authenticating gateway in front of the API
CALLER_HEADER = os.getenv("MEDLEDGER_CALLER_HEADER", "X-Caller-Identity")

# Audit export page size
AUDIT_PAGE_LIMIT = int(os.getenv("MEDLEDGER_AUDIT_PAGE_LIMIT", "1000"))

VALID_ENVS = ("dev", "stage", "prod")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate the current configuration.
    Returns dict of check name -> passed.
    """
    checks = {
        "env": ENV in VALID_ENVS,
        "log_level": LOG_LEVEL.upper() in VALID_LOG_LEVELS,
        "caller_header": bool(CALLER_HEADER.strip()),
        "audit_page_limit": AUDIT_PAGE_LIMIT > 0,
    }

    if DB_PATH != ":memory:":
        # The directory is created on first connect; it only has to be creatable.
        parent = Path(DB_PATH).parent
        checks["db_path"] = not parent.exists() or parent.is_dir()

    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("MEDLEDGER_DEBUG", "").lower() in ("1", "true", "yes")
