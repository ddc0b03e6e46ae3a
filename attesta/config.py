"""
Configuration module for Attesta.

Centralizes configuration read from environment variables.
"""

import os
from typing import Any, Dict, Optional

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("ATTESTA_ENV", "dev")  # dev|stage|prod

# Logging
LOG_LEVEL = os.getenv("ATTESTA_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("ATTESTA_LOG_JSON", "true").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("ATTESTA_LOG_FILE", "")

# Registry defaults for newly created accounts
MAX_CREDENTIALS = int(os.getenv("ATTESTA_MAX_CREDENTIALS", "5"))
RECOVERY_THRESHOLD = int(os.getenv("ATTESTA_RECOVERY_THRESHOLD", "1"))

# Storage
STORE_PATH = os.getenv("ATTESTA_STORE_PATH", "")


# ============================================================
# Accessors
# ============================================================

def registry_defaults() -> Dict[str, int]:
    """Keyword arguments for MultiCredentialRegistry."""
    return {
        "max_credentials": MAX_CREDENTIALS,
        "recovery_threshold": RECOVERY_THRESHOLD,
    }


def logging_settings() -> Dict[str, Any]:
    """Keyword arguments for configure_logging."""
    return {
        "level": "DEBUG" if is_debug() else LOG_LEVEL,
        "json_format": LOG_JSON or is_production(),
        "log_file": LOG_FILE or None,
    }


def store_path() -> Optional[str]:
    return STORE_PATH or None


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("ATTESTA_DEBUG", "").lower() in ("1", "true", "yes")
