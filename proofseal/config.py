"""
Configuration module for ProofSeal.

Centralizes all configuration with environment variable support
and validation of the selected storage backends.
"""

import os
from pathlib import Path
from typing import Dict

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("PROOFSEAL_ENV", "dev")  # dev|stage|prod

# Proof records and seal objects
STORE_BACKEND = os.getenv("PROOFSEAL_STORE_BACKEND", "memory")  # memory|sqlite
DB_PATH = os.getenv("PROOFSEAL_DB_PATH", "data/proofseal.db")

# Encrypted blob storage
BLOB_BACKEND = os.getenv("PROOFSEAL_BLOB_BACKEND", "memory")  # memory|filesystem|walrus
BLOB_DIR = os.getenv("PROOFSEAL_BLOB_DIR", "data/blobs")
WALRUS_PUBLISHER_URL = os.getenv("WALRUS_PUBLISHER_URL", "")
WALRUS_AGGREGATOR_URL = os.getenv("WALRUS_AGGREGATOR_URL", "")
WALRUS_EPOCHS = int(os.getenv("WALRUS_EPOCHS", "5"))
WALRUS_TIMEOUT_SECONDS = float(os.getenv("WALRUS_TIMEOUT_SECONDS", "30"))

# Uploads
MAX_DOCUMENT_BYTES = int(os.getenv("MAX_DOCUMENT_BYTES", str(10 * 1024 * 1024)))
ALLOWED_MEDIA_TYPES = tuple(
    t.strip() for t in os.getenv("ALLOWED_MEDIA_TYPES", "application/pdf").split(",") if t.strip()
)
DEFAULT_MEDIA_TYPE = os.getenv("DEFAULT_MEDIA_TYPE", "application/pdf")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("LOG_FILE") or None


# ============================================================
# Validation
# ============================================================

def dir_writable(path: Path) -> bool:
    """
    True if ``path`` is a writable directory, or can be created because
    its nearest existing ancestor is one.
    """
    path = path.resolve()
    while not path.exists():
        path = path.parent
    return path.is_dir() and os.access(path, os.W_OK | os.X_OK)


def validate_config() -> Dict[str, bool]:
    """
    Validate that the selected backends are usable.
    Returns dict of check name -> ok.
    """
    checks = {
        "store_backend": STORE_BACKEND in ("memory", "sqlite"),
        "blob_backend": BLOB_BACKEND in ("memory", "filesystem", "walrus"),
        "max_document_bytes": MAX_DOCUMENT_BYTES > 0,
    }

    if STORE_BACKEND == "sqlite":
        checks["db_dir"] = dir_writable(Path(DB_PATH).parent)

    if BLOB_BACKEND == "filesystem":
        checks["blob_dir"] = dir_writable(Path(BLOB_DIR))

    if BLOB_BACKEND == "walrus":
        checks["walrus_publisher_url"] = bool(WALRUS_PUBLISHER_URL)
        checks["walrus_aggregator_url"] = bool(WALRUS_AGGREGATOR_URL)

    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("PROOFSEAL_DEBUG", "").lower() in ("1", "true", "yes")
