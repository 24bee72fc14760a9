"""Static configuration for civictriage.

All user-editable settings (similarity weights, lifecycle, rate limits,
providers, logging) live in a single JSON file for quick edits without
touching Python. Set CIVICTRIAGE_CONFIG to point at another file.
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.getenv("CIVICTRIAGE_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database.
_storage = _CONFIG.get("storage", {})
DB_PATH = _resolve_path(_storage.get("db_path", "civictriage.db"))

# Duplicate detection. Weights must sum to 1.0; the core validates them.
_similarity = _CONFIG.get("similarity", {})
SIMILARITY_WEIGHTS = dict(_similarity.get("weights", {}))
OPEN_STATUSES = tuple(_similarity.get("open_statuses", ("active", "in_progress", "open")))
CANDIDATE_WINDOW_DAYS = int(_similarity.get("candidate_window_days", 30))
CANDIDATE_LIMIT = int(_similarity.get("candidate_limit", 50))
SHORT_CIRCUIT_KM = float(_similarity.get("short_circuit_km", 0.2))
MAX_PARALLEL = int(_similarity.get("max_parallel", 5))
LATENCY_BUDGET_SECONDS = float(_similarity.get("latency_budget_seconds", 8.0))
REDISTRIBUTE_MISSING_IMAGE_WEIGHT = bool(_similarity.get("redistribute_missing_image_weight", True))

# Complaint and ticket lifecycle.
_lifecycle = _CONFIG.get("lifecycle", {})
COMPLAINT_ID_PREFIX = _lifecycle.get("complaint_id_prefix", "CMP")
TICKET_ID_LENGTH = int(_lifecycle.get("ticket_id_length", 8))
TICKET_CREATION_ATTEMPTS = int(_lifecycle.get("ticket_creation_attempts", 3))
STATUS_LISTING_LIMIT = int(_lifecycle.get("status_listing_limit", 25))

# Per-reporter sliding window.
_rate_limit = _CONFIG.get("rate_limit", {})
RATE_LIMIT_WINDOW_SECONDS = float(_rate_limit.get("window_seconds", 60))
RATE_LIMIT_MAX_MESSAGES = int(_rate_limit.get("max_messages", 20))

# External providers. API keys come from the environment, never from this file.
_providers = _CONFIG.get("providers", {})
GEMINI_MODEL = _providers.get("gemini_model", "gemini-2.5-flash")
PROVIDER_TIMEOUT_SECONDS = float(_providers.get("timeout_seconds", 10))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
