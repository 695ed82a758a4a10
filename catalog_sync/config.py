"""Core service configuration & tunable queue / sync rules.

Everything operational (retry policy, worker pacing, poller windows, marketplace
endpoints) is centralized here so it can be adjusted without touching handler
logic. Values are read from the environment once at import; they are plain
mutable dicts so tests can monkeypatch individual keys.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: str = "false") -> bool:
	return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> list[str]:
	return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]


DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./catalog_sync.db")

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, str | int] = {
	"driver": os.getenv("QUEUE_DRIVER", "db").lower(),   # "db" | "file"
	"dir": os.getenv("QUEUE_DIR", "./var/queue"),
	# Processing reservations older than this are swept back to pending.
	"lease_seconds": int(os.getenv("QUEUE_LEASE_SECONDS", "7200")),
	# Lost claim races retried before reserve() gives up and returns None.
	"claim_attempts": 3,
}

# ------------------------------- Retry Policy ----------------------------- #
RETRY_POLICY: dict[str, int] = {
	"max_attempts": int(os.getenv("QUEUE_MAX_ATTEMPTS", "5")),
	"base_seconds": int(os.getenv("QUEUE_BACKOFF_BASE", "5")),
	"cap_seconds": int(os.getenv("QUEUE_BACKOFF_CAP", "300")),
}

# --------------------------------- Worker --------------------------------- #
WORKER_SETTINGS: dict[str, float | int | bool] = {
	"idle_sleep": float(os.getenv("WORKER_IDLE_SLEEP", "5")),
	"between_tasks_sleep": float(os.getenv("WORKER_BETWEEN_TASKS_SLEEP", "1")),
	"error_sleep": float(os.getenv("WORKER_ERROR_SLEEP", "5")),
	"status_every": 50,                 # log a progress line every N tasks
	"sweep_every_seconds": 300,         # stale reservation sweep cadence
	# Run a worker thread inside the API process (lifespan managed).
	"embedded": _env_bool("WORKER_EMBEDDED"),
}

# ------------------------------- Scheduler -------------------------------- #
SCHEDULER_SETTINGS: dict[str, float | int] = {
	"interval": float(os.getenv("SCHEDULER_INTERVAL", "30")),
	"error_sleep": float(os.getenv("SCHEDULER_ERROR_SLEEP", "60")),
	# Only top up the queue with a new sync batch when it is nearly drained.
	"pending_threshold": int(os.getenv("SCHEDULER_PENDING_THRESHOLD", "3")),
}

# ------------------------------ Marketplace ------------------------------- #
MARKETPLACE_SETTINGS: dict[str, str | int | float] = {
	"api_base": os.getenv("BOL_API_BASE", "https://api.bol.com").rstrip("/"),
	"auth_base": os.getenv("BOL_AUTH_BASE", "https://login.bol.com").rstrip("/"),
	"client_id": os.getenv("BOL_CLIENT_ID", ""),
	"client_secret": os.getenv("BOL_CLIENT_SECRET", ""),
	"retailer_prefix": "/retailer",
	"shared_prefix": "/shared",
	"accept": "application/vnd.retailer.v10+json",
	"accept_csv": "application/vnd.retailer.v10+csv",
	"timeout_seconds": float(os.getenv("BOL_TIMEOUT", "30")),
	"retries": 3,
	"retry_delay_ms": 250,
	# Token cache backend: "file" (default) or "redis".
	"token_cache": os.getenv("BOL_TOKEN_CACHE", "file").lower(),
	"token_cache_path": os.getenv("BOL_TOKEN_CACHE_PATH", "./var/cache/bol_token.json"),
	"token_cache_key": "catalog_sync:bol_token",
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"token_expiry_margin_seconds": 30,
}

# ---------------------------------- Sync ---------------------------------- #
SYNC_SETTINGS: dict[str, list[str] | int | str] = {
	"brands": _env_list("SYNC_BRANDS", "002,003,004,005,274"),
	"seasons": _env_list("SYNC_SEASONS", "251,252,999"),
	"batch_limit": int(os.getenv("SYNC_BATCH_LIMIT", "100")),
	"max_retries": 5,
	"default_delivery_code": "1-8d",
	"core_delivery_code": "1-2 weken",   # fallback used when hashing core state
	"export_dir": os.getenv("EXPORT_DIR", "./var/export/offers"),
}

# --------------------------------- Poller --------------------------------- #
POLLER_SETTINGS: dict[str, int | float] = {
	"recheck_seconds": 30,          # skip ledger entries checked more recently
	"reschedule_seconds": 60,       # delay before the next status check page
	"followup_seconds": 120,        # delay after an upsert batch issued operations
	"default_batch_size": 100,
	"continuation_sleep_seconds": float(os.getenv("POLL_SLEEP", "2")),
}

__all__ = [
	"DATABASE_URL",
	"QUEUE_SETTINGS",
	"RETRY_POLICY",
	"WORKER_SETTINGS",
	"SCHEDULER_SETTINGS",
	"MARKETPLACE_SETTINGS",
	"SYNC_SETTINGS",
	"POLLER_SETTINGS",
]
