"""Core application configuration & tunable orchestration rules.

Queue policies, sweep cadences, concurrency ceilings and delivery settings are
centralized here so they can be adjusted without diving into service logic.
Values come from environment variables where a deployment is expected to
override them; the rest are module constants (mutable dicts so tests can
monkeypatch values).
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in {"1", "true", "yes", "on"}


# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, object] = {
	"use_redis": _env_bool("QUEUE_USE_REDIS", False),
	# Connection parameters are opaque to the queue layer; they are only
	# handed to the redis client at bootstrap.
	"redis_host": os.getenv("REDIS_HOST", "localhost"),
	"redis_port": int(os.getenv("REDIS_PORT", "6379")),
	"redis_password": os.getenv("REDIS_PASSWORD") or None,
	"redis_tls": _env_bool("REDIS_TLS", False),
	"redis_db": int(os.getenv("REDIS_DB", "0")),
	"redis_health_check_timeout": 2.0,
	"key_prefix": os.getenv("QUEUE_KEY_PREFIX", "elearning:queue"),
	"priorities": {  # Lower number = serviced first
		"high": 1,
		"normal": 5,
		"low": 10,
	},
	"default_priority": "normal",
	"warn_depth": 1000,
	"max_in_memory": 5000,
}

# Per-queue retry / retention policy. Fewer attempts where a single attempt is
# expensive (transcription); retention bounds how many finished job records the
# backing store keeps for observability.
QUEUE_POLICIES: dict[str, dict[str, object]] = {
	"embedding-generation": {
		"job_name": "generate-embedding",
		"attempts": 3,
		"backoff_type": "exponential",
		"backoff_delay_ms": 5000,
		"keep_completed": 50,
		"keep_failed": 100,
	},
	"hls-transcoding": {
		"job_name": "convert-to-hls",
		"attempts": 3,
		"backoff_type": "exponential",
		"backoff_delay_ms": 5000,
		"keep_completed": 20,
		"keep_failed": 50,
	},
	"video-transcription": {
		"job_name": "transcribe-video",
		"attempts": 2,
		"backoff_type": "exponential",
		"backoff_delay_ms": 5000,
		"keep_completed": 20,
		"keep_failed": 50,
	},
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float | None] = {
	"factor": 2,          # Exponential factor
	"max_delay_ms": None, # No cap unless configured
	"jitter_pct": 0.0,    # Deterministic delays by default
}

# ------------------------------- Schedulers ------------------------------- #
SCHEDULER_SETTINGS: dict[str, dict[str, object]] = {
	"payment_expiration": {
		"enabled": _env_bool("PAYMENT_EXPIRATION_SWEEP_ENABLED", True),
		"interval_seconds": 30,
		"threshold_minutes": 15,
	},
	"study_reminders": {
		"enabled": _env_bool("STUDY_REMINDER_SWEEP_ENABLED", True),
		"interval_seconds": 60,
		"lead_windows_minutes": [10, 15, 30, 60],
	},
}

# ------------------------------ Concurrency ------------------------------- #
# Path prefix -> ceiling on simultaneously in-flight requests per key.
CONCURRENCY_SETTINGS: dict[str, object] = {
	"routes": {
		"/api/v1/ai/advisor": {"max_concurrent": 3, "kind": "advisor"},
		"/api/v1/ai/tutor": {"max_concurrent": 5, "kind": "tutor"},
	},
}

# --------------------------------- Email ---------------------------------- #
EMAIL_SETTINGS: dict[str, object] = {
	"smtp_host": os.getenv("SMTP_HOST") or None,
	"smtp_port": int(os.getenv("SMTP_PORT", "587")),
	"smtp_user": os.getenv("SMTP_USER") or None,
	"smtp_password": os.getenv("SMTP_PASSWORD") or None,
	"use_tls": _env_bool("SMTP_USE_TLS", True),
	"from_address": os.getenv("EMAIL_FROM", "noreply@elearning.local"),
	"from_name": os.getenv("EMAIL_FROM_NAME", "E-Learning Platform"),
	"timeout_seconds": 10,
}

# ---------------------------------- AI ------------------------------------ #
OLLAMA_SETTINGS: dict[str, object] = {
	"base_url": os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
	"model": os.getenv("OLLAMA_MODEL", "llama3.1:8b"),
	"temperature": float(os.getenv("OLLAMA_TEMPERATURE", "0.7")),
	"max_tokens": int(os.getenv("OLLAMA_MAX_TOKENS", "2000")),
	"timeout_seconds": float(os.getenv("OLLAMA_TIMEOUT_SECONDS", "120")),
}

# Operator endpoints (queues, schedulers, concurrency, payments) require this
# bearer token when set. Leave unset for local development.
ADMIN_API_TOKEN: str | None = os.getenv("ADMIN_API_TOKEN") or None

__all__ = [
	"QUEUE_SETTINGS",
	"QUEUE_POLICIES",
	"BACKOFF_POLICY",
	"SCHEDULER_SETTINGS",
	"CONCURRENCY_SETTINGS",
	"EMAIL_SETTINGS",
	"OLLAMA_SETTINGS",
	"ADMIN_API_TOKEN",
]
