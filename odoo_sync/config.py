# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
import json as _json
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(str(raw).strip()) if str(raw).strip() else default
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(str(raw).strip()) if str(raw).strip() else default
    except ValueError:
        return default


def _get_json_map(name: str, default: dict | None = None) -> dict:
    raw = os.getenv(name, "")
    if not raw:
        return default or {}
    try:
        return _json.loads(raw)
    except Exception:
        return default or {}


class Settings:
    # ── Odoo ─────────────────────────────────────────────────────────────────
    ODOO_URL: str = _rstrip_slash(os.getenv("ODOO_URL", ""))
    ODOO_DB: str = os.getenv("ODOO_DB", "")
    ODOO_USER: str = os.getenv("ODOO_USER", "")
    ODOO_API_KEY: str = os.getenv("ODOO_API_KEY", "")
    ODOO_TIMEOUT: float = _get_float("ODOO_TIMEOUT", 30.0)
    ODOO_VERIFY_SSL: bool = _get_bool("ODOO_VERIFY_SSL", True)

    # ── Storage ──────────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # ── Queue processing ─────────────────────────────────────────────────────
    SYNC_BATCH_SIZE: int = _get_int("SYNC_BATCH_SIZE", 50)
    SYNC_MAX_ATTEMPTS: int = _get_int("SYNC_MAX_ATTEMPTS", 3)
    SYNC_BATCH_TIME_LIMIT: float = _get_float("SYNC_BATCH_TIME_LIMIT", 55.0)
    SYNC_LOCK_TIMEOUT: float = _get_float("SYNC_LOCK_TIMEOUT", 1.0)
    PUSH_LOCK_TIMEOUT: float = _get_float("PUSH_LOCK_TIMEOUT", 5.0)
    SYNC_STALE_TIMEOUT: int = _get_int("SYNC_STALE_TIMEOUT", 600)
    SYNC_CLEANUP_DAYS: int = _get_int("SYNC_CLEANUP_DAYS", 7)

    # Background worker (cron replacement)
    SYNC_WORKER_ENABLED: bool = _get_bool("SYNC_WORKER_ENABLED", True)
    SYNC_WORKER_INTERVAL: float = _get_float("SYNC_WORKER_INTERVAL", 60.0)

    # ── Circuit breaker ──────────────────────────────────────────────────────
    CB_FAILURE_THRESHOLD: int = _get_int("CB_FAILURE_THRESHOLD", 3)
    CB_RECOVERY_DELAY: float = _get_float("CB_RECOVERY_DELAY", 300.0)

    # ── Failure alerts ───────────────────────────────────────────────────────
    FAILURE_NOTIFY_THRESHOLD: int = _get_int("FAILURE_NOTIFY_THRESHOLD", 5)
    FAILURE_NOTIFY_COOLDOWN: float = _get_float("FAILURE_NOTIFY_COOLDOWN", 3600.0)
    ALERT_WEBHOOK_URL: str = os.getenv("ALERT_WEBHOOK_URL", "")

    # ── Inbound webhooks ─────────────────────────────────────────────────────
    WEBHOOK_TOKEN: str = os.getenv("WEBHOOK_TOKEN", "")
    WEBHOOK_RATE_LIMIT: int = _get_int("WEBHOOK_RATE_LIMIT", 60)
    WEBHOOK_RATE_WINDOW: float = _get_float("WEBHOOK_RATE_WINDOW", 60.0)

    # Modules served by the generic record store: {"crm": {"contact": "res.partner"}}
    MODULE_MODELS: dict = _get_json_map("MODULE_MODELS", {})

    # ── Admin API ────────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


settings = Settings()


def validate_settings(cfg: Settings = settings) -> list[str]:
    """Return a list of human-readable configuration problems (empty when OK)."""
    problems: list[str] = []
    if not 1 <= int(cfg.SYNC_BATCH_SIZE) <= 500:
        problems.append(f"SYNC_BATCH_SIZE must be between 1 and 500 (got {cfg.SYNC_BATCH_SIZE})")
    if not 1 <= int(cfg.SYNC_MAX_ATTEMPTS) <= 20:
        problems.append(f"SYNC_MAX_ATTEMPTS must be between 1 and 20 (got {cfg.SYNC_MAX_ATTEMPTS})")
    if cfg.SYNC_BATCH_TIME_LIMIT <= 0:
        problems.append("SYNC_BATCH_TIME_LIMIT must be positive")
    if cfg.SYNC_STALE_TIMEOUT <= cfg.SYNC_BATCH_TIME_LIMIT:
        problems.append("SYNC_STALE_TIMEOUT should exceed SYNC_BATCH_TIME_LIMIT")
    if cfg.CB_FAILURE_THRESHOLD < 1:
        problems.append("CB_FAILURE_THRESHOLD must be at least 1")
    if cfg.SYNC_WORKER_ENABLED and not cfg.ODOO_URL:
        problems.append("ODOO_URL is not set but the sync worker is enabled")
    if cfg.ODOO_URL and not (cfg.ODOO_DB and cfg.ODOO_USER and cfg.ODOO_API_KEY):
        problems.append("ODOO_DB, ODOO_USER and ODOO_API_KEY are required when ODOO_URL is set")
    if not isinstance(cfg.MODULE_MODELS, dict):
        problems.append("MODULE_MODELS must be a JSON object")
    return problems
