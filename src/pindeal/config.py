"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from pindeal.models.config import CleanupAction, ServiceConfig


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "PINDEAL_",
) -> ServiceConfig:
    """Load service configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (PINDEAL_LOTUS_TOKEN, etc.)
        2. TOML config file
        3. Defaults from ServiceConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = ServiceConfig()

    # ── Service section ────────────────────────────────────
    service = raw.get("service", {})
    if v := service.get("log_level"):
        cfg.log_level = str(v)
    if v := service.get("db_path"):
        cfg.db_path = str(v)

    # ── IPFS section ───────────────────────────────────────
    ipfs = raw.get("ipfs", {})
    if v := ipfs.get("api_url"):
        cfg.ipfs.api_url = str(v)
    if v := ipfs.get("timeout"):
        cfg.ipfs.timeout = int(v)

    # ── Lotus section ──────────────────────────────────────
    lotus = raw.get("lotus", {})
    if v := lotus.get("api_url"):
        cfg.lotus.api_url = str(v)
    if v := lotus.get("token"):
        cfg.lotus.token = str(v)
    if v := lotus.get("wallet"):
        cfg.lotus.wallet = str(v)
    if v := lotus.get("timeout"):
        cfg.lotus.timeout = int(v)
    if "verified_deal" in lotus:
        cfg.lotus.verified_deal = bool(lotus["verified_deal"])

    # ── Pricing section ────────────────────────────────────
    # Decimal(str(...)) keeps TOML floats like 0.001 exact
    pricing = raw.get("pricing", {})
    if (v := pricing.get("base_price_per_gb_per_month")) is not None:
        cfg.pricing.base_price_per_gb_per_month = Decimal(str(v))
    if (v := pricing.get("markup_percentage")) is not None:
        cfg.pricing.markup_percentage = Decimal(str(v))
    if (v := pricing.get("minimum_deal_size")) is not None:
        cfg.pricing.minimum_deal_size = int(v)

    # ── Worker section ─────────────────────────────────────
    worker = raw.get("worker", {})
    if v := worker.get("concurrency"):
        cfg.worker.concurrency = int(v)
    if v := worker.get("lease_seconds"):
        cfg.worker.lease_seconds = int(v)
    if v := worker.get("lease_renew_interval"):
        cfg.worker.lease_renew_interval = float(v)
    if v := worker.get("poll_interval"):
        cfg.worker.poll_interval = float(v)
    if v := worker.get("shutdown_timeout"):
        cfg.worker.shutdown_timeout = int(v)
    if v := worker.get("monitor_interval"):
        cfg.worker.monitor_interval = int(v)
    if v := worker.get("renewal_interval"):
        cfg.worker.renewal_interval = int(v)
    if v := worker.get("cleanup_interval"):
        cfg.worker.cleanup_interval = int(v)
    if v := worker.get("queue_db_path"):
        cfg.worker.queue_db_path = str(v)

    # ── Retry section ──────────────────────────────────────
    retry = raw.get("retry", {})
    if v := retry.get("max_attempts"):
        cfg.retry.max_attempts = int(v)
    if (v := retry.get("backoff_seconds")) is not None:
        cfg.retry.backoff_seconds = int(v)

    # ── Renewal section ────────────────────────────────────
    renewal = raw.get("renewal", {})
    if v := renewal.get("epochs_per_day"):
        cfg.renewal.epochs_per_day = int(v)
    if v := renewal.get("threshold_epochs"):
        cfg.renewal.threshold_epochs = int(v)
    elif v := renewal.get("threshold_days"):
        cfg.renewal.threshold_epochs = int(v) * cfg.renewal.epochs_per_day

    # ── Cleanup section ────────────────────────────────────
    cleanup = raw.get("cleanup", {})
    if v := cleanup.get("retention_days"):
        cfg.cleanup.retention_days = int(v)
    if action := cleanup.get("action"):
        cfg.cleanup.action = CleanupAction(action)
    if "unpin_on_failure" in cleanup:
        cfg.cleanup.unpin_on_failure = bool(cleanup["unpin_on_failure"])

    # ── Rate limit section ─────────────────────────────────
    rate_limit = raw.get("rate_limit", {})
    if "enabled" in rate_limit:
        cfg.rate_limit.enabled = bool(rate_limit["enabled"])
    if v := rate_limit.get("redis_url"):
        cfg.rate_limit.redis_url = str(v)
    if v := rate_limit.get("requests_per_minute"):
        cfg.rate_limit.requests_per_minute = int(v)

    # ── Environment variable overrides (highest priority) ──
    if token := os.environ.get(f"{env_prefix}LOTUS_TOKEN"):
        cfg.lotus.token = token
    if api := os.environ.get(f"{env_prefix}LOTUS_API"):
        cfg.lotus.api_url = api
    if api := os.environ.get(f"{env_prefix}IPFS_API"):
        cfg.ipfs.api_url = api
    if url := os.environ.get(f"{env_prefix}REDIS_URL"):
        cfg.rate_limit.redis_url = url
    if path := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = path
    if wallet := os.environ.get(f"{env_prefix}WALLET"):
        cfg.lotus.wallet = wallet
    if concurrency := os.environ.get(f"{env_prefix}CONCURRENCY"):
        cfg.worker.concurrency = int(concurrency)

    # Expand ~ in paths (":memory:" is left alone)
    cfg.db_path = _expand(cfg.db_path)
    cfg.worker.queue_db_path = _expand(cfg.worker.queue_db_path)

    return cfg


def _expand(path: str) -> str:
    if path == ":memory:":
        return path
    return str(Path(path).expanduser())
