"""Configuration loading from TOML and environment."""

from __future__ import annotations

from decimal import Decimal

import pytest

from pindeal.config import load_config
from pindeal.models.config import CleanupAction, EPOCHS_PER_DAY

_ENV_VARS = (
    "LOTUS_TOKEN", "LOTUS_API", "IPFS_API", "REDIS_URL", "DB_PATH", "WALLET", "CONCURRENCY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(f"PINDEAL_{name}", raising=False)


def test_defaults_without_file():
    cfg = load_config(None)
    assert cfg.ipfs.api_url == "http://localhost:5001"
    assert cfg.pricing.base_price_per_gb_per_month == Decimal("0.001")
    assert cfg.renewal.threshold_epochs == 7 * EPOCHS_PER_DAY
    assert cfg.cleanup.action == CleanupAction.ARCHIVE
    assert not cfg.db_path.startswith("~")


def test_missing_file_uses_defaults(tmp_path):
    cfg = load_config(tmp_path / "nope.toml")
    assert cfg.worker.concurrency == 5


def test_toml_sections(tmp_path):
    path = tmp_path / "pindeal.toml"
    path.write_text(
        """
[service]
log_level = "debug"
db_path = ":memory:"

[ipfs]
api_url = "http://kubo:5001"

[lotus]
api_url = "http://lotus:1234/rpc/v0"
wallet = "f1wallet"
verified_deal = true

[pricing]
base_price_per_gb_per_month = 0.002
markup_percentage = 0
minimum_deal_size = 0

[worker]
concurrency = 8
queue_db_path = ":memory:"

[retry]
max_attempts = 7
backoff_seconds = 0

[renewal]
threshold_days = 3

[cleanup]
retention_days = 30
action = "delete"
unpin_on_failure = true

[rate_limit]
enabled = false
requests_per_minute = 10
"""
    )
    cfg = load_config(path)
    assert cfg.log_level == "debug"
    assert cfg.db_path == ":memory:"
    assert cfg.ipfs.api_url == "http://kubo:5001"
    assert cfg.lotus.wallet == "f1wallet"
    assert cfg.lotus.verified_deal is True
    assert cfg.pricing.base_price_per_gb_per_month == Decimal("0.002")
    assert cfg.pricing.markup_percentage == Decimal("0")
    assert cfg.pricing.minimum_deal_size == 0
    assert cfg.worker.concurrency == 8
    assert cfg.worker.queue_db_path == ":memory:"
    assert cfg.retry.max_attempts == 7
    assert cfg.retry.backoff_seconds == 0
    assert cfg.renewal.threshold_epochs == 3 * EPOCHS_PER_DAY
    assert cfg.cleanup.retention_days == 30
    assert cfg.cleanup.action == CleanupAction.DELETE
    assert cfg.cleanup.unpin_on_failure is True
    assert cfg.rate_limit.enabled is False
    assert cfg.rate_limit.requests_per_minute == 10


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "pindeal.toml"
    path.write_text('[lotus]\ntoken = "from-file"\nwallet = "f1file"\n')
    monkeypatch.setenv("PINDEAL_LOTUS_TOKEN", "from-env")
    monkeypatch.setenv("PINDEAL_WALLET", "f1env")
    monkeypatch.setenv("PINDEAL_REDIS_URL", "redis://cache:6379/1")
    monkeypatch.setenv("PINDEAL_CONCURRENCY", "3")
    monkeypatch.setenv("PINDEAL_DB_PATH", str(tmp_path / "env.db"))

    cfg = load_config(path)
    assert cfg.lotus.token == "from-env"
    assert cfg.lotus.wallet == "f1env"
    assert cfg.rate_limit.redis_url == "redis://cache:6379/1"
    assert cfg.worker.concurrency == 3
    assert cfg.db_path == str(tmp_path / "env.db")


def test_invalid_cleanup_action(tmp_path):
    path = tmp_path / "pindeal.toml"
    path.write_text('[cleanup]\naction = "shred"\n')
    with pytest.raises(ValueError):
        load_config(path)
