"""Configuration models for the service."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

EPOCHS_PER_DAY = 2880  # 30 second epochs


class CleanupAction(str, Enum):
    """What the cleanup manager does with an old failed request."""

    ARCHIVE = "archive"  # Keep the row, stamp archived_at
    DELETE = "delete"  # Remove the request and its contracts


@dataclass
class IpfsConfig:
    api_url: str = "http://localhost:5001"
    timeout: int = 60  # seconds


@dataclass
class LotusConfig:
    api_url: str = "http://localhost:1234/rpc/v0"
    token: str = ""  # loaded from env var PINDEAL_LOTUS_TOKEN
    wallet: str = ""  # client wallet address used for deals
    timeout: int = 30  # seconds
    verified_deal: bool = False


@dataclass
class PricingConfig:
    base_price_per_gb_per_month: Decimal = Decimal("0.001")  # FIL
    markup_percentage: Decimal = Decimal("20")
    minimum_deal_size: int = 1_048_576  # bytes


@dataclass
class WorkerConfig:
    concurrency: int = 5
    lease_seconds: int = 300
    lease_renew_interval: float | None = None  # default: a third of the lease
    poll_interval: float = 1.0  # seconds between empty dequeues
    shutdown_timeout: int = 30  # seconds
    monitor_interval: int = 300  # 5 minutes
    renewal_interval: int = 3600  # 1 hour
    cleanup_interval: int = 21600  # 6 hours
    queue_db_path: str = "~/.pindeal/queue.db"


@dataclass
class RetryConfig:
    max_attempts: int = 5
    backoff_seconds: int = 30


@dataclass
class RenewalConfig:
    threshold_epochs: int = 7 * EPOCHS_PER_DAY
    epochs_per_day: int = EPOCHS_PER_DAY


@dataclass
class CleanupConfig:
    retention_days: int = 7
    action: CleanupAction = CleanupAction.ARCHIVE
    unpin_on_failure: bool = False


@dataclass
class RateLimitConfig:
    enabled: bool = True
    redis_url: str = "redis://localhost:6379/0"
    requests_per_minute: int = 100
    window_seconds: int = 60


@dataclass
class ServiceConfig:
    """Complete service configuration."""

    log_level: str = "info"
    db_path: str = "~/.pindeal/state.db"

    ipfs: IpfsConfig = field(default_factory=IpfsConfig)
    lotus: LotusConfig = field(default_factory=LotusConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    renewal: RenewalConfig = field(default_factory=RenewalConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
