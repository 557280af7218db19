"""Data models for the pindeal service."""

from pindeal.models.states import (
    ContractStatus,
    InvalidTransitionError,
    RequestStatus,
    LIVE_CONTRACT_STATUSES,
)
from pindeal.models.records import (
    ActivityRecord,
    CleanupReport,
    Contract,
    MonitorReport,
    PinRequest,
    ProviderInfo,
    RenewalReport,
)
from pindeal.models.jobs import (
    CleanupFailedJob,
    Job,
    MonitorDealsJob,
    ProcessPinJob,
    QueuedJob,
    RenewExpiringJob,
)
from pindeal.models.config import (
    CleanupAction,
    CleanupConfig,
    IpfsConfig,
    LotusConfig,
    PricingConfig,
    RateLimitConfig,
    RenewalConfig,
    RetryConfig,
    ServiceConfig,
    WorkerConfig,
)
from pindeal.models.snapshots import HealthReport, PriceQuote, ServiceStats

__all__ = [
    "ContractStatus", "InvalidTransitionError", "RequestStatus", "LIVE_CONTRACT_STATUSES",
    "ActivityRecord", "CleanupReport", "Contract", "MonitorReport", "PinRequest",
    "ProviderInfo", "RenewalReport",
    "CleanupFailedJob", "Job", "MonitorDealsJob", "ProcessPinJob", "QueuedJob",
    "RenewExpiringJob",
    "CleanupAction", "CleanupConfig", "IpfsConfig", "LotusConfig", "PricingConfig",
    "RateLimitConfig", "RenewalConfig", "RetryConfig", "ServiceConfig", "WorkerConfig",
    "HealthReport", "PriceQuote", "ServiceStats",
]
