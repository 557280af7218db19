"""Shared fixtures for pindeal tests."""

from __future__ import annotations

import pytest

from pindeal.jobs.queue import SQLiteJobQueue
from pindeal.jobs.scheduler import JobScheduler
from pindeal.managers.cleanup import CleanupManager
from pindeal.managers.monitor import DealMonitor
from pindeal.managers.renewal import RenewalManager
from pindeal.models.config import (
    EPOCHS_PER_DAY,
    RateLimitConfig,
    RetryConfig,
    ServiceConfig,
    WorkerConfig,
)
from pindeal.pipeline.negotiation import DealNegotiator
from pindeal.pipeline.processor import PinProcessor
from pindeal.services.gateway import SubmissionGateway
from pindeal.services.pricing import PricingCalculator
from pindeal.storage.sqlite import SQLiteStateStore

from tests.mocks import FakeClock, MockLedger, MockStorageNetwork

THRESHOLD_EPOCHS = 7 * EPOCHS_PER_DAY


def make_test_config(**overrides) -> ServiceConfig:
    """Build a ServiceConfig suitable for testing."""
    defaults = dict(
        db_path=":memory:",
        worker=WorkerConfig(
            concurrency=2,
            lease_seconds=30,
            poll_interval=0.01,
            shutdown_timeout=1,
            queue_db_path=":memory:",
        ),
        retry=RetryConfig(max_attempts=3, backoff_seconds=10),
        rate_limit=RateLimitConfig(enabled=False),
    )
    defaults.update(overrides)
    return ServiceConfig(**defaults)


@pytest.fixture
def test_config():
    """Default ServiceConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteStateStore."""
    s = SQLiteStateStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def queue(clock):
    """Initialized in-memory SQLiteJobQueue on a fake clock."""
    q = SQLiteJobQueue(":memory:", lease_seconds=30, clock=clock)
    await q.initialize()
    yield q
    await q.close()


@pytest.fixture
def mock_network():
    return MockStorageNetwork()


@pytest.fixture
def mock_ledger():
    return MockLedger()


@pytest.fixture
def pricing():
    return PricingCalculator()


@pytest.fixture
def negotiator(mock_ledger):
    return DealNegotiator(mock_ledger)


@pytest.fixture
def processor(store, mock_network, negotiator, pricing):
    return PinProcessor(store, mock_network, negotiator, pricing)


@pytest.fixture
def monitor(store, mock_ledger):
    return DealMonitor(store, mock_ledger)


@pytest.fixture
def renewal(store, mock_ledger, negotiator, pricing):
    return RenewalManager(store, mock_ledger, negotiator, pricing, THRESHOLD_EPOCHS)


@pytest.fixture
def cleanup(store):
    return CleanupManager(store)


@pytest.fixture
def gateway(store, queue, pricing, negotiator, renewal, mock_network, mock_ledger):
    """SubmissionGateway with mocked collaborators and no rate limiter."""
    return SubmissionGateway(
        store=store,
        queue=queue,
        pricing=pricing,
        negotiator=negotiator,
        renewal=renewal,
        network=mock_network,
        ledger=mock_ledger,
    )


@pytest.fixture
def scheduler(test_config, queue, store, processor, monitor, renewal, cleanup):
    return JobScheduler(
        queue=queue,
        store=store,
        processor=processor,
        monitor=monitor,
        renewal=renewal,
        cleanup=cleanup,
        worker=test_config.worker,
        retry=test_config.retry,
        instance_id="scheduler-a",
    )
