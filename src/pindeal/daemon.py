"""Service wiring and the long-running daemon."""

from __future__ import annotations

import asyncio
import logging
import signal

from pindeal.ipfs.client import KuboClient
from pindeal.jobs.queue import SQLiteJobQueue
from pindeal.jobs.scheduler import JobScheduler
from pindeal.lotus.client import LotusClient
from pindeal.managers.cleanup import CleanupManager
from pindeal.managers.monitor import DealMonitor
from pindeal.managers.renewal import RenewalManager
from pindeal.models.config import ServiceConfig
from pindeal.pipeline.negotiation import DealNegotiator
from pindeal.pipeline.processor import PinProcessor
from pindeal.services.gateway import SubmissionGateway
from pindeal.services.pricing import PricingCalculator
from pindeal.services.ratelimit import RedisRateLimiter
from pindeal.storage.sqlite import SQLiteStateStore

log = logging.getLogger(__name__)


class PindealDaemon:
    """Pin-to-deal service.

    Builds every component from one ServiceConfig. Used as an async
    context manager by one-shot CLI commands and through ``start`` by
    the daemon, which also runs the job scheduler.
    """

    def __init__(self, cfg: ServiceConfig) -> None:
        self._cfg = cfg
        self._stop_event = asyncio.Event()

        # Collaborators
        self.store = SQLiteStateStore(cfg.db_path)
        self.queue = SQLiteJobQueue(cfg.worker.queue_db_path, cfg.worker.lease_seconds)
        self.network = KuboClient(cfg.ipfs.api_url, cfg.ipfs.timeout)
        self.ledger = LotusClient(
            api_url=cfg.lotus.api_url,
            token=cfg.lotus.token,
            wallet=cfg.lotus.wallet,
            timeout=cfg.lotus.timeout,
            verified_deal=cfg.lotus.verified_deal,
        )
        self.rate_limiter: RedisRateLimiter | None = None
        if cfg.rate_limit.enabled:
            self.rate_limiter = RedisRateLimiter.from_url(
                cfg.rate_limit.redis_url,
                cfg.rate_limit.requests_per_minute,
                cfg.rate_limit.window_seconds,
            )

        # Pipeline
        self.pricing = PricingCalculator(cfg.pricing)
        self.negotiator = DealNegotiator(self.ledger, cfg.renewal.epochs_per_day)
        self.processor = PinProcessor(
            self.store, self.network, self.negotiator, self.pricing,
            unpin_on_failure=cfg.cleanup.unpin_on_failure,
        )

        # Managers
        self.monitor = DealMonitor(self.store, self.ledger, cfg.worker.concurrency)
        self.renewal = RenewalManager(
            self.store, self.ledger, self.negotiator, self.pricing,
            cfg.renewal.threshold_epochs,
        )
        self.cleanup = CleanupManager(
            self.store, cfg.cleanup.retention_days, cfg.cleanup.action,
        )

        self.gateway = SubmissionGateway(
            store=self.store,
            queue=self.queue,
            pricing=self.pricing,
            negotiator=self.negotiator,
            renewal=self.renewal,
            network=self.network,
            ledger=self.ledger,
            rate_limiter=self.rate_limiter,
        )
        self.scheduler = JobScheduler(
            queue=self.queue,
            store=self.store,
            processor=self.processor,
            monitor=self.monitor,
            renewal=self.renewal,
            cleanup=self.cleanup,
            worker=cfg.worker,
            retry=cfg.retry,
        )

    async def initialize(self) -> None:
        await self.store.initialize()
        await self.queue.initialize()

    async def close(self) -> None:
        if self.rate_limiter is not None:
            await self.rate_limiter.close()
        await self.queue.close()
        await self.store.close()

    async def __aenter__(self) -> PindealDaemon:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def start(self) -> None:
        """Initialize components and run until stopped."""
        log.info("Starting pindeal daemon")
        log.info("  Kubo:        %s", self._cfg.ipfs.api_url)
        log.info("  Lotus:       %s", self._cfg.lotus.api_url)
        log.info("  Wallet:      %s", self._cfg.lotus.wallet or "(not set)")
        log.info("  State DB:    %s", self._cfg.db_path)
        log.info("  Queue DB:    %s", self._cfg.worker.queue_db_path)
        log.info("  Concurrency: %d", self._cfg.worker.concurrency)

        await self.initialize()
        await self.store.log_activity("daemon_started", "Daemon started")
        try:
            await self.scheduler.requeue_pending()
            await self.scheduler.start()
            await self._stop_event.wait()
        finally:
            await self.scheduler.stop()
            await self.store.log_activity("daemon_stopped", "Daemon stopped")
            await self.close()
            log.info("Daemon shut down cleanly")

    async def stop(self) -> None:
        """Signal the daemon to stop gracefully."""
        log.info("Stop requested")
        self._stop_event.set()


async def run_daemon(cfg: ServiceConfig) -> None:
    """Entry point for running the daemon."""
    daemon = PindealDaemon(cfg)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(daemon.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await daemon.start()
