"""Application initialization orchestrator."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Optional

from config import Config, load_config
from core.logger import get_logger
from database import SQLiteDataStore, SQLitePool, init_db_pool, run_migrations
from services import (
    AutoStatusUpdater,
    CheckInReconciler,
    ConflictDetector,
    EventCache,
    EventStatusService,
    RegistrationService,
    StatusUpdateNotice,
)
from utils.metrics import start_metrics_server

logger = get_logger(__name__)


class ApplicationInitializer:
    """Orchestrates application initialization and lifecycle.

    This is the only place services are constructed; in particular it owns
    the single :class:`AutoStatusUpdater` of the process.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or load_config()
        self.db_pool: Optional[SQLitePool] = None
        self.event_cache: Optional[EventCache] = None
        self.store: Optional[SQLiteDataStore] = None
        self.status_service: Optional[EventStatusService] = None
        self.conflict_detector: Optional[ConflictDetector] = None
        self.check_in: Optional[CheckInReconciler] = None
        self.registration_service: Optional[RegistrationService] = None
        self.status_updater: Optional[AutoStatusUpdater] = None
        self._stop_event = asyncio.Event()

    async def initialize(self) -> None:
        """Initialize all application components."""
        await self._init_database()
        self._init_services()
        self._init_metrics()

    async def run(self) -> None:
        """Start background work and wait until :meth:`shutdown` is called."""
        if self.status_updater is None:
            await self.initialize()

        owner_id = self.config.status_owner_id
        if owner_id:
            self.status_updater.subscribe(self._log_status_notice)
            await self.status_updater.start(owner_id)
        else:
            logger.info("STATUS_OWNER_ID not set; automatic status updates disabled")

        try:
            await self._stop_event.wait()
        finally:
            await self.cleanup()

    def shutdown(self) -> None:
        self._stop_event.set()

    async def cleanup(self) -> None:
        """Cleanup resources."""
        with suppress(Exception):
            if self.status_updater:
                await self.status_updater.stop()
                await self.status_updater.drain()
        with suppress(Exception):
            if self.event_cache:
                self.event_cache.clear()
        with suppress(Exception):
            if self.db_pool:
                await self.db_pool.close()
        logger.info("Application resources released")

    async def _init_database(self) -> None:
        """Initialize database pool and run migrations."""
        self.db_pool = await init_db_pool(
            database_path=self.config.database_path,
            pool_size=self.config.db_pool_size,
            busy_timeout_ms=self.config.db_busy_timeout,
        )
        await run_migrations(self.db_pool)
        logger.info(f"Database initialized at {self.config.database_path}")

    def _init_services(self) -> None:
        self.event_cache = EventCache(
            ttl=self.config.event_cache_ttl,
            maxsize=self.config.event_cache_size,
        )
        self.store = SQLiteDataStore(self.db_pool, event_cache=self.event_cache)
        self.status_service = EventStatusService(self.store)
        self.conflict_detector = ConflictDetector(self.store)
        self.registration_service = RegistrationService(self.store, self.conflict_detector)
        self.check_in = CheckInReconciler(
            self.store,
            verify_attempts=self.config.checkin_verify_attempts,
            verify_delay=self.config.checkin_verify_delay,
        )
        self.status_updater = AutoStatusUpdater(
            self.status_service,
            interval_seconds=self.config.status_update_interval,
        )
        logger.info("Services initialized")

    def _init_metrics(self) -> None:
        if not self.config.metrics_enabled:
            return
        try:
            start_metrics_server(self.config.prometheus_port)
            logger.info(f"Prometheus metrics exposed on port {self.config.prometheus_port}")
        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")

    @staticmethod
    def _log_status_notice(notice: StatusUpdateNotice) -> None:
        logger.info(
            f"{notice.updated_count} event statuses updated for owner {notice.owner_id} "
            f"at {notice.timestamp:%H:%M:%S}"
        )
