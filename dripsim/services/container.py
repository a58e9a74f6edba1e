from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Optional

from dripsim.config import AppConfig
from dripsim.domain.exceptions import RepositoryError
from dripsim.domain.schedules import IrrigationScheduler
from dripsim.domain.soil import SoilMoistureEngine
from dripsim.domain.tank import TankEngine
from dripsim.domain.weather import WeatherState
from dripsim.services.application.irrigation_coordinator import IrrigationCoordinator
from dripsim.services.application.simulation_service import SimulationDriver
from dripsim.services.application.weather_service import (
    IntelligentFallback,
    OpenWeatherMapFeed,
    WeatherService,
)
from dripsim.utils.event_bus import EventBus
from dripsim.utils.time import Clock, SystemClock
from dripsim.workers.unified_scheduler import UnifiedScheduler
from infrastructure.database.repositories.event_log import EventLogRepository
from infrastructure.database.repositories.state import StateRepository
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler
from infrastructure.logging.audit import AuditLogger
from infrastructure.logging.event_logger import EventLogger

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Aggregate and manage the simulator's services."""

    config: AppConfig
    clock: Clock
    database: SQLiteDatabaseHandler
    state_repo: StateRepository
    event_log_repo: EventLogRepository
    event_bus: EventBus
    audit_logger: AuditLogger
    event_logger: EventLogger
    soil: SoilMoistureEngine
    tank: TankEngine
    weather: WeatherState
    irrigation_scheduler: IrrigationScheduler
    coordinator: IrrigationCoordinator
    simulation_driver: SimulationDriver
    weather_service: WeatherService
    scheduler: UnifiedScheduler

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        start_scheduler: bool = True,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ) -> "ServiceContainer":
        """Construct the service container with all dependencies.

        Persisted state is restored before the scheduler starts, so the first
        tick already sees the recovered entities.

        Args:
            config: Application configuration
            start_scheduler: Start the background scheduler thread
                (also gated by ``config.scheduler_enabled``)
            clock: Injected clock (tests)
            rng: Random source for rain saturation (tests)
        """
        logger.info("Building ServiceContainer...")
        clock = clock or SystemClock()

        database = SQLiteDatabaseHandler(config.database_path)
        database.create_tables()
        state_repo = StateRepository(database)
        event_log_repo = EventLogRepository(database, max_entries=config.event_log_max_entries)

        event_bus = EventBus(
            queue_size=config.eventbus_queue_size,
            worker_count=config.eventbus_worker_count,
        )
        audit_logger = AuditLogger(config.audit_log_path, config.log_level)
        event_logger = EventLogger(event_bus)

        scheduler = UnifiedScheduler(max_workers=config.scheduler_max_workers, clock=clock)
        soil = SoilMoistureEngine(clock=clock, rng=rng)
        tank = TankEngine(clock=clock)
        weather = WeatherState(event_bus=event_bus, clock=clock)
        irrigation_scheduler = IrrigationScheduler(debounce_minutes=config.schedule_debounce_minutes)

        from dripsim.workers.scheduled_tasks import auto_stop_timer, configure_scheduler

        coordinator = IrrigationCoordinator(
            soil=soil,
            tank=tank,
            weather=weather,
            scheduler=irrigation_scheduler,
            state_repo=state_repo,
            event_log=event_log_repo,
            event_bus=event_bus,
            clock=clock,
            audit_logger=audit_logger,
            stop_timer=auto_stop_timer(scheduler, clock),
            wet_skip_threshold=config.wet_skip_threshold,
        )
        simulation_driver = SimulationDriver(
            coordinator,
            event_bus=event_bus,
            clock=clock,
            max_tick_minutes=config.max_tick_minutes,
        )

        feed = None
        if config.weather_api_key:
            feed = OpenWeatherMapFeed(
                config.weather_api_key,
                latitude=config.weather_latitude,
                longitude=config.weather_longitude,
                url=config.weather_api_url,
            )
        else:
            logger.info("No weather API key configured; using fallback weather")
        weather_service = WeatherService(
            coordinator,
            feed=feed,
            fallback=IntelligentFallback(),
            clock=clock,
            failure_threshold=config.weather_failure_threshold,
            stale_minutes=config.weather_stale_minutes,
        )

        container = cls(
            config=config,
            clock=clock,
            database=database,
            state_repo=state_repo,
            event_log_repo=event_log_repo,
            event_bus=event_bus,
            audit_logger=audit_logger,
            event_logger=event_logger,
            soil=soil,
            tank=tank,
            weather=weather,
            irrigation_scheduler=irrigation_scheduler,
            coordinator=coordinator,
            simulation_driver=simulation_driver,
            weather_service=weather_service,
            scheduler=scheduler,
        )

        # Jobs first: restoring may re-arm the auto-stop one-shot job.
        try:
            configure_scheduler(scheduler, container, start=False)
        except Exception as e:
            raise RuntimeError("Failed to initialize UnifiedScheduler") from e

        coordinator.restore()
        simulation_driver.start()
        # Prime the display snapshot with the restored state.
        scheduler.run_now("display.refresh")

        if start_scheduler and config.scheduler_enabled:
            scheduler.start()
            logger.info("✓ UnifiedScheduler started")

        logger.info("ServiceContainer built successfully.")
        return container

    def shutdown(self) -> None:
        """Release external resources before process exit."""
        try:
            self.scheduler.shutdown()
            logger.info("✓ UnifiedScheduler stopped")
        except RuntimeError as e:
            logger.warning("Failed to stop UnifiedScheduler: %s", e)

        try:
            self.coordinator.persist()
        except RepositoryError as e:
            logger.warning("Failed to persist state on shutdown: %s", e)

        self.coordinator.close()
        self.event_logger.close()
        self.event_bus.shutdown()
        self.audit_logger.close()
        self.database.close_db()
        logger.info("ServiceContainer shutdown complete.")
