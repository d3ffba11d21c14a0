"""
Base AsyncService class for the aggregation services.

Provides lifecycle management, the operational HTTP server
(health, readiness, liveness, metrics, status) and graceful
shutdown.
"""

import asyncio
import signal
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List

from aiohttp import web
import structlog
import psutil

from .config import ServiceConfig
from .health import HealthChecker
from .metrics import MetricsCollector
from .consumer import KafkaConsumer
from .producer import KafkaProducer


logger = structlog.get_logger(__name__)

METRICS_REFRESH_SECONDS = 30


class AsyncService(ABC):
    """
    Base class for async services.

    Subclasses implement ``_startup_hook`` and ``_shutdown_hook`` and
    register their Kafka clients with ``add_consumer``/``add_producer``
    so they are stopped on shutdown.
    """

    def __init__(self, config: ServiceConfig):
        self.config = config
        self.logger = structlog.get_logger(self.config.service_name).bind(service=self.config.service_name)

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

        self.health_checker = HealthChecker(self.config)
        self.metrics = MetricsCollector(self.config.service_name)

        self.consumers: List[KafkaConsumer] = []
        self.producers: List[KafkaProducer] = []

        self.shutdown_event = asyncio.Event()
        self.metrics_task: Optional[asyncio.Task] = None
        self._stopped = False

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                self.logger.debug("Signal handler not installed", signal=signum)

    def _on_signal(self, signum: int) -> None:
        self.logger.info("Received shutdown signal", signal=signum)
        self.shutdown_event.set()

    async def startup(self) -> None:
        """Initialize service components."""
        self.logger.info("Starting service")

        self.app = web.Application()
        self._setup_routes()

        await self._startup_hook()

        self.metrics_task = asyncio.create_task(self._update_metrics_periodically())

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(
            self.runner,
            host="0.0.0.0",
            port=self.config.observability.health_port
        )
        await self.site.start()

        self.logger.info(
            "Service started",
            port=self.config.observability.health_port
        )

    async def shutdown(self) -> None:
        """Gracefully shutdown service."""
        if self._stopped:
            return
        self._stopped = True

        self.logger.info("Shutting down service")

        if self.site:
            await self.site.stop()

        await self._shutdown_hook()

        if self.metrics_task:
            self.metrics_task.cancel()
            try:
                await self.metrics_task
            except asyncio.CancelledError:
                pass

        for consumer in self.consumers:
            await consumer.stop()

        for producer in self.producers:
            await producer.stop()

        if self.runner:
            await self.runner.cleanup()

        self.shutdown_event.set()

        self.logger.info("Service shutdown complete")

    def _setup_routes(self) -> None:
        """Setup HTTP routes."""
        if self.app is None:
            return

        self.app.router.add_get("/health", self._health_handler)
        self.app.router.add_get("/health/ready", self._readiness_handler)
        self.app.router.add_get("/health/live", self._liveness_handler)
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/status", self._status_handler)

        self._setup_service_routes()

    def _setup_service_routes(self) -> None:
        """Setup service-specific HTTP routes. Override in subclasses."""
        pass

    async def _health_handler(self, request: web.Request) -> web.Response:
        health_status = await self.health_checker.check_health()
        status_code = 200 if health_status["healthy"] else 503

        return web.json_response(health_status, status=status_code)

    async def _readiness_handler(self, request: web.Request) -> web.Response:
        ready_status = await self.health_checker.check_readiness()
        status_code = 200 if ready_status["ready"] else 503

        return web.json_response(ready_status, status=status_code)

    async def _liveness_handler(self, request: web.Request) -> web.Response:
        return web.json_response({"alive": True})

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(
            body=self.metrics.get_metrics(),
            headers={"Content-Type": self.metrics.get_content_type()}
        )

    async def _status_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.get_status())

    def get_status(self) -> Dict[str, Any]:
        """Operational status document. Subclasses extend it."""
        return {
            "service": self.config.service_name,
            "version": self.config.version,
            "environment": self.config.environment,
            "consumers": [consumer.get_metrics() for consumer in self.consumers],
            "producers": [producer.get_metrics() for producer in self.producers],
        }

    @abstractmethod
    async def _startup_hook(self) -> None:
        """Service-specific startup logic."""

    @abstractmethod
    async def _shutdown_hook(self) -> None:
        """Service-specific shutdown logic."""

    async def _update_metrics_periodically(self) -> None:
        """Refresh service-level gauges."""
        while not self.shutdown_event.is_set():
            try:
                self.metrics.update_service_info(
                    version=self.config.version,
                    environment=self.config.environment
                )

                health_status = await self.health_checker.check_health()
                self.metrics.set_health_status(health_status["healthy"])

                try:
                    self.metrics.set_memory_usage(psutil.Process().memory_info().rss)
                except psutil.Error as e:
                    self.logger.warning("Failed to update memory metrics", error=str(e))

                await asyncio.sleep(METRICS_REFRESH_SECONDS)

            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Error updating metrics", error=str(e))
                await asyncio.sleep(METRICS_REFRESH_SECONDS)

    async def run(self) -> None:
        """Run the service until a shutdown signal arrives."""
        self._setup_signal_handlers()
        try:
            await self.startup()
            await self.shutdown_event.wait()
        except Exception as e:
            self.logger.error("Service error", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()

    def add_consumer(self, consumer: KafkaConsumer) -> None:
        """Add a Kafka consumer to the service."""
        self.consumers.append(consumer)

    def add_producer(self, producer: KafkaProducer) -> None:
        """Add a Kafka producer to the service."""
        self.producers.append(producer)
