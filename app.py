#!/usr/bin/env python3
"""
Pulse - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Wires every Pulse component into one process:

- Metric collector and time-series storage (Redis, memory fallback)
- Probe registry with shallow/deep probe pairs
- Health aggregator
- Alert store, channels and engine
- Periodic scheduler (probes -> snapshot -> persist -> alerts)
- HTTP API mounted under /pulse

============================================================
USAGE
============================================================
    python app.py
    python app.py --port 9000
    python app.py --host 127.0.0.1 --log-level DEBUG
    python app.py --no-scheduler

Environment (see core/settings.py and pulse/config.py):
    DATABASE_URL, REDIS_URL, OPENROUTER_API_KEY, OLLAMA_URL,
    EVOLUTION_API_URL, KNOWLEDGE_TABLE, SMTP_HOST, PULSE_SCHEDULER_INTERVAL, ...

============================================================
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Any, Optional

import redis.asyncio as aioredis
from aiohttp import web
from sqlalchemy.engine import Engine

from core.clock import ClockProtocol, SystemClock
from core.logging_setup import setup_logging
from core.settings import Settings
from pulse.alerts import AlertEngine, AlertStore, CooldownTracker
from pulse.alerts.channels import EmailChannel, SmtpSettings, UiChannel, WhatsAppChannel
from pulse.api import setup_pulse_routes
from pulse.config import PulseConfig, set_config
from pulse.health import HealthAggregator
from pulse.http_client import HttpClient
from pulse.metrics import InMemoryBackend, MetricCollector, RedisBackend, TimeSeriesStorage
from pulse.probes import (
    DatabaseProbe,
    KnowledgeProbe,
    OllamaProbe,
    OpenRouterProbe,
    ProbeRegistry,
    QueueProbe,
    RedisProbe,
    WhatsAppGatewayProbe,
)
from pulse.probes.queue import QueueStatsProvider, WorkerRunning
from pulse.probes.whatsapp import ChannelStatusProvider
from pulse.service import PulseService
from storage.database import (
    DEFAULT_DATABASE_URL,
    create_database_engine,
    create_session_factory,
    initialize_database,
)


logger = logging.getLogger(__name__)


# ============================================================
# RUNTIME
# ============================================================

@dataclass
class PulseRuntime:
    """Every long-lived component of one Pulse process."""

    settings: Settings
    config: PulseConfig
    engine: Engine
    redis: Optional[Any]
    http: HttpClient
    collector: MetricCollector
    storage: TimeSeriesStorage
    registry: ProbeRegistry
    aggregator: HealthAggregator
    alerts: AlertEngine
    service: PulseService

    async def close(self) -> None:
        """Release components in reverse construction order."""
        await self.service.stop()
        await self.alerts.close()
        await self.http.close()
        if self.redis is not None:
            await self.redis.aclose()
        self.engine.dispose()
        logger.info("Pulse runtime closed")


def build_registry(
    settings: Settings,
    config: PulseConfig,
    collector: MetricCollector,
    http: HttpClient,
    probe_engine: Optional[Engine],
    redis_client: Optional[Any],
    clock: ClockProtocol,
    queue_worker_running: Optional[WorkerRunning] = None,
    queue_stats_provider: Optional[QueueStatsProvider] = None,
    whatsapp_channel_status: Optional[ChannelStatusProvider] = None,
) -> ProbeRegistry:
    """
    Register the shallow/deep pair of every dependency probe.

    The queue pair needs host-supplied hooks and the knowledge pair
    needs KNOWLEDGE_TABLE; each is skipped without them.
    """
    shallow = config.shallow_probe_timeout_seconds
    deep = config.deep_probe_timeout_seconds
    registry = ProbeRegistry()

    registry.register_pair(
        DatabaseProbe(probe_engine, deep=False, collector=collector, timeout_seconds=shallow, clock=clock),
        DatabaseProbe(probe_engine, deep=True, collector=collector, timeout_seconds=deep, clock=clock),
    )
    registry.register_pair(
        RedisProbe(redis_client, deep=False, collector=collector, timeout_seconds=shallow, clock=clock),
        RedisProbe(redis_client, deep=True, collector=collector, timeout_seconds=deep, clock=clock),
    )

    def openrouter(is_deep: bool, timeout_seconds: float) -> OpenRouterProbe:
        return OpenRouterProbe(
            settings.openrouter_api_key,
            deep=is_deep,
            http=http,
            base_url=settings.openrouter_base_url,
            default_model=settings.openrouter_default_model,
            timeout_seconds=timeout_seconds,
            clock=clock,
        )

    registry.register_pair(openrouter(False, shallow), openrouter(True, deep))

    def ollama(is_deep: bool, timeout_seconds: float) -> OllamaProbe:
        return OllamaProbe(
            settings.ollama_available,
            settings.ollama_url,
            deep=is_deep,
            http=http,
            max_params=settings.ollama_max_params,
            allowed_quants=settings.ollama_allowed_quants,
            timeout_seconds=timeout_seconds,
            clock=clock,
        )

    registry.register_pair(ollama(False, shallow), ollama(True, deep))

    def whatsapp(is_deep: bool, timeout_seconds: float) -> WhatsAppGatewayProbe:
        return WhatsAppGatewayProbe(
            settings.evolution_api_url,
            settings.evolution_api_key,
            deep=is_deep,
            http=http,
            channel_provider=whatsapp_channel_status,
            timeout_seconds=timeout_seconds,
            clock=clock,
        )

    registry.register_pair(whatsapp(False, shallow), whatsapp(True, deep))

    if queue_worker_running is not None or queue_stats_provider is not None:
        def queue(is_deep: bool, timeout_seconds: float) -> QueueProbe:
            return QueueProbe(
                deep=is_deep,
                worker_running=queue_worker_running,
                stats_provider=queue_stats_provider,
                timeout_seconds=timeout_seconds,
                clock=clock,
            )

        registry.register_pair(queue(False, shallow), queue(True, deep))

    if settings.knowledge_table and probe_engine is not None:
        def knowledge(is_deep: bool, timeout_seconds: float) -> KnowledgeProbe:
            return KnowledgeProbe(
                probe_engine,
                settings.knowledge_table,
                deep=is_deep,
                search_column=settings.knowledge_search_column,
                collector=collector,
                timeout_seconds=timeout_seconds,
                clock=clock,
            )

        registry.register_pair(knowledge(False, shallow), knowledge(True, deep))

    return registry


def build_runtime(
    settings: Settings,
    config: PulseConfig,
    engine: Optional[Engine] = None,
    redis_client: Optional[Any] = None,
    clock: Optional[ClockProtocol] = None,
    queue_worker_running: Optional[WorkerRunning] = None,
    queue_stats_provider: Optional[QueueStatsProvider] = None,
    whatsapp_channel_status: Optional[ChannelStatusProvider] = None,
) -> PulseRuntime:
    """
    Construct every component.

    Args:
        settings: Process settings
        config: Pulse tunables
        engine: Database engine (built from settings if omitted)
        redis_client: Redis client (built from settings if omitted)
        clock: Time source shared by all components
        queue_worker_running: Scheduler worker state, enables the queue probe
        queue_stats_provider: Async queue statistics, enables the queue probe
        whatsapp_channel_status: Async per-channel gateway status
    """
    clock = clock or SystemClock()

    # Alert configs/events always need a database; the probe only
    # reports on a configured DATABASE_URL.
    if engine is None:
        engine = create_database_engine(settings.database_url or DEFAULT_DATABASE_URL)
        initialize_database(engine)
    probe_engine = engine if settings.database_url else None

    if redis_client is None and settings.redis_url:
        redis_client = aioredis.from_url(settings.redis_url)

    collector = MetricCollector(
        buckets=config.histogram_buckets,
        max_samples=config.max_histogram_samples,
        clock=clock,
    )

    durable = None
    if redis_client is not None:
        durable = RedisBackend(
            redis_client,
            prefix=config.redis_key_prefix,
            retention_seconds=config.retention_seconds,
            point_retention_seconds=config.point_retention_seconds,
            error_ttl_seconds=config.error_ttl_seconds,
        )
    else:
        logger.warning("REDIS_URL not configured, metrics history is memory only")

    storage = TimeSeriesStorage(
        memory=InMemoryBackend(
            max_snapshots=config.max_memory_snapshots,
            max_points=config.max_memory_points,
        ),
        durable=durable,
        clock=clock,
    )

    http = HttpClient()
    registry = build_registry(
        settings,
        config,
        collector,
        http,
        probe_engine,
        redis_client,
        clock,
        queue_worker_running=queue_worker_running,
        queue_stats_provider=queue_stats_provider,
        whatsapp_channel_status=whatsapp_channel_status,
    )

    aggregator = HealthAggregator(
        collector,
        storage,
        registry,
        config=config,
        clock=clock,
        environment=settings.environment,
    )

    store = AlertStore(
        create_session_factory(engine),
        clock=clock,
        events_per_alert=config.events_per_alert,
    )
    channels = [
        UiChannel(),
        EmailChannel(
            SmtpSettings(
                host=settings.smtp_host,
                port=settings.smtp_port,
                secure=settings.smtp_secure,
                user=settings.smtp_user,
                password=settings.smtp_pass,
                sender=settings.smtp_from,
            ),
            app_name=settings.app_name,
        ),
        WhatsAppChannel(
            settings.evolution_api_url,
            settings.evolution_api_key,
            instance=settings.evolution_instance,
            http=http,
            app_name=settings.app_name,
        ),
    ]
    alerts = AlertEngine(
        store,
        collector,
        channels=channels,
        cooldowns=CooldownTracker(clock),
        clock=clock,
        channel_timeout_seconds=config.channel_timeout_seconds,
    )

    service = PulseService(
        collector,
        storage,
        registry,
        aggregator,
        alerts,
        config=config,
        clock=clock,
    )

    return PulseRuntime(
        settings=settings,
        config=config,
        engine=engine,
        redis=redis_client,
        http=http,
        collector=collector,
        storage=storage,
        registry=registry,
        aggregator=aggregator,
        alerts=alerts,
        service=service,
    )


# ============================================================
# HTTP APPLICATION
# ============================================================

def create_app(runtime: PulseRuntime, start_scheduler: bool = True) -> web.Application:
    """Build the aiohttp application and bind the runtime lifecycle to it."""
    app = web.Application()
    setup_pulse_routes(app, runtime.service)

    async def on_startup(app: web.Application) -> None:
        if start_scheduler:
            await runtime.service.start()
        logger.info(f"{runtime.settings.app_name} {runtime.settings.app_version} started")

    async def on_cleanup(app: web.Application) -> None:
        await runtime.close()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


async def run_server(app: web.Application, host: str, port: int) -> None:
    """Serve until cancelled."""
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Pulse API listening at http://{host}:{port}/pulse")

    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await runner.cleanup()


# ============================================================
# CLI
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the Pulse health, metrics and alerting service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind to (default: PULSE_HOST or 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: PULSE_PORT or 8080)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Serve the API without the periodic probe/alert cycle",
    )

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    args = create_parser().parse_args(argv)

    settings = Settings.from_env()
    setup_logging(args.log_level or settings.log_level, settings.log_format)

    config = PulseConfig.from_env()
    set_config(config)

    try:
        runtime = build_runtime(settings, config)
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        return 1

    app = create_app(runtime, start_scheduler=not args.no_scheduler)

    try:
        asyncio.run(run_server(app, args.host or settings.host, args.port or settings.port))
    except KeyboardInterrupt:
        print("\nShutting down...")

    return 0


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
