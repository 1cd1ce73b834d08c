"""
Tests for application wiring.
"""

import pytest
from unittest.mock import AsyncMock, patch

from sqlalchemy import text

from app import build_runtime, create_parser
from core.settings import Settings
from pulse.alerts import parse_alert_create
from pulse.config import PulseConfig
from pulse.probes import QueueStats


class TestBuildRuntime:
    """Tests for component construction."""

    @pytest.mark.asyncio
    async def test_unconfigured_dependencies(self, db_engine, clock):
        runtime = build_runtime(Settings(), PulseConfig(), engine=db_engine, clock=clock)
        try:
            assert runtime.registry.list_probes() == [
                "database", "redis", "llm", "ollama", "whatsapp",
            ]
            assert runtime.redis is None
            assert runtime.storage.state.value == "degraded"

            database = await runtime.registry.run_probe("database")
            redis = await runtime.registry.run_probe("redis")
            assert database.healthy is False
            assert database.message == "DATABASE_URL not configured"
            assert redis.message == "REDIS_URL not configured"
        finally:
            await runtime.close()

    @pytest.mark.asyncio
    async def test_queue_registered_with_host_hooks(self, db_engine, clock):
        stats = QueueStats(worker_running=True, jobs_enabled=3, recent_runs=20, success_rate=100.0)
        runtime = build_runtime(
            Settings(),
            PulseConfig(),
            engine=db_engine,
            clock=clock,
            queue_worker_running=lambda: True,
            queue_stats_provider=AsyncMock(return_value=stats),
        )
        try:
            assert "queue" in runtime.registry.list_probes()

            shallow = await runtime.registry.run_probe("queue")
            deep = await runtime.registry.run_probe("queue", deep=True)
            assert shallow.healthy is True
            assert shallow.message == "Worker running"
            assert deep.healthy is True
            assert deep.message == "OK - 3 jobs, 100% success"
        finally:
            await runtime.close()

    @pytest.mark.asyncio
    async def test_whatsapp_uses_channel_status_provider(self, db_engine, clock):
        settings = Settings(evolution_api_url="http://evolution.local", evolution_api_key="key")
        provider = AsyncMock(return_value=[{"name": "ops", "status": "disconnected"}])
        runtime = build_runtime(
            settings,
            PulseConfig(),
            engine=db_engine,
            clock=clock,
            whatsapp_channel_status=provider,
        )
        try:
            probe = runtime.registry.get_probe("whatsapp", deep=True)
            with patch.object(probe, "_gateway_reachable", AsyncMock(return_value=True)):
                result = await probe.check()

            provider.assert_awaited_once()
            assert result.healthy is False
            assert result.message == "0/1 channels connected"
        finally:
            await runtime.close()

    @pytest.mark.asyncio
    async def test_knowledge_registered_with_table(self, db_engine, clock):
        with db_engine.begin() as conn:
            conn.execute(text("CREATE TABLE knowledge_documents (id INTEGER PRIMARY KEY, body TEXT)"))

        settings = Settings(database_url="sqlite://", knowledge_table="knowledge_documents")
        runtime = build_runtime(settings, PulseConfig(), engine=db_engine, clock=clock)
        try:
            assert runtime.registry.list_probes()[-1] == "knowledge"
            result = await runtime.registry.run_probe("knowledge")
            assert result.healthy is True
            assert result.details == {"tableExists": True}
        finally:
            await runtime.close()

    @pytest.mark.asyncio
    async def test_alert_store_uses_given_engine(self, db_engine, clock):
        runtime = build_runtime(Settings(), PulseConfig(), engine=db_engine, clock=clock)
        try:
            runtime.alerts.create_alert(parse_alert_create({
                "name": "Queue stalled",
                "condition": {"type": "probe.unhealthy", "target": "queue"},
            }))
            assert [a.name for a in runtime.alerts.list_alerts()] == ["Queue stalled"]
        finally:
            await runtime.close()


class TestParser:
    """Tests for the command line."""

    def test_defaults(self):
        args = create_parser().parse_args([])
        assert args.host is None
        assert args.port is None
        assert args.no_scheduler is False

    def test_flags(self):
        args = create_parser().parse_args(
            ["--host", "127.0.0.1", "--port", "9000", "--log-level", "DEBUG", "--no-scheduler"]
        )
        assert (args.host, args.port, args.log_level, args.no_scheduler) == (
            "127.0.0.1", 9000, "DEBUG", True,
        )

    def test_rejects_unknown_log_level(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--log-level", "TRACE"])
