"""Tests for lifespan management and the process entry point."""

import asyncio
import os
import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from slotfinder.config import RateLimitSettings, ServerSettings


class TestLifespanResources:
    """Test LifespanResources dataclass."""

    def test_lifespan_resources_defaults(self):
        """Test that LifespanResources has correct defaults."""
        from slotfinder.lifespan import LifespanResources

        resources = LifespanResources()
        assert resources.adaptor is None
        assert resources.shared is None
        assert resources.redis_client is None
        assert resources.limiter is None
        assert resources.background_tasks == []


class TestInitRedis:
    """Test init_redis function."""

    @pytest.mark.asyncio
    async def test_init_redis_creates_client(self, settings):
        """Test that init_redis creates a pooled Redis client."""
        from slotfinder.lifespan import init_redis

        mock_redis_class = MagicMock()
        with patch("slotfinder.lifespan.redis.Redis", mock_redis_class), \
                patch("slotfinder.lifespan.RedisConnectionPool") as mock_pool:
            client = await init_redis(settings)

        assert client is mock_redis_class.return_value
        assert mock_pool.call_args.kwargs["host"] == settings.redis.host
        assert mock_pool.call_args.kwargs["password"] is None


class TestSetupResources:
    """Test setup_resources function."""

    @pytest.mark.asyncio
    async def test_memory_without_rate_limit(self, settings):
        """Test default setup builds a memory adaptor and no limiter."""
        from slotfinder.adaptors.memory import MemoryAdaptor
        from slotfinder.lifespan import setup_resources

        resources = await setup_resources(settings)

        assert isinstance(resources.adaptor, MemoryAdaptor)
        assert resources.shared is not None
        assert resources.limiter is None
        assert resources.redis_client is None

    @pytest.mark.asyncio
    async def test_redis_rate_limit_backend(self, settings):
        """Test the redis rate limit backend connects to Redis."""
        from slotfinder.lifespan import setup_resources
        from slotfinder.ratelimit import RedisFixedWindowLimiter

        settings.rate_limit = RateLimitSettings(enabled=True, backend="redis")
        with patch("slotfinder.lifespan.init_redis", AsyncMock(return_value=MagicMock())) as mock_init:
            resources = await setup_resources(settings)

        mock_init.assert_awaited_once()
        assert isinstance(resources.limiter, RedisFixedWindowLimiter)


class TestCleanupResources:
    """Test cleanup_resources function."""

    @pytest.mark.asyncio
    async def test_waits_for_tasks_then_closes(self):
        """Test background tasks finish before storage is closed."""
        from slotfinder.lifespan import LifespanResources, cleanup_resources

        order = []

        async def task():
            await asyncio.sleep(0.01)
            order.append("task")

        shared = MagicMock()
        shared.close = AsyncMock(side_effect=lambda: order.append("close"))
        limiter = MagicMock()
        limiter.close = AsyncMock()
        resources = LifespanResources(
            shared=shared,
            limiter=limiter,
            background_tasks=[asyncio.create_task(task())],
        )

        await cleanup_resources(resources)

        assert order == ["task", "close"]
        limiter.close.assert_awaited_once()
        assert resources.background_tasks == []

    @pytest.mark.asyncio
    async def test_failed_task_is_logged(self, caplog):
        """Test a crashed background task does not block cleanup."""
        from slotfinder.lifespan import LifespanResources, cleanup_resources

        async def crash():
            raise RuntimeError("worker crashed")

        shared = MagicMock()
        shared.close = AsyncMock()
        resources = LifespanResources(shared=shared, background_tasks=[asyncio.create_task(crash())])

        await cleanup_resources(resources)

        assert "worker crashed" in caplog.text
        shared.close.assert_awaited_once()


class TestRun:
    """Test the service entry point end to end."""

    @pytest.mark.asyncio
    async def test_runs_until_signal(self, settings):
        """Test SIGTERM stops the server and releases storage."""
        from slotfinder.main import run

        settings.server = ServerSettings(listen_addr="127.0.0.1:0")
        loop = asyncio.get_running_loop()
        loop.call_later(0.5, os.kill, os.getpid(), signal.SIGTERM)

        with patch("slotfinder.lifespan.SharedState.close", AsyncMock()) as mock_close:
            await asyncio.wait_for(run(settings), timeout=10)

        mock_close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bind_failure_stops_startup(self, settings, tmp_path):
        """Test a bind failure surfaces before the worker starts."""
        from slotfinder.main import run
        from slotfinder.transport import TransportBindError

        settings.server = ServerSettings(listen_addr=f"unix:{tmp_path}/missing/s.sock")
        with patch("slotfinder.main.cleanup_worker") as mock_worker:
            with pytest.raises(TransportBindError):
                await run(settings)

        mock_worker.assert_not_called()

    def test_main_reports_bad_configuration(self):
        """Test invalid configuration exits with status 1."""
        from slotfinder.config import clear_settings_cache
        from slotfinder.main import main

        clear_settings_cache()
        try:
            with patch.dict(os.environ, {"STORAGE_BACKEND": "sqlite"}, clear=True):
                assert main() == 1
        finally:
            clear_settings_cache()
