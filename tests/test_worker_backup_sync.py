"""
Tests for src/workers/backup_sync.py and the Redis heartbeat helpers.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.schemas.ingestion import SyncReport
from src.utils.redis import HEARTBEAT_KEY_PREFIX, get_heartbeat, record_heartbeat
from src.workers.backup_sync import WORKER_NAME, run_backup_sync


def _job(*results):
    job = MagicMock()
    job.run = AsyncMock(side_effect=list(results))
    return job


class TestRunBackupSync:
    async def test_runs_and_heartbeats_each_cycle(self):
        job = _job(SyncReport(created=1), SyncReport())
        with (
            patch("src.workers.backup_sync.record_heartbeat", new=AsyncMock()) as heartbeat,
            patch("src.workers.backup_sync.asyncio.sleep", new=AsyncMock(side_effect=[None, asyncio.CancelledError()])) as sleep,
        ):
            with pytest.raises(asyncio.CancelledError):
                await run_backup_sync(job, interval_seconds=60)

        assert job.run.await_count == 2
        assert heartbeat.await_count == 2
        heartbeat.assert_awaited_with(WORKER_NAME, ttl_seconds=120)
        sleep.assert_awaited_with(60)

    async def test_error_does_not_stop_the_loop(self):
        job = _job(RuntimeError("db down"), SyncReport(updated=2))
        with (
            patch("src.workers.backup_sync.record_heartbeat", new=AsyncMock()),
            patch("src.workers.backup_sync.asyncio.sleep", new=AsyncMock(side_effect=[None, asyncio.CancelledError()])),
        ):
            with pytest.raises(asyncio.CancelledError):
                await run_backup_sync(job, interval_seconds=60)

        assert job.run.await_count == 2


class TestHeartbeat:
    async def test_record_sets_key_with_ttl(self, mock_redis):
        await record_heartbeat("backup_sync", ttl_seconds=1800)

        key, value = mock_redis.set.await_args.args
        assert key == f"{HEARTBEAT_KEY_PREFIX}backup_sync"
        assert value.endswith("+00:00")
        assert mock_redis.set.await_args.kwargs["ex"] == 1800

    async def test_record_fails_open(self):
        with patch("src.utils.redis.get_redis", new=AsyncMock(side_effect=ConnectionError("refused"))):
            await record_heartbeat("backup_sync", ttl_seconds=60)

    async def test_get_returns_none_when_redis_down(self):
        with patch("src.utils.redis.get_redis", new=AsyncMock(side_effect=ConnectionError("refused"))):
            assert await get_heartbeat("backup_sync") is None
