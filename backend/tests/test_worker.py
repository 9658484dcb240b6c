"""Tests for the retention worker task, cron registration and task enqueueing."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from arq.cron import CronJob

from changeflow.core.config import settings
from changeflow.tasks import enqueue_cleanup_old_logs, enqueue_task, get_redis_pool
from changeflow.worker import WorkerSettings, cleanup_old_logs_task


class TestCleanupOldLogsTask:
    @pytest.mark.asyncio
    async def test_uses_configured_retention(self):
        mock_service = MagicMock()
        mock_service.cleanup_old_logs.return_value = {
            "audit_logs": 4,
            "user_activity": 2,
            "dry_run": False,
            "oldest_remaining": None,
        }

        with patch("changeflow.worker.AuditService", return_value=mock_service):
            result = await cleanup_old_logs_task({})

        assert result == 6
        mock_service.cleanup_old_logs.assert_called_once_with(settings.AUDIT_RETENTION_DAYS)

    @pytest.mark.asyncio
    async def test_explicit_retention(self):
        mock_service = MagicMock()
        mock_service.cleanup_old_logs.return_value = {"audit_logs": 0, "user_activity": 0}

        with patch("changeflow.worker.AuditService", return_value=mock_service):
            result = await cleanup_old_logs_task({}, 30)

        assert result == 0
        mock_service.cleanup_old_logs.assert_called_once_with(30)

    @pytest.mark.asyncio
    async def test_closes_session_on_error(self):
        mock_session = MagicMock()
        mock_service = MagicMock()
        mock_service.cleanup_old_logs.side_effect = RuntimeError("db down")

        with (
            patch("changeflow.worker.SessionLocal", return_value=mock_session),
            patch("changeflow.worker.AuditService", return_value=mock_service),
            pytest.raises(RuntimeError, match="db down"),
        ):
            await cleanup_old_logs_task({})

        mock_session.close.assert_called_once()


class TestWorkerSettings:
    def test_registers_cleanup(self):
        assert cleanup_old_logs_task in WorkerSettings.functions

    def test_cleanup_runs_daily(self):
        assert len(WorkerSettings.cron_jobs) == 1
        job = WorkerSettings.cron_jobs[0]
        assert isinstance(job, CronJob)
        assert job.coroutine is cleanup_old_logs_task
        assert job.hour == 3
        assert job.minute == 0


class TestTasks:
    @pytest.mark.asyncio
    async def test_get_redis_pool(self):
        mock_pool = MagicMock()
        with patch("changeflow.tasks.create_pool", new_callable=AsyncMock) as mock_create:
            mock_create.return_value = mock_pool
            assert await get_redis_pool() == mock_pool
            mock_create.assert_called_once()

    @pytest.mark.asyncio
    async def test_enqueue_task_closes_pool(self):
        mock_pool = MagicMock()
        mock_pool.enqueue_job = AsyncMock(side_effect=Exception("Redis error"))
        mock_pool.close = AsyncMock()

        with patch("changeflow.tasks.get_redis_pool", new_callable=AsyncMock) as mock_get_pool:
            mock_get_pool.return_value = mock_pool
            with pytest.raises(Exception, match="Redis error"):
                await enqueue_task("cleanup_old_logs_task")

        mock_pool.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_enqueue_cleanup_old_logs(self):
        mock_job = MagicMock()
        with patch("changeflow.tasks.enqueue_task", new_callable=AsyncMock) as mock_enqueue:
            mock_enqueue.return_value = mock_job
            result = await enqueue_cleanup_old_logs(14)

        assert result == mock_job
        mock_enqueue.assert_called_once_with("cleanup_old_logs_task", 14)
