"""Scheduled scan job: creates a pending Scan and hands it to run_scan."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cardgather.database import Base
from cardgather.models import Scan
from cardgather.services import scheduler


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.mark.asyncio
async def test_job_creates_scan_and_runs(session_factory):
    mock_run = AsyncMock(return_value=MagicMock(status="completed"))
    with patch.object(scheduler, "async_session", session_factory), \
            patch.object(scheduler, "run_scan", mock_run):
        await scheduler._run_scan_job()

    async with session_factory() as session:
        [scan] = (await session.execute(select(Scan))).scalars().all()
    mock_run.assert_awaited_once_with(scan_id=scan.id)


@pytest.mark.asyncio
async def test_job_skips_while_a_scan_is_active(session_factory):
    async with session_factory() as session:
        session.add(Scan(status="running", started_at=datetime(2026, 1, 10, 2, 0)))
        await session.commit()

    mock_run = AsyncMock()
    with patch.object(scheduler, "async_session", session_factory), \
            patch.object(scheduler, "run_scan", mock_run):
        await scheduler._run_scan_job()

    mock_run.assert_not_awaited()
