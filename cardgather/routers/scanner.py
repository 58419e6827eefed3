from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardgather.auth import require_api_key
from cardgather.config import settings
from cardgather.database import get_session
from cardgather.models import Scan
from cardgather.parsers.registry import list_parser_keys
from cardgather.schemas import ScanCreate, ScanOut
from cardgather.services.scanner import RunControl, run_scan

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scans", tags=["scans"])

# Live runs by scan_id so they can be cancelled between pages.
_running: dict[int, tuple[asyncio.Task, RunControl]] = {}


async def _run_tracked(scan_id: int, sources: list[str] | None, control: RunControl) -> None:
    try:
        await run_scan(sources, scan_id=scan_id, control=control)
    except Exception:
        logger.exception("Background scan %d raised", scan_id)
    finally:
        _running.pop(scan_id, None)


@router.post("", response_model=ScanOut, status_code=202, dependencies=[Depends(require_api_key)])
async def trigger_scan(data: ScanCreate, session: AsyncSession = Depends(get_session)):
    """Start a pipeline run in the background and return its Scan record.

    Only one run may be active at a time: the Reconciler owns the canonical
    set for the duration of a run.
    """
    if data.sources:
        unknown = sorted(set(data.sources) - set(list_parser_keys()))
        if unknown:
            raise HTTPException(400, f"Unknown sources: {', '.join(unknown)}")

    busy = await session.execute(
        select(Scan.id).where(Scan.status.in_(["running", "pending"])).limit(1)
    )
    if busy.scalar_one_or_none() is not None:
        raise HTTPException(409, "A scan is already pending or running")

    scan = Scan(status="pending", started_at=datetime.utcnow())
    session.add(scan)
    await session.commit()
    await session.refresh(scan)

    control = RunControl(settings.run_timeout_seconds)
    task = asyncio.create_task(_run_tracked(scan.id, data.sources, control))
    _running[scan.id] = (task, control)
    return scan


@router.post("/{scan_id}/cancel", dependencies=[Depends(require_api_key)])
async def cancel_scan(scan_id: int):
    """Ask a running scan to stop at the next page boundary."""
    entry = _running.get(scan_id)
    if entry and not entry[0].done():
        entry[1].cancel()
        return {"cancelled": True}
    raise HTTPException(status_code=404, detail="No active task found for this scan")


@router.get("", response_model=list[ScanOut])
async def list_scans(session: AsyncSession = Depends(get_session)):
    result = await session.execute(select(Scan).order_by(Scan.started_at.desc()).limit(50))
    return result.scalars().all()


@router.get("/{scan_id}", response_model=ScanOut)
async def get_scan(scan_id: int, session: AsyncSession = Depends(get_session)):
    scan = await session.get(Scan, scan_id)
    if scan is None:
        raise HTTPException(404, "Scan not found")
    return scan
