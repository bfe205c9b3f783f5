from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List
import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from amm_indexer.storage.models.sync_run import RUN_COMPLETED, RUN_FAILED, RUN_RUNNING, SyncRun
from amm_indexer.utils.errors import SyncRunNotFoundError, SyncRunStateError

log = logging.getLogger(__name__)


@dataclass
class RunCounters:
    events_found: int = 0
    events_processed: int = 0
    events_skipped: int = 0
    events_failed: int = 0
    blocks_processed: int | None = None

    def values(self) -> dict:
        out = {
            "events_found": self.events_found,
            "events_processed": self.events_processed,
            "events_skipped": self.events_skipped,
            "events_failed": self.events_failed,
        }
        if self.blocks_processed is not None:
            out["blocks_processed"] = self.blocks_processed
        return out


def _now() -> datetime:
    return datetime.now(timezone.utc)


def start_run(
    db: Session,
    job_name: str,
    source: str = "api",
    start_block: int | None = None,
    end_block: int | None = None,
    metadata: dict | None = None,
) -> int | None:
    """Create a ``running`` row; ``None`` if it could not be written.

    Tracking is observational, so a storage failure here is logged and the
    pipeline carries on without a run id.
    """
    run = SyncRun(
        job_name=job_name,
        source=source,
        status=RUN_RUNNING,
        start_time=_now(),
        start_block=start_block,
        end_block=end_block,
        run_metadata=metadata or {},
    )
    try:
        db.add(run)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error(f"Could not start sync run {job_name}: {e}")
        return None
    log.info(f"Sync run {run.id} started: {job_name} ({source})")
    return run.id


def _finish(db: Session, run_id: int, status: str, counters: RunCounters | None, error_message: str | None):
    started = db.execute(select(SyncRun.start_time, SyncRun.status).where(SyncRun.id == run_id)).first()
    if started is None:
        raise SyncRunNotFoundError(f"sync run {run_id} does not exist")

    end_time = _now()
    start_time = started.start_time
    if start_time.tzinfo is None:
        start_time = start_time.replace(tzinfo=timezone.utc)
    values = {
        "status": status,
        "end_time": end_time,
        "duration_ms": int((end_time - start_time).total_seconds() * 1000),
        "error_message": error_message,
        **(counters or RunCounters()).values(),
    }
    # only a running row may move; a terminal row never changes again
    result = db.execute(
        update(SyncRun)
        .where(SyncRun.id == run_id)
        .where(SyncRun.status == RUN_RUNNING)
        .values(**values)
    )
    if result.rowcount == 0:
        db.rollback()
        raise SyncRunStateError(f"sync run {run_id} is already {started.status}")
    db.commit()
    log.info(f"Sync run {run_id} {status} in {values['duration_ms']}ms")


def complete_run(db: Session, run_id: int | None, counters: RunCounters | None = None) -> None:
    if run_id is None:
        return
    _finish(db, run_id, RUN_COMPLETED, counters, None)


def fail_run(
    db: Session,
    run_id: int | None,
    error_message: str,
    counters: RunCounters | None = None,
) -> None:
    if run_id is None:
        return
    _finish(db, run_id, RUN_FAILED, counters, error_message[:2000])


def recent_runs(db: Session, limit: int = 20) -> List[dict]:
    runs = db.execute(select(SyncRun).order_by(SyncRun.start_time.desc(), SyncRun.id.desc()).limit(limit)).scalars()
    return [
        {
            "id": r.id,
            "jobName": r.job_name,
            "source": r.source,
            "status": r.status,
            "startTime": r.start_time.isoformat() if r.start_time else None,
            "endTime": r.end_time.isoformat() if r.end_time else None,
            "startBlock": r.start_block,
            "endBlock": r.end_block,
            "eventsFound": r.events_found,
            "eventsProcessed": r.events_processed,
            "eventsSkipped": r.events_skipped,
            "eventsFailed": r.events_failed,
            "durationMs": r.duration_ms,
            "errorMessage": r.error_message,
            "metadata": r.run_metadata,
        }
        for r in runs
    ]


def run_stats(db: Session, now: datetime | None = None) -> dict:
    """Runs per status overall, plus totals for the trailing 24h."""
    now = now or _now()
    by_status = dict(db.execute(select(SyncRun.status, func.count()).group_by(SyncRun.status)).all())

    last_day = db.execute(
        select(
            func.count(),
            func.coalesce(func.sum(SyncRun.events_processed), 0),
            func.coalesce(func.sum(SyncRun.events_failed), 0),
            func.avg(SyncRun.duration_ms),
        ).where(SyncRun.start_time >= now - timedelta(hours=24))
    ).one()
    runs_24h, processed_24h, failed_24h, avg_duration = last_day

    return {
        "total": sum(by_status.values()),
        "running": by_status.get(RUN_RUNNING, 0),
        "completed": by_status.get(RUN_COMPLETED, 0),
        "failed": by_status.get(RUN_FAILED, 0),
        "last24h": {
            "runs": runs_24h,
            "eventsProcessed": int(processed_24h),
            "eventsFailed": int(failed_24h),
            "avgDurationMs": round(float(avg_duration)) if avg_duration is not None else None,
        },
    }
