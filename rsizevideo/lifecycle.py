# rsizevideo/lifecycle.py
"""TTL bookkeeping and the periodic garbage-collection sweep."""
from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import NotFoundError
from .store import JobStore

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def created_at_ms(doc: Dict[str, Any]) -> Optional[int]:
    value = doc.get("createdAt")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def is_expired(doc: Dict[str, Any], ttl_seconds: float, now: Optional[int] = None) -> bool:
    created = created_at_ms(doc)
    if created is None:
        return False
    now = now_ms() if now is None else now
    return now - created > ttl_seconds * 1000


def remaining_seconds(doc: Dict[str, Any], ttl_seconds: float, now: Optional[int] = None) -> float:
    created = created_at_ms(doc)
    if created is None:
        return 0.0
    now = now_ms() if now is None else now
    return max(0.0, ttl_seconds - (now - created) / 1000.0)


@dataclass
class SweepReport:
    jobs_removed: List[str] = field(default_factory=list)
    uploads_removed: List[str] = field(default_factory=list)
    errors: int = 0


def _sweep_jobs(store: JobStore, ttl_seconds: float, now: float, report: SweepReport) -> None:
    for job_id in store.list_ids():
        try:
            doc = store.read_status(job_id)
            created = created_at_ms(doc)
        except NotFoundError:
            created = None

        try:
            if created is not None:
                stale = now * 1000 - created > ttl_seconds * 1000
                reason = "expired"
            else:
                # No usable status: either still encoding or abandoned by a
                # crash. Only double-TTL staleness counts as abandoned.
                mtime = os.stat(store.job_dir(job_id)).st_mtime
                stale = now - mtime > ttl_seconds * 2
                reason = "abandoned"
            if stale:
                store.delete(job_id)
                report.jobs_removed.append(job_id)
                logger.info("Cleaned up %s job %s", reason, job_id)
        except FileNotFoundError:
            # removed concurrently (e.g. by the download endpoint)
            continue
        except OSError:
            report.errors += 1
            logger.exception("Error deleting job %s", job_id)


def _sweep_uploads(uploads_dir: Path, ttl_seconds: float, now: float, report: SweepReport) -> None:
    try:
        entries = list(Path(uploads_dir).iterdir())
    except FileNotFoundError:
        return
    except OSError:
        report.errors += 1
        logger.exception("Error listing upload directory %s", uploads_dir)
        return

    for path in entries:
        try:
            if not path.is_file():
                continue
            if now - path.stat().st_mtime > ttl_seconds:
                path.unlink(missing_ok=True)
                report.uploads_removed.append(path.name)
                logger.info("Cleaned up old upload file %s", path.name)
        except FileNotFoundError:
            continue
        except OSError:
            report.errors += 1
            logger.exception("Error deleting upload file %s", path.name)


def sweep(store: JobStore, uploads_dir: Path, ttl_seconds: float, now: Optional[float] = None) -> SweepReport:
    """Delete expired jobs, abandoned job dirs and stale uploads.

    ``now`` is epoch seconds. Every deletion is independent; one failure never
    stops the rest of the sweep. Running it twice in a row is a no-op the
    second time.
    """
    now = time.time() if now is None else now
    report = SweepReport()
    _sweep_jobs(store, ttl_seconds, now, report)
    _sweep_uploads(uploads_dir, ttl_seconds, now, report)
    return report


async def run_periodic_sweep(store: JobStore, uploads_dir: Path, ttl_seconds: float, interval_sec: float) -> None:
    """Sweep once immediately, then every ``interval_sec`` until cancelled."""
    while True:
        try:
            report = await asyncio.to_thread(sweep, store, uploads_dir, ttl_seconds)
            if report.jobs_removed or report.uploads_removed or report.errors:
                logger.info(
                    "Sweep removed %d job(s), %d upload(s), %d error(s)",
                    len(report.jobs_removed),
                    len(report.uploads_removed),
                    report.errors,
                )
        except Exception:
            logger.exception("Error in cleanup sweep")
        await asyncio.sleep(interval_sec)
