# rsizevideo/jobs.py
"""Job orchestration: upload validation, synchronous vs. background encodes,
status documents and status queries."""
from __future__ import annotations

import asyncio
import logging
import re
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set

from fastapi import UploadFile

from . import media
from .cache import ResponseCache
from .config import MB, OUTPUT_EXT, OUTPUT_SUFFIX, SUFFIX_MARKER, Settings
from .errors import EngineError, NotFoundError, ServiceError, ValidationError
from .lifecycle import is_expired, now_ms
from .notify import Notifier
from .store import JobStore

logger = logging.getLogger(__name__)


class JobStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    EXPIRED = "expired"


CHUNK = 1024 * 1024
_EXT_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")
_CTRL_RE = re.compile(r"[\x00-\x1f\x7f]")


def new_job_id() -> str:
    return secrets.token_hex(16)


def output_filename(original_name: Optional[str]) -> str:
    """Display name for the encoded file.

    ``clip.mov`` -> ``clip-rsizevideo-com.mp4``; names that already carry the
    marker only get the extension, so re-compressing never double-tags.
    """
    base = (original_name or "").replace("\\", "/").rsplit("/", 1)[-1]
    stem = _CTRL_RE.sub("", Path(base).stem).strip().lstrip(".") or "video"
    if SUFFIX_MARKER in stem.lower():
        return f"{stem}{OUTPUT_EXT}"
    return f"{stem}-{OUTPUT_SUFFIX}{OUTPUT_EXT}"


def parse_target_size(raw: Any) -> float:
    """Target size in MB from the form field."""
    if raw is None or str(raw).strip() == "":
        raise ValidationError("Target size is required")
    try:
        value = float(str(raw).strip())
    except ValueError:
        raise ValidationError("Target size must be a number")
    if not value > 0 or value == float("inf"):
        raise ValidationError("Target size must be a positive number")
    return value


def _iso(epoch_ms: int) -> str:
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class PendingJob:
    job_id: str
    filename: str
    upload_path: Path
    original_size: int
    video_bps: int
    started: float
    email: Optional[str] = None


class JobOrchestrator:
    def __init__(self, settings: Settings, store: JobStore, notifier: Notifier):
        self.settings = settings
        self.store = store
        self.notifier = notifier
        self.uploads_dir = settings.uploads_dir
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self._tasks: Set[asyncio.Task] = set()

    # ------------ uploads ------------
    async def save_upload(self, file: UploadFile) -> Path:
        ext = Path(file.filename or "").suffix
        if not _EXT_RE.match(ext):
            ext = ""
        path = self.uploads_dir / f"{secrets.token_hex(16)}{ext.lower()}"

        max_bytes = self.settings.max_upload_bytes
        written = 0
        try:
            with path.open("wb") as f:
                while True:
                    chunk = await file.read(CHUNK)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > max_bytes:
                        raise ValidationError(f"File exceeds {self.settings.max_upload_mb:g}MB upload limit")
                    f.write(chunk)
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        return path

    def discard_upload(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.exception("Error deleting input file %s", path)

    def _discard_job(self, job_id: str) -> None:
        try:
            self.store.delete(job_id)
        except OSError:
            logger.exception("Error deleting job directory %s", job_id)

    # ------------ submit ------------
    async def submit(
        self,
        file: Optional[UploadFile],
        target_size: Any,
        email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Accept an upload and either encode it now or hand it to a background task.

        Returns the response envelope: terminal fields when no email was
        given, a ``processing`` envelope with estimates otherwise.
        """
        if file is None or not file.filename:
            raise ValidationError("No file uploaded")
        if not (file.content_type or "").startswith("video/"):
            raise ValidationError("Only video files are allowed")
        target_mb = parse_target_size(target_size)
        email = (email or "").strip() or None
        if email and "@" not in email:
            raise ValidationError("Invalid email address")

        started = time.monotonic()
        upload_path = await self.save_upload(file)

        try:
            info = await media.probe(upload_path, ffprobe=self.settings.ffprobe, timeout=self.settings.probe_timeout_sec)
            original_mb = info.size_bytes / MB
            if target_mb >= original_mb:
                raise ValidationError(
                    "Target size must be smaller than the original file size",
                    extra={"originalSize": original_mb},
                )
            if info.duration_sec <= 0:
                raise ValidationError("Could not determine video duration")
            video_bps = media.plan_bitrate(target_mb * MB, info.duration_sec)
        except ServiceError as e:
            if isinstance(e, EngineError):
                logger.error("Probe failed for %s: %s", upload_path.name, e)
            self.discard_upload(upload_path)
            raise

        job = PendingJob(
            job_id=new_job_id(),
            filename=output_filename(file.filename),
            upload_path=upload_path,
            original_size=info.size_bytes,
            video_bps=video_bps,
            started=started,
            email=email,
        )
        try:
            self.store.create(job.job_id)
        except OSError:
            logger.exception("Could not create job directory %s", job.job_id)
            self.discard_upload(upload_path)
            raise ServiceError("Failed to process video")
        logger.info(
            "Job %s accepted: %.2fMB -> %.2fMB over %.1fs at %d bps (%s)",
            job.job_id, original_mb, target_mb, info.duration_sec, video_bps,
            "background" if email else "sync",
        )

        if email:
            ratio = target_mb / original_mb
            task = asyncio.create_task(self._run_background(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return {
                "id": job.job_id,
                "filename": job.filename,
                "expiresAt": _iso(now_ms() + int(self.settings.ttl_seconds * 1000)),
                "originalSize": info.size_bytes,
                "estimatedNewSize": int(info.size_bytes * ratio),
                "estimatedReductionPercentage": round(100 - ratio * 100, 2),
                "emailNotification": True,
                "email": email,
                "status": JobStatus.PROCESSING,
            }

        try:
            doc = await self._encode_and_finalize(job)
        except Exception as e:
            if isinstance(e, EngineError):
                logger.error("Job %s failed: %s", job.job_id, e)
            else:
                logger.exception("Job %s failed", job.job_id)
            self.discard_upload(upload_path)
            self._discard_job(job.job_id)
            raise ServiceError("Failed to process video")

        return {
            "id": doc["id"],
            "filename": doc["filename"],
            "expiresAt": _iso(doc["createdAt"] + int(self.settings.ttl_seconds * 1000)),
            "originalSize": doc["originalSize"],
            "newSize": doc["newSize"],
            "reductionPercentage": doc["reductionPercentage"],
            "compressionTime": doc["compressionTime"],
            "status": doc["status"],
        }

    async def _encode_and_finalize(self, job: PendingJob) -> Dict[str, Any]:
        out_path = self.store.file_path(job.job_id, job.filename)
        await media.encode(job.upload_path, out_path, job.video_bps, ffmpeg=self.settings.ffmpeg)

        # encode() has renamed a flushed file into place, so this size is final
        new_size = out_path.stat().st_size
        doc: Dict[str, Any] = {
            "id": job.job_id,
            "createdAt": now_ms(),
            "originalSize": job.original_size,
            "newSize": new_size,
            "reductionPercentage": round((job.original_size - new_size) / job.original_size * 100, 2),
            "compressionTime": round(time.monotonic() - job.started, 3),
            "filename": job.filename,
            "status": JobStatus.COMPLETED,
        }
        if job.email:
            doc["email"] = job.email
        await asyncio.to_thread(self.store.write_status, job.job_id, doc)
        self.discard_upload(job.upload_path)
        logger.info(
            "Job %s completed: %d -> %d bytes (%.2f%%) in %.1fs",
            job.job_id, job.original_size, new_size, doc["reductionPercentage"], doc["compressionTime"],
        )
        return doc

    async def _run_background(self, job: PendingJob) -> None:
        try:
            doc = await self._encode_and_finalize(job)
        except EngineError as e:
            logger.error("Background job %s failed: %s", job.job_id, e)
            self.discard_upload(job.upload_path)
            self._discard_job(job.job_id)
            return
        except Exception:
            logger.exception("Background job %s failed", job.job_id)
            self.discard_upload(job.upload_path)
            self._discard_job(job.job_id)
            return
        try:
            sent = await self.notifier.notify_ready(job.email, doc)
        except Exception:
            logger.exception("Notification failed for job %s", job.job_id)
            return
        if not sent:
            logger.warning("Job %s completed but %s was not notified", job.job_id, job.email)

    async def drain(self) -> None:
        """Wait for every background job still running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    # ------------ status ------------
    def status(self, job_id: str, cache: Optional[ResponseCache] = None) -> Dict[str, Any]:
        """Status document for ``job_id``; ``status`` reads ``expired`` past the TTL.

        Nothing is deleted here, the sweep owns deletion.
        """
        key = f"status:{job_id}"
        doc = cache.get(key) if cache is not None else None
        if doc is None:
            doc = self.store.read_status(job_id)
            if cache is not None:
                cache.put(key, doc, self.settings.status_cache_sec)

        result = dict(doc)
        if is_expired(result, self.settings.ttl_seconds):
            result["status"] = JobStatus.EXPIRED
            return result
        if not self.store.file_path(job_id, str(result.get("filename", ""))).is_file():
            if cache is not None:
                cache.invalidate(key)
            raise NotFoundError("Video not found")
        return result
