# rsizevideo/store.py
"""Filesystem job store: one directory per job id holding the encoded file
and a JSON status document."""
from __future__ import annotations

import json
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List

from .config import STATUS_FILENAME
from .errors import NotFoundError

_JOB_ID_RE = re.compile(r"^[0-9a-f]{32}$")


class JobStore:
    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def valid_id(job_id: str) -> bool:
        return bool(_JOB_ID_RE.match(job_id or ""))

    def job_dir(self, job_id: str) -> Path:
        if not self.valid_id(job_id):
            raise NotFoundError("Video not found")
        return self.root / job_id

    def status_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / STATUS_FILENAME

    def file_path(self, job_id: str, filename: str) -> Path:
        # filename is always one we generated; reject anything with a path part
        if not filename or Path(filename).name != filename or filename == STATUS_FILENAME:
            raise NotFoundError("Video file not found")
        return self.job_dir(job_id) / filename

    def create(self, job_id: str) -> Path:
        d = self.job_dir(job_id)
        # ids are unique per upload; an existing dir means a reused id
        d.mkdir(parents=False, exist_ok=False)
        return d

    def write_status(self, job_id: str, document: Dict[str, Any]) -> None:
        """Atomically replace the status document (write temp, fsync, rename)."""
        d = self.job_dir(job_id)
        fd, tmp = tempfile.mkstemp(prefix=".status-", suffix=".tmp", dir=d)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, d / STATUS_FILENAME)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def read_status(self, job_id: str) -> Dict[str, Any]:
        try:
            raw = self.status_path(job_id).read_text(encoding="utf-8")
            doc = json.loads(raw)
        except (OSError, ValueError):
            raise NotFoundError("Video not found")
        if not isinstance(doc, dict):
            raise NotFoundError("Video not found")
        return doc

    def list_ids(self) -> List[str]:
        try:
            entries = list(self.root.iterdir())
        except FileNotFoundError:
            return []
        return sorted(p.name for p in entries if p.is_dir() and self.valid_id(p.name))

    def delete(self, job_id: str) -> None:
        """Remove the job directory. Deleting a missing job is a no-op."""
        d = self.job_dir(job_id)
        try:
            shutil.rmtree(d)
        except FileNotFoundError:
            pass
