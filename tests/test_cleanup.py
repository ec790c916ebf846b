import json
import os
import time

from rsizevideo.jobs import new_job_id
from rsizevideo.lifecycle import is_expired, remaining_seconds, sweep

TTL = 3600.0


def _age_path(path, seconds):
    old = time.time() - seconds
    os.utime(path, (old, old))


def test_sweep_removes_expired_jobs_only(settings, store, make_job):
    expired = make_job(age_sec=TTL + 10)
    fresh = make_job(age_sec=10)

    report = sweep(store, settings.uploads_dir, TTL)
    assert report.jobs_removed == [expired]
    assert not (settings.videos_dir / expired).exists()
    assert (settings.videos_dir / fresh).exists()

    # idempotent
    again = sweep(store, settings.uploads_dir, TTL)
    assert again.jobs_removed == []
    assert again.errors == 0


def test_sweep_job_without_status_uses_double_ttl(settings, store):
    abandoned = new_job_id()
    in_progress = new_job_id()
    store.create(abandoned)
    store.create(in_progress)
    _age_path(store.job_dir(abandoned), 2 * TTL + 10)
    # older than one TTL but inside the double-TTL grace window
    _age_path(store.job_dir(in_progress), TTL + 10)

    report = sweep(store, settings.uploads_dir, TTL)
    assert report.jobs_removed == [abandoned]
    assert store.job_dir(in_progress).exists()


def test_sweep_corrupt_status_treated_as_missing(settings, store):
    job_id = new_job_id()
    store.create(job_id)
    (store.job_dir(job_id) / "status.json").write_text("{not json")
    _age_path(store.job_dir(job_id), 2 * TTL + 10)

    report = sweep(store, settings.uploads_dir, TTL)
    assert report.jobs_removed == [job_id]


def test_sweep_removes_old_uploads(settings, store):
    settings.uploads_dir.mkdir(parents=True, exist_ok=True)
    old = settings.uploads_dir / "aaaa.mp4"
    new = settings.uploads_dir / "bbbb.mp4"
    old.write_bytes(b"old")
    new.write_bytes(b"new")
    _age_path(old, TTL + 10)

    report = sweep(store, settings.uploads_dir, TTL)
    assert report.uploads_removed == ["aaaa.mp4"]
    assert not old.exists()
    assert new.exists()


def test_sweep_continues_after_failed_delete(settings, store, make_job, monkeypatch):
    first = make_job(age_sec=TTL + 10)
    second = make_job(age_sec=TTL + 10)
    bad, good = sorted([first, second])
    real_delete = store.delete

    def flaky_delete(job_id):
        if job_id == bad:
            raise PermissionError("read-only")
        real_delete(job_id)

    monkeypatch.setattr(store, "delete", flaky_delete)
    report = sweep(store, settings.uploads_dir, TTL)
    assert report.errors == 1
    assert report.jobs_removed == [good]
    assert store.job_dir(bad).exists()


def test_sweep_ignores_foreign_entries(settings, store):
    (settings.videos_dir / "README").write_text("not a job")
    (settings.videos_dir / "not-a-job").mkdir()
    report = sweep(store, settings.uploads_dir, TTL)
    assert report.jobs_removed == []
    assert (settings.videos_dir / "not-a-job").exists()


def test_expiry_helpers():
    now = int(time.time() * 1000)
    doc = {"createdAt": now - int((TTL + 1) * 1000)}
    assert is_expired(doc, TTL, now=now)
    assert remaining_seconds(doc, TTL, now=now) == 0.0

    doc = {"createdAt": now - 600 * 1000}
    assert not is_expired(doc, TTL, now=now)
    assert remaining_seconds(doc, TTL, now=now) == TTL - 600

    assert not is_expired({}, TTL, now=now)
    assert not is_expired(json.loads('{"createdAt": "yesterday"}'), TTL, now=now)
