import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from rsizevideo import media
from rsizevideo.config import Settings
from rsizevideo.errors import EncodeError
from rsizevideo.jobs import new_job_id
from rsizevideo.store import JobStore

API_KEY = "test-key"
AUTH = {"Authorization": f"Bearer {API_KEY}"}


class FakeNotifier:
    def __init__(self):
        self.sent = []

    async def notify_ready(self, to_email, job):
        self.sent.append((to_email, job))
        return True


@pytest.fixture
def settings(tmp_path):
    return Settings(api_key=API_KEY, data_dir=tmp_path / "data", ttl_hours=24)


@pytest.fixture
def store(settings):
    return JobStore(settings.videos_dir)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def fake_engine(monkeypatch):
    """Replace ffprobe/ffmpeg with in-process fakes."""
    state = SimpleNamespace(
        duration=10.0,
        size=None,
        output=b"compressed-bytes",
        fail=False,
        gate=None,
        probes=[],
        encodes=[],
    )

    async def fake_probe(path, ffprobe="ffprobe", timeout=30.0):
        state.probes.append(Path(path))
        size = state.size if state.size is not None else Path(path).stat().st_size
        return media.ProbeResult(duration_sec=state.duration, size_bytes=size)

    async def fake_encode(input_path, output_path, video_bps, ffmpeg="ffmpeg"):
        state.encodes.append((Path(input_path), Path(output_path), video_bps))
        if state.gate is not None:
            await state.gate.wait()
        if state.fail:
            raise EncodeError("ffmpeg exited with 1", "Invalid data found when processing input")
        Path(output_path).write_bytes(state.output)

    monkeypatch.setattr(media, "probe", fake_probe)
    monkeypatch.setattr(media, "encode", fake_encode)
    return state


@pytest.fixture
def make_job(store):
    """Write a finished job straight into the store."""

    def _make(content=b"0123456789abcdef", age_sec=0.0, filename="clip-rsizevideo-com.mp4"):
        job_id = new_job_id()
        store.create(job_id)
        (store.job_dir(job_id) / filename).write_bytes(content)
        store.write_status(
            job_id,
            {
                "id": job_id,
                "createdAt": int((time.time() - age_sec) * 1000),
                "originalSize": len(content) * 10,
                "newSize": len(content),
                "reductionPercentage": 90.0,
                "compressionTime": 1.5,
                "filename": filename,
                "status": "completed",
            },
        )
        return job_id

    return _make
