# rsizevideo/media.py
"""ffprobe / ffmpeg adapters and the bitrate planner.

Both engines run as asyncio child processes so encodes never block the event
loop. A child is always reaped before the awaiting coroutine returns, including
when it is cancelled or times out.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import EncodeError, ProbeError

logger = logging.getLogger(__name__)

# Bounded analysis window for ffprobe (bytes / microseconds)
PROBE_SIZE = 5_000_000
ANALYZE_DURATION = 5_000_000

AUDIO_CODEC = "aac"
AUDIO_BITRATE = "128k"
VIDEO_CODEC = "libx264"
VIDEO_PRESET = "medium"
MAXRATE_FACTOR = 1.2
BUFSIZE_FACTOR = 2.0

_STDERR_TAIL = 2000


@dataclass(frozen=True)
class ProbeResult:
    duration_sec: float
    size_bytes: int


def _preexec_ulimits():
    """Gentle resource limits for engine child processes."""
    try:
        import resource

        # CPU 6 hours, enough for a 4GB source on slow hardware
        resource.setrlimit(resource.RLIMIT_CPU, (6 * 3600, 6 * 3600))
        resource.setrlimit(resource.RLIMIT_NOFILE, (512, 512))
    except (ImportError, ValueError, OSError):
        # Not available on this platform
        pass


async def _run_engine(cmd: List[str], timeout: Optional[float] = None) -> Tuple[int, str, str]:
    """Run ``cmd`` to completion and return (returncode, stdout, stderr).

    Raises ``asyncio.TimeoutError`` once ``timeout`` elapses. The child is
    killed on any exit path that leaves it running.
    """
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        preexec_fn=_preexec_ulimits if os.name == "posix" else None,
    )
    try:
        if timeout is None:
            out, err = await proc.communicate()
        else:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
    return (
        proc.returncode,
        (out or b"").decode("utf-8", "ignore"),
        (err or b"").decode("utf-8", "ignore"),
    )


def plan_bitrate(target_size_bytes: float, duration_sec: float) -> int:
    """Video bits/sec that spreads ``target_size_bytes`` over ``duration_sec``.

    Audio is budgeted separately by the encoder on top of this value.
    """
    if duration_sec <= 0:
        raise ValueError("duration must be positive")
    if target_size_bytes <= 0:
        raise ValueError("target size must be positive")
    return math.floor(target_size_bytes * 8 / duration_sec)


async def probe(path: Path, ffprobe: str = "ffprobe", timeout: float = 30.0) -> ProbeResult:
    path = Path(path)
    if not path.is_file():
        raise ProbeError("Source file not found", str(path))

    cmd = [
        ffprobe,
        "-v", "error",
        "-probesize", str(PROBE_SIZE),
        "-analyzeduration", str(ANALYZE_DURATION),
        "-show_entries", "format=duration,size",
        "-of", "json",
        str(path),
    ]
    try:
        rc, out, err = await _run_engine(cmd, timeout=timeout)
    except asyncio.TimeoutError:
        raise ProbeError("Probe timed out", f"no result after {timeout:g}s")
    except OSError as e:
        raise ProbeError("Could not start ffprobe", str(e))
    if rc != 0:
        raise ProbeError("Probe failed", err.strip()[-_STDERR_TAIL:])

    try:
        fmt = json.loads(out or "{}").get("format") or {}
        duration = float(fmt["duration"])
    except (ValueError, KeyError, TypeError, AttributeError):
        raise ProbeError("Not a decodable media container", out.strip()[-_STDERR_TAIL:])

    try:
        size = int(fmt.get("size") or 0)
    except (TypeError, ValueError):
        size = 0
    if size <= 0:
        size = path.stat().st_size
    return ProbeResult(duration_sec=duration, size_bytes=size)


def build_encode_args(input_path: Path, output_path: Path, video_bps: int, ffmpeg: str = "ffmpeg") -> List[str]:
    return [
        ffmpeg,
        "-y",
        "-nostdin",
        "-i", str(input_path),
        "-c:v", VIDEO_CODEC,
        "-preset", VIDEO_PRESET,
        "-b:v", str(video_bps),
        "-maxrate", str(int(video_bps * MAXRATE_FACTOR)),
        "-bufsize", str(int(video_bps * BUFSIZE_FACTOR)),
        "-c:a", AUDIO_CODEC,
        "-b:a", AUDIO_BITRATE,
        "-movflags", "+faststart",
        "-max_muxing_queue_size", "9999",
        "-loglevel", "error",
        "-f", "mp4",
        str(output_path),
    ]


def _partial_path(output_path: Path) -> Path:
    return output_path.with_name(f".{output_path.name}.part")


async def encode(input_path: Path, output_path: Path, video_bps: int, ffmpeg: str = "ffmpeg") -> None:
    """Encode ``input_path`` into ``output_path`` at ``video_bps``.

    ffmpeg writes to a hidden partial file which is renamed onto
    ``output_path`` only after a clean exit.
    """
    output_path = Path(output_path)
    part = _partial_path(output_path)
    cmd = build_encode_args(Path(input_path), part, video_bps, ffmpeg=ffmpeg)
    logger.debug("encode: %s", " ".join(cmd))

    try:
        try:
            rc, _, err = await _run_engine(cmd)
        except OSError as e:
            raise EncodeError("Could not start ffmpeg", str(e))
        if rc != 0:
            raise EncodeError(f"ffmpeg exited with {rc}", err.strip()[-_STDERR_TAIL:])
        if not part.exists() or part.stat().st_size <= 0:
            raise EncodeError("Output missing", str(part))

        with part.open("rb") as f:
            os.fsync(f.fileno())
        os.replace(part, output_path)
    finally:
        part.unlink(missing_ok=True)
