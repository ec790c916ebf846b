# rsizevideo/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

PACKAGE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = PACKAGE_DIR / "templates"

# Output naming: "clip.mp4" -> "clip-rsizevideo-com.mp4"
OUTPUT_SUFFIX = "rsizevideo-com"
SUFFIX_MARKER = "rsizevideo"
OUTPUT_EXT = ".mp4"
STATUS_FILENAME = "status.json"

MB = 1024 * 1024


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    return float(raw) if raw.strip() else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    return int(raw) if raw.strip() else default


@dataclass(frozen=True)
class Settings:
    api_key: str = ""
    data_dir: Path = PACKAGE_DIR / ".." / "data"
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"

    ttl_hours: float = 24.0
    cleanup_interval_min: float = 30.0
    probe_timeout_sec: float = 30.0
    max_upload_mb: float = 4000.0
    status_cache_sec: float = 10.0

    frontend_url: str = "https://rsizevideo.com"
    processing_port: int = 5000
    download_port: int = 5001
    log_level: str = "INFO"
    enable_cors: bool = True

    # mail
    mailgun_key: str = ""
    mailgun_domain: str = ""
    sender_email: str = "noreply@rsizevideo.com"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""

    @property
    def videos_dir(self) -> Path:
        return Path(self.data_dir) / "videos"

    @property
    def uploads_dir(self) -> Path:
        return Path(self.data_dir) / "uploads"

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_hours * 3600

    @property
    def max_upload_bytes(self) -> int:
        return int(self.max_upload_mb * MB)

    @classmethod
    def from_env(cls) -> "Settings":
        # ffmpeg / ffprobe may be shipped into BIN_DIR by the deploy build
        bin_dir = os.getenv("BIN_DIR", "")
        ffmpeg = str(Path(bin_dir) / "ffmpeg") if bin_dir else "ffmpeg"
        ffprobe = str(Path(bin_dir) / "ffprobe") if bin_dir else "ffprobe"
        return cls(
            api_key=os.getenv("API_KEY", ""),
            data_dir=Path(os.getenv("DATA_DIR", str(PACKAGE_DIR / ".." / "data"))),
            ffmpeg=os.getenv("FFMPEG_PATH", ffmpeg),
            ffprobe=os.getenv("FFPROBE_PATH", ffprobe),
            ttl_hours=_env_float("JOB_TTL_HOURS", 24.0),
            cleanup_interval_min=_env_float("CLEANUP_INTERVAL_MIN", 30.0),
            probe_timeout_sec=_env_float("PROBE_TIMEOUT_SEC", 30.0),
            max_upload_mb=_env_float("MAX_UPLOAD_MB", 4000.0),
            status_cache_sec=_env_float("STATUS_CACHE_SEC", 10.0),
            frontend_url=os.getenv("FRONTEND_URL", "https://rsizevideo.com").rstrip("/"),
            processing_port=_env_int("PROCESSING_PORT", 5000),
            download_port=_env_int("DOWNLOAD_PORT", 5001),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            enable_cors=_env_flag("ENABLE_CORS", True),
            mailgun_key=os.getenv("MAILGUN_API_KEY", ""),
            mailgun_domain=os.getenv("MAILGUN_DOMAIN", ""),
            sender_email=os.getenv("SENDER_EMAIL", "noreply@rsizevideo.com"),
            smtp_host=os.getenv("EMAIL_SMTP_HOST", ""),
            smtp_port=_env_int("EMAIL_SMTP_PORT", 587),
            smtp_user=os.getenv("EMAIL_USERNAME", ""),
            smtp_pass=os.getenv("EMAIL_PASSWORD", ""),
        )
