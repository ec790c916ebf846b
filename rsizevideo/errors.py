# rsizevideo/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base for errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str, *, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class ValidationError(ServiceError):
    status_code = 400


class AuthError(ServiceError):
    status_code = 401


class NotFoundError(ServiceError):
    status_code = 404


class EngineError(ServiceError):
    """ffprobe / ffmpeg failure. ``detail`` keeps the engine's diagnostic text."""

    status_code = 500

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class ProbeError(EngineError):
    pass


class EncodeError(EngineError):
    pass
