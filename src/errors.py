"""
Error taxonomy for the translation orchestration core.

Stage failures are tagged where they happen (``StageError.stage``) so callers
never have to guess the failing stage from an error message.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class Stage(str, Enum):
    """Pipeline steps that can fail against the language-service provider."""

    RESOLVE = "resolve"
    ASR = "asr"
    TRANSLATION = "translation"
    TTS = "tts"


class SamvaadError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(SamvaadError, ValueError):
    """A submission is missing required fields or carries unknown values."""

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StageError(SamvaadError):
    """A provider call for one stage failed (non-2xx, malformed body, etc.)."""

    def __init__(self, stage: Stage, message: str, *, cause: Optional[BaseException] = None, status: Optional[int] = None):
        super().__init__(message)
        self.stage = Stage(stage)
        self.cause = cause
        self.status = status

    def __str__(self) -> str:
        return f"{self.stage.value}: {self.args[0]}"


class NetworkError(StageError):
    """Transport-level failure (connection refused, DNS, timeout)."""


class SubmissionRejected(SamvaadError):
    """Another request already holds the single-flight gate."""
