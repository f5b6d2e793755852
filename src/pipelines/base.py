"""
Foundational pipeline abstractions for the ASR, NMT and TTS stages.

Adapters for a language-service provider implement these async contracts. The
``PipelineSequencer`` (see sequencer.py) drives them without being tied to any
single provider, so tests can plug in fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..languages import LanguageCode


@dataclass(frozen=True)
class TranscriptResult:
    transcript: str
    confidence: float
    detected_language: Optional[LanguageCode] = None


@dataclass(frozen=True)
class TranslationResult:
    translation: str
    confidence: float


@dataclass(frozen=True)
class SynthesisResult:
    audio: bytes
    duration: float = 0.0


@dataclass(frozen=True)
class ProbeResult:
    is_up: bool
    latency_ms: int


def clamp_confidence(value: Any, default: float) -> float:
    """Coerce a provider confidence into [0, 1]; missing/garbage values use *default*."""
    if value is None or isinstance(value, bool):
        return default
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if score != score:  # NaN
        return default
    return min(1.0, max(0.0, score))


class Component(ABC):
    """Base class for all pipeline components."""

    async def start(self) -> None:
        """Warm up component resources (optional)."""

    async def stop(self) -> None:
        """Release resources (optional)."""

    async def validate_connectivity(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Validate component can reach its service.

        Returns dict with:
            - healthy: bool - Whether component is ready
            - error: str - Error message if unhealthy
            - details: Dict[str, Any] - Additional diagnostic info
        """
        return {"healthy": True, "error": None, "details": {}}


class LanguageServiceClient(Component):
    """One operation per pipeline stage plus a liveness probe.

    Stage operations raise ``StageError`` (``NetworkError`` for transport
    failures). ``probe`` never raises.
    """

    @abstractmethod
    async def transcribe(self, audio: bytes, source_lang: LanguageCode) -> TranscriptResult:
        """Return a transcript for the supplied encoded audio."""

    @abstractmethod
    async def translate(self, text: str, source_lang: LanguageCode, target_lang: LanguageCode) -> TranslationResult:
        """Translate *text* between two supported languages."""

    @abstractmethod
    async def synthesize(self, text: str, lang: LanguageCode) -> SynthesisResult:
        """Return encoded speech for *text* in *lang*."""

    @abstractmethod
    async def probe(self) -> ProbeResult:
        """Report whether the provider is reachable and how long it took."""
