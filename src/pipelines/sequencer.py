"""
ASR → NMT → TTS sequencing for a single translation request.

The sequencer is a small state machine (IDLE → ASR → NMT → TTS → DONE/FAILED).
Each stage call goes through the retry policy on its own; the first stage that
still fails stops the run and is recorded with its stage tag, while every field
produced by earlier stages is kept on the result.
"""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from ..core.models import StageErrorEntry, TranslationRequest
from ..errors import Stage, StageError
from ..languages import LanguageCode
from ..logging_config import get_logger
from ..metrics import PIPELINE_DURATION_SECONDS, PIPELINE_OUTCOMES_TOTAL, STAGE_LATENCY_SECONDS
from .base import LanguageServiceClient
from .retry import RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")

PROVIDER_NAME = "BHASHINI"


class PipelineState(str, Enum):
    IDLE = "idle"
    ASR = "asr"
    NMT = "nmt"
    TTS = "tts"
    DONE = "done"
    FAILED = "failed"


_STATE_STAGE = {
    PipelineState.ASR: Stage.ASR,
    PipelineState.NMT: Stage.TRANSLATION,
    PipelineState.TTS: Stage.TTS,
}


class PipelineOutcome(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class PipelineResult:
    source_language: LanguageCode
    target_language: LanguageCode
    transcript: Optional[str] = None
    detected_language: Optional[LanguageCode] = None
    translation: Optional[str] = None
    audio_out: Optional[bytes] = None
    audio_duration: Optional[float] = None
    confidences: Dict[str, float] = field(default_factory=dict)
    errors: List[StageErrorEntry] = field(default_factory=list)
    processing_time_ms: int = 0
    state: PipelineState = PipelineState.IDLE

    @property
    def succeeded(self) -> bool:
        return not self.errors

    @property
    def has_output(self) -> bool:
        return bool(self.transcript or self.translation)

    @property
    def outcome(self) -> PipelineOutcome:
        if self.succeeded:
            return PipelineOutcome.COMPLETED
        if self.has_output:
            return PipelineOutcome.PARTIAL
        return PipelineOutcome.FAILED

    @property
    def error_message(self) -> Optional[str]:
        return self.errors[-1].message if self.errors else None

    def to_response_data(self) -> Dict[str, Any]:
        """Shape used by the ``/translate`` HTTP response."""
        data: Dict[str, Any] = {
            "provider": PROVIDER_NAME,
            "translation": self.translation,
            "confidences": dict(self.confidences),
            "errors": [e.to_dict() for e in self.errors],
            "processingTime": self.processing_time_ms,
        }
        if self.transcript is not None:
            data["transcript"] = self.transcript
        if self.detected_language is not None:
            data["detectedLanguage"] = self.detected_language.value
        if self.audio_out is not None:
            data["audioBase64Out"] = base64.b64encode(self.audio_out).decode("ascii")
            data["duration"] = self.audio_duration
        return data


class PipelineSequencer:
    """Run one ``TranslationRequest`` through the provider stages."""

    def __init__(
        self,
        client: LanguageServiceClient,
        retry: Optional[RetryPolicy] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.retry = retry or RetryPolicy()
        self._clock = clock

    async def _run_stage(self, stage: Stage, call: Callable[[], Awaitable[T]]) -> T:
        started = self._clock()
        try:
            return await self.retry.run(call, stage=stage)
        finally:
            STAGE_LATENCY_SECONDS.labels(stage=stage.value).observe(max(0.0, self._clock() - started))

    async def run(self, request: TranslationRequest, *, message_id: Optional[str] = None) -> PipelineResult:
        started = self._clock()
        log = logger.bind(message_id=message_id, **request.summary())
        result = PipelineResult(source_language=request.source_lang, target_language=request.target_lang)
        working_text = request.text
        target = request.target_lang

        try:
            if request.has_audio:
                result.state = PipelineState.ASR
                declared = result.source_language
                asr = await self._run_stage(
                    Stage.ASR, lambda: self.client.transcribe(request.audio_payload, declared)
                )
                result.transcript = asr.transcript
                result.confidences["asr"] = asr.confidence
                working_text = asr.transcript
                if asr.detected_language and asr.detected_language != declared:
                    log.info(
                        "Detected language overrides declared source",
                        declared=declared.value,
                        detected=asr.detected_language.value,
                    )
                    result.detected_language = asr.detected_language
                    result.source_language = asr.detected_language

            if working_text:
                result.state = PipelineState.NMT
                source = result.source_language
                if source == target:
                    result.translation = working_text
                    result.confidences["translation"] = 1.0
                else:
                    nmt = await self._run_stage(
                        Stage.TRANSLATION, lambda: self.client.translate(working_text, source, target)
                    )
                    result.translation = nmt.translation
                    result.confidences["translation"] = nmt.confidence

            if result.translation:
                result.state = PipelineState.TTS
                spoken = result.translation
                tts = await self._run_stage(Stage.TTS, lambda: self.client.synthesize(spoken, target))
                result.audio_out = tts.audio
                result.audio_duration = tts.duration

            result.state = PipelineState.DONE
        except StageError as exc:
            failed_stage = _STATE_STAGE.get(result.state, exc.stage)
            result.errors.append(
                StageErrorEntry(stage=failed_stage.value, message=str(exc), error_type=type(exc).__name__)
            )
            log.warning(
                "Pipeline stage failed",
                stage=failed_stage.value,
                cause_stage=exc.stage.value,
                error=str(exc),
            )
            result.state = PipelineState.FAILED
        finally:
            elapsed = max(0.0, self._clock() - started)
            result.processing_time_ms = int(elapsed * 1000)
            PIPELINE_DURATION_SECONDS.observe(elapsed)

        PIPELINE_OUTCOMES_TOTAL.labels(outcome=result.outcome.value).inc()
        log.info(
            "Pipeline finished",
            outcome=result.outcome.value,
            state=result.state.value,
            elapsed_ms=result.processing_time_ms,
            confidences=result.confidences,
        )
        return result
