"""
BHASHINI (Dhruva) language-service adapter.

Every stage call is two HTTP requests: a "resolve" call against the ULCA
pipeline config endpoint that maps (task, languages) to a concrete service id
and inference credential, followed by the inference call itself. Resolved
services are cached for ``resolve_cache_ttl_sec``. Resolve runs inside the
stage call, so a stage-level retry repeats it; the optional ``retry`` policy
retries the resolve step on its own and is off by default.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlparse

import aiohttp

from ..config import ProviderConfig
from ..errors import NetworkError, Stage, StageError
from ..languages import LanguageCode, try_parse_language
from ..logging_config import get_logger
from ..metrics import STAGE_REQUESTS_TOTAL
from .base import (
    LanguageServiceClient,
    ProbeResult,
    SynthesisResult,
    TranscriptResult,
    TranslationResult,
    clamp_confidence,
)
from .retry import RetryPolicy

logger = get_logger(__name__)


def _url_host(url: str) -> str:
    try:
        return (urlparse(str(url)).hostname or "").lower()
    except Exception:
        return ""


def _ulca_headers(user_id: str, api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "userID": user_id,
        "ulcaApiKey": api_key,
    }


@dataclass(frozen=True)
class ComputeService:
    """Concrete inference target returned by the resolve call."""

    service_id: str
    endpoint: str
    auth_header: str
    auth_value: str


class BhashiniClient(LanguageServiceClient):
    """ASR/NMT/TTS adapter for the BHASHINI ULCA inference pipeline."""

    def __init__(
        self,
        config: ProviderConfig,
        retry: Optional[RetryPolicy] = None,
        *,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config
        self._retry = retry or RetryPolicy(max_retries=0, retry_delay_sec=0)
        self._session_factory = session_factory
        self._session: Optional[aiohttp.ClientSession] = None
        self._clock = clock
        self._services: Dict[Tuple[str, str, Optional[str]], Tuple[ComputeService, float]] = {}

    @property
    def retry(self) -> RetryPolicy:
        return self._retry

    @property
    def config_url(self) -> str:
        return f"{str(self._config.base_url).rstrip('/')}/inference/pipeline"

    async def start(self) -> None:
        logger.debug(
            "BHASHINI client initialized",
            host=_url_host(self._config.base_url),
            pipeline_id=self._config.pipeline_id,
            credentials_configured=bool(self._config.api_key and self._config.user_id),
        )

    async def stop(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session and not self._session.closed:
            return self._session
        factory = self._session_factory or aiohttp.ClientSession
        self._session = factory()
        return self._session

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=float(self._config.timeout_sec))

    async def _post_json(self, stage: Stage, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        session = await self._ensure_session()
        try:
            async with session.post(url, json=payload, headers=headers, timeout=self._timeout()) as resp:
                body = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            STAGE_REQUESTS_TOTAL.labels(stage=stage.value, result="network_error").inc()
            raise NetworkError(
                stage,
                f"{stage.value.upper()} request to {_url_host(url)} failed: {exc.__class__.__name__}",
                cause=exc,
            ) from exc

        if status >= 400:
            STAGE_REQUESTS_TOTAL.labels(stage=stage.value, result="http_error").inc()
            logger.error(
                "BHASHINI request failed",
                stage=stage.value,
                status=status,
                host=_url_host(url),
                body_preview=body[:128],
            )
            raise StageError(stage, f"{stage.value.upper()} API error: HTTP {status}", status=status)

        try:
            data = json.loads(body)
        except ValueError as exc:
            STAGE_REQUESTS_TOTAL.labels(stage=stage.value, result="malformed").inc()
            raise StageError(stage, f"{stage.value.upper()} API returned invalid JSON", cause=exc) from exc
        if not isinstance(data, dict):
            STAGE_REQUESTS_TOTAL.labels(stage=stage.value, result="malformed").inc()
            raise StageError(stage, f"{stage.value.upper()} API returned a non-object body")
        STAGE_REQUESTS_TOTAL.labels(stage=stage.value, result="ok").inc()
        return data

    # -- resolve -----------------------------------------------------------

    async def resolve(
        self, task: Stage, source_lang: LanguageCode, target_lang: Optional[LanguageCode] = None
    ) -> ComputeService:
        """Map a task + language pair to an inference service (cached, retried)."""
        key = (task.value, source_lang.value, target_lang.value if target_lang else None)
        now = self._clock()
        cached = self._services.get(key)
        if cached and (now - cached[1]) <= self._config.resolve_cache_ttl_sec:
            return cached[0]

        service = await self._retry.run(
            lambda: self._resolve_uncached(task, source_lang, target_lang),
            stage=Stage.RESOLVE,
            label=task.value,
        )
        if self._config.resolve_cache_ttl_sec > 0:
            self._services[key] = (service, now)
        return service

    async def _resolve_uncached(
        self, task: Stage, source_lang: LanguageCode, target_lang: Optional[LanguageCode]
    ) -> ComputeService:
        if not (self._config.api_key and self._config.user_id):
            raise StageError(Stage.RESOLVE, "BHASHINI credentials not configured (BHASHINI_API_KEY / BHASHINI_USER_ID)")

        language: Dict[str, str] = {"sourceLanguage": source_lang.value}
        if target_lang is not None:
            language["targetLanguage"] = target_lang.value
        payload = {
            "pipelineTasks": [{"taskType": task.value, "config": {"language": language}}],
            "pipelineRequestConfig": {"pipelineId": self._config.pipeline_id},
        }
        data = await self._post_json(
            Stage.RESOLVE, self.config_url, payload, _ulca_headers(self._config.user_id, self._config.api_key)
        )
        service = self._parse_compute_service(data)
        logger.debug(
            "Resolved BHASHINI compute service",
            task=task.value,
            source_lang=source_lang.value,
            target_lang=target_lang.value if target_lang else None,
            service_id=service.service_id,
            host=_url_host(service.endpoint),
        )
        return service

    @staticmethod
    def _parse_compute_service(data: Dict[str, Any]) -> ComputeService:
        try:
            task_config = data["pipelineResponseConfig"][0]
            service_id = str(task_config["config"][0]["serviceId"])
        except (KeyError, IndexError, TypeError) as exc:
            raise StageError(Stage.RESOLVE, "Resolve response missing pipelineResponseConfig/serviceId", cause=exc) from exc

        # Current API: top-level endpoint; older responses nest it in the task config.
        endpoint_block = data.get("pipelineInferenceAPIEndPoint") or {}
        api_key = endpoint_block.get("inferenceApiKey") or task_config.get("inferenceApiKey") or {}
        endpoint = endpoint_block.get("callbackUrl") or api_key.get("inferenceEndPoint")
        auth_value = api_key.get("value")
        if not endpoint or not auth_value:
            raise StageError(Stage.RESOLVE, "Resolve response missing inference endpoint or key")
        return ComputeService(
            service_id=service_id,
            endpoint=str(endpoint),
            auth_header=str(api_key.get("name") or "Authorization"),
            auth_value=str(auth_value),
        )

    async def _infer(self, stage: Stage, service: ComputeService, task_config: Dict[str, Any], input_data: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "pipelineTasks": [{"taskType": stage.value, "config": {**task_config, "serviceId": service.service_id}}],
            "inputData": input_data,
        }
        headers = {"Content-Type": "application/json", service.auth_header: service.auth_value}
        data = await self._post_json(stage, service.endpoint, payload, headers)
        try:
            return data["pipelineResponse"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise StageError(stage, f"{stage.value.upper()} response missing pipelineResponse", cause=exc) from exc

    # -- stages ------------------------------------------------------------

    async def transcribe(self, audio: bytes, source_lang: LanguageCode) -> TranscriptResult:
        service = await self.resolve(Stage.ASR, source_lang)
        result = await self._infer(
            Stage.ASR,
            service,
            {
                "language": {"sourceLanguage": source_lang.value},
                "audioFormat": self._config.audio_format,
                "samplingRate": self._config.asr_sampling_rate,
            },
            {"audio": [{"audioContent": base64.b64encode(audio).decode("ascii")}]},
        )
        try:
            output = result["output"][0]
            transcript = output["source"]
        except (KeyError, IndexError, TypeError) as exc:
            raise StageError(Stage.ASR, "ASR response missing output transcript", cause=exc) from exc
        if not isinstance(transcript, str) or not transcript.strip():
            raise StageError(Stage.ASR, "ASR returned an empty transcript")

        detected = try_parse_language(output.get("language") or output.get("detectedLanguage"))
        confidence = clamp_confidence(output.get("confidence"), self._config.default_confidence)
        logger.info(
            "ASR completed",
            source_lang=source_lang.value,
            detected_lang=detected.value if detected else None,
            confidence=confidence,
            preview=transcript[:80],
        )
        return TranscriptResult(transcript=transcript.strip(), confidence=confidence, detected_language=detected)

    async def translate(self, text: str, source_lang: LanguageCode, target_lang: LanguageCode) -> TranslationResult:
        service = await self.resolve(Stage.TRANSLATION, source_lang, target_lang)
        result = await self._infer(
            Stage.TRANSLATION,
            service,
            {"language": {"sourceLanguage": source_lang.value, "targetLanguage": target_lang.value}},
            {"input": [{"source": text}]},
        )
        try:
            output = result["output"][0]
            translation = output["target"]
        except (KeyError, IndexError, TypeError) as exc:
            raise StageError(Stage.TRANSLATION, "Translation response missing output target", cause=exc) from exc
        if not isinstance(translation, str) or not translation.strip():
            raise StageError(Stage.TRANSLATION, "Translation returned empty text")

        confidence = clamp_confidence(output.get("confidence"), self._config.default_confidence)
        logger.info(
            "Translation completed",
            source_lang=source_lang.value,
            target_lang=target_lang.value,
            confidence=confidence,
            preview=translation[:80],
        )
        return TranslationResult(translation=translation, confidence=confidence)

    async def synthesize(self, text: str, lang: LanguageCode) -> SynthesisResult:
        service = await self.resolve(Stage.TTS, lang)
        result = await self._infer(
            Stage.TTS,
            service,
            {
                "language": {"sourceLanguage": lang.value},
                "gender": self._config.tts_gender,
                "audioFormat": self._config.audio_format,
                "samplingRate": self._config.tts_sampling_rate,
            },
            {"input": [{"source": text}]},
        )
        try:
            clip = result["audio"][0]
            encoded = clip["audioContent"]
            audio = base64.b64decode(encoded, validate=True)
        except (KeyError, IndexError, TypeError, binascii.Error) as exc:
            raise StageError(Stage.TTS, "TTS response missing or invalid audioContent", cause=exc) from exc
        if not audio:
            raise StageError(Stage.TTS, "TTS returned empty audio")

        try:
            duration = max(0.0, float(clip.get("duration") or 0))
        except (TypeError, ValueError):
            duration = 0.0
        logger.info("TTS completed", lang=lang.value, audio_bytes=len(audio), duration=duration)
        return SynthesisResult(audio=audio, duration=duration)

    async def probe(self) -> ProbeResult:
        started = time.monotonic()
        try:
            session = await self._ensure_session()
            async with session.head(
                self.config_url,
                headers=_ulca_headers(self._config.user_id, self._config.api_key),
                timeout=self._timeout(),
            ) as resp:
                is_up = resp.status < 400
        except Exception as exc:  # noqa: BLE001 - probe must never raise
            logger.debug("BHASHINI probe failed", error=str(exc), host=_url_host(self._config.base_url))
            is_up = False
        latency_ms = int((time.monotonic() - started) * 1000)
        return ProbeResult(is_up=is_up, latency_ms=latency_ms)

    async def validate_connectivity(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not (self._config.api_key and self._config.user_id):
            return {"healthy": False, "error": "BHASHINI_API_KEY / BHASHINI_USER_ID not set", "details": {}}
        probe = await self.probe()
        return {
            "healthy": probe.is_up,
            "error": None if probe.is_up else "Provider unreachable (see logs)",
            "details": {"host": _url_host(self._config.base_url), "latency_ms": probe.latency_ms},
        }
