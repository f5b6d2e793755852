"""
ConversationOrchestrator - routes citizen/officer submissions.

Responsibilities:
- Validate a submission and derive the target language from the other party
- Record the message (``processing`` when online, ``offline`` otherwise)
- Run online submissions through the PipelineSequencer under the single-flight gate
- Queue offline submissions and replay them when connectivity returns
- Fold pipeline results back into the ConversationStore, always to a terminal status
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import structlog

from ..config import AppConfig
from ..errors import SubmissionRejected
from ..languages import LanguageCode, parse_language
from ..pipelines.base import LanguageServiceClient
from ..pipelines.retry import RetryPolicy
from ..pipelines.sequencer import PipelineResult, PipelineSequencer, PipelineState
from .connectivity import ConnectivityMonitor
from .conversation_store import ConversationStore
from .models import (
    AUDIO_PLACEHOLDER_TEXT,
    Confidence,
    ConversationMessage,
    MessageStatus,
    OfflineQueueEntry,
    Sender,
    StageErrorEntry,
    TranslationRequest,
    new_message_id,
)
from .offline_queue import DrainReport, OfflineQueue
from .single_flight import SingleFlight

logger = structlog.get_logger(__name__)

__all__ = ["ConversationOrchestrator", "SubmissionRejected"]


def _internal_error(exc: Exception) -> StageErrorEntry:
    return StageErrorEntry(stage="internal", message=str(exc) or type(exc).__name__, error_type=type(exc).__name__)


class ConversationOrchestrator:
    def __init__(
        self,
        sequencer: PipelineSequencer,
        *,
        store: Optional[ConversationStore] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        queue: Optional[OfflineQueue] = None,
        gate: Optional[SingleFlight] = None,
        citizen_language: LanguageCode = LanguageCode.HINDI,
        officer_language: LanguageCode = LanguageCode.ENGLISH,
        adopt_detected_language: bool = False,
    ):
        self.sequencer = sequencer
        self.store = store or ConversationStore()
        self.monitor = monitor or ConnectivityMonitor()
        self.queue = queue or OfflineQueue(self.monitor)
        self.queue.bind_replay(self._replay_entry)
        self.gate = gate or SingleFlight()
        self.adopt_detected_language = adopt_detected_language
        self._languages: Dict[Sender, LanguageCode] = {
            Sender.CITIZEN: parse_language(citizen_language, field="citizen_language"),
            Sender.OFFICER: parse_language(officer_language, field="officer_language"),
        }
        self._drain_task: Optional[asyncio.Task] = None
        self.monitor.on_online(self._on_online)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        client: LanguageServiceClient,
        *,
        retry: Optional[RetryPolicy] = None,
    ) -> "ConversationOrchestrator":
        retry = retry or RetryPolicy.from_config(config.retry)
        monitor = ConnectivityMonitor(
            config.connectivity.initial_online,
            client=client,
            probe_interval_sec=config.connectivity.probe_interval_sec,
        )
        return cls(
            PipelineSequencer(client, retry),
            monitor=monitor,
            citizen_language=config.conversation.citizen_language,
            officer_language=config.conversation.officer_language,
            adopt_detected_language=config.conversation.adopt_detected_language,
        )

    # -- party languages ---------------------------------------------------

    @property
    def languages(self) -> Dict[Sender, LanguageCode]:
        return dict(self._languages)

    def set_language(self, sender: Sender, language: Any) -> LanguageCode:
        code = parse_language(language, field=f"{Sender(sender).value}_language")
        self._languages[Sender(sender)] = code
        return code

    def target_language_for(self, sender: Sender) -> LanguageCode:
        """Replies go out in the other party's currently selected language."""
        return self._languages[Sender(sender).other]

    # -- submissions -------------------------------------------------------

    async def submit(
        self,
        sender: Sender,
        *,
        language: Any,
        text: Optional[str] = None,
        audio_payload: Optional[bytes] = None,
    ) -> ConversationMessage:
        """Accept a submission from one party.

        Online submissions run to a terminal status before returning and are
        rejected with ``SubmissionRejected`` while another request holds the
        gate. Offline submissions are queued and return the ``offline``
        placeholder message.
        """
        sender = Sender(sender)
        source = parse_language(language, field="language")
        request = TranslationRequest.create(
            source_lang=source,
            target_lang=self.target_language_for(sender),
            text=text,
            audio_payload=audio_payload,
        )
        if not self.monitor.is_online:
            self._languages[sender] = source
            message = await self._record(sender, request, MessageStatus.OFFLINE)
            self.queue.enqueue(request, message_id=message.id, sender=sender)
            return message

        async with self.gate.hold(f"{sender.value}-submission", wait=False):
            if len(self.queue):
                # Older offline entries go first; the scheduled drain then finds nothing to do.
                await self.queue.drain_if_online()
            self._languages[sender] = source
            message = await self._record(sender, request, MessageStatus.PROCESSING)
            return await self._process(message.id, sender, request)

    async def translate_once(self, request: TranslationRequest) -> PipelineResult:
        """Run a request that is not part of the conversation (``/translate``).

        Waits for the gate rather than rejecting, so HTTP callers queue up.
        """
        async with self.gate.hold("translate-api"):
            try:
                return await self.sequencer.run(request)
            except Exception as exc:
                logger.error("Pipeline raised unexpectedly", exc_info=True, **request.summary())
                return PipelineResult(
                    source_language=request.source_lang,
                    target_language=request.target_lang,
                    errors=[_internal_error(exc)],
                    state=PipelineState.FAILED,
                )

    async def _record(self, sender: Sender, request: TranslationRequest, status: MessageStatus) -> ConversationMessage:
        message = ConversationMessage(
            id=new_message_id(),
            sender=sender,
            original_text=request.text or AUDIO_PLACEHOLDER_TEXT,
            original_language=request.source_lang,
            status=status,
        )
        return await self.store.append(message)

    async def _process(self, message_id: str, sender: Sender, request: TranslationRequest) -> Optional[ConversationMessage]:
        try:
            result = await self.sequencer.run(request, message_id=message_id)
        except Exception as exc:
            logger.error("Pipeline raised unexpectedly", message_id=message_id, exc_info=True)
            return await self.store.update_by_id(
                message_id,
                {
                    "status": MessageStatus.FAILED,
                    "errors": [_internal_error(exc)],
                },
            )

        if self.adopt_detected_language and result.detected_language:
            previous = self._languages[sender]
            self._languages[sender] = result.detected_language
            logger.info(
                "Adopted detected language for party",
                sender=sender.value,
                previous=previous.value,
                detected=result.detected_language.value,
            )
        return await self.store.update_by_id(message_id, self._patch_from_result(request, result))

    @staticmethod
    def _patch_from_result(request: TranslationRequest, result: PipelineResult) -> Dict[str, Any]:
        patch: Dict[str, Any] = {
            "original_language": result.source_language,
            "translated_text": result.translation,
            "translated_language": request.target_lang if result.translation else None,
            "audio_out": result.audio_out,
            "audio_duration": result.audio_duration,
            "confidence": Confidence(
                asr=result.confidences.get("asr"),
                translation=result.confidences.get("translation"),
            ),
            "status": MessageStatus.COMPLETED if result.succeeded else MessageStatus.FAILED,
            "errors": list(result.errors),
            "processing_time_ms": result.processing_time_ms,
        }
        if result.transcript:
            patch["original_text"] = result.transcript
        return patch

    # -- offline replay ----------------------------------------------------

    async def _replay_entry(self, entry: OfflineQueueEntry) -> bool:
        promoted = await self.store.update_by_id(entry.message_id, {"status": MessageStatus.PROCESSING})
        if promoted is None:
            logger.warning("Offline entry has no message; replaying anyway", entry_id=entry.id, message_id=entry.message_id)
        final = await self._process(entry.message_id, entry.sender, entry.request)
        return final is not None and final.status is MessageStatus.COMPLETED

    async def drain_offline_queue(self) -> DrainReport:
        if not len(self.queue):
            return DrainReport(skipped=True)
        async with self.gate.hold("offline-drain"):
            return await self.queue.drain_if_online()

    def _on_online(self) -> None:
        if self._drain_task and not self._drain_task.done():
            logger.debug("Offline drain already scheduled")
            return
        self._drain_task = asyncio.create_task(self.drain_offline_queue())

    async def set_online(self, online: bool) -> bool:
        return await self.monitor.set_online(online)

    async def wait_idle(self) -> Optional[DrainReport]:
        """Wait for a scheduled offline drain (if any) to finish."""
        task = self._drain_task
        if task is None:
            return None
        return await task

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        await self.sequencer.client.start()
        self.monitor.start()

    async def close(self) -> None:
        await self.monitor.stop()
        if self._drain_task and not self._drain_task.done():
            # Replays run to a terminal status; no mid-pipeline cancellation.
            await self._drain_task
        await self.sequencer.client.stop()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "online": self.monitor.is_online,
            "busy": self.gate.busy,
            "languages": {s.value: code.value for s, code in self._languages.items()},
            "queueDepth": len(self.queue),
            "stats": self.store.stats(),
        }
