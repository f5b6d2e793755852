from __future__ import annotations

import base64
import binascii
import itertools
import secrets
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..errors import ValidationError
from ..languages import LanguageCode, parse_language


class Sender(str, Enum):
    CITIZEN = "citizen"
    OFFICER = "officer"

    @property
    def other(self) -> "Sender":
        return Sender.OFFICER if self is Sender.CITIZEN else Sender.CITIZEN


class MessageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    OFFLINE = "offline"

    @property
    def is_terminal(self) -> bool:
        return self in (MessageStatus.COMPLETED, MessageStatus.FAILED)


AUDIO_PLACEHOLDER_TEXT = "Audio message"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decode_audio_base64(value: Optional[str], *, field_name: str = "audioBase64") -> Optional[bytes]:
    """Decode a base64 audio field from the HTTP boundary; empty means absent."""
    if value is None or value == "":
        return None
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError):
        raise ValidationError(f"{field_name} is not valid base64", field=field_name) from None
    if not decoded:
        return None
    return decoded


@dataclass(frozen=True)
class TranslationRequest:
    source_lang: LanguageCode
    target_lang: LanguageCode
    text: Optional[str] = None
    audio_payload: Optional[bytes] = None

    @classmethod
    def create(
        cls,
        *,
        source_lang: Any,
        target_lang: Any,
        text: Optional[str] = None,
        audio_payload: Optional[bytes] = None,
    ) -> "TranslationRequest":
        """Validate raw boundary values; unknown languages never reach the pipeline."""
        source = parse_language(source_lang, field="sourceLang")
        target = parse_language(target_lang, field="targetLang")
        cleaned = text.strip() if isinstance(text, str) else None
        if not cleaned and not audio_payload:
            raise ValidationError("Either audioBase64 or text must be provided", field="text")
        return cls(source_lang=source, target_lang=target, text=cleaned or None, audio_payload=audio_payload or None)

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_payload)

    def summary(self) -> Dict[str, Any]:
        """Log-safe description (no payload bytes, text preview only)."""
        return {
            "source_lang": self.source_lang.value,
            "target_lang": self.target_lang.value,
            "audio_bytes": len(self.audio_payload or b""),
            "text_preview": (self.text or "")[:40] or None,
        }


@dataclass(frozen=True)
class Confidence:
    asr: Optional[float] = None
    translation: Optional[float] = None

    def to_dict(self) -> Dict[str, float]:
        out: Dict[str, float] = {}
        if self.asr is not None:
            out["asr"] = self.asr
        if self.translation is not None:
            out["translation"] = self.translation
        return out


@dataclass(frozen=True)
class StageErrorEntry:
    """One failed stage, tagged where it was caught."""

    stage: str
    message: str
    error_type: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "message": self.message,
            "errorType": self.error_type,
            "timestamp": self.timestamp.isoformat(),
        }


_sequence = itertools.count(1)


def new_message_id() -> str:
    """Unique id whose lexical order follows creation order within a process."""
    return f"{next(_sequence):012d}-{secrets.token_hex(4)}"


@dataclass(frozen=True)
class ConversationMessage:
    id: str
    sender: Sender
    original_text: str
    original_language: LanguageCode
    status: MessageStatus
    timestamp: datetime = field(default_factory=_utcnow)
    translated_text: Optional[str] = None
    translated_language: Optional[LanguageCode] = None
    audio_out: Optional[bytes] = None
    audio_duration: Optional[float] = None
    confidence: Confidence = field(default_factory=Confidence)
    errors: Tuple[StageErrorEntry, ...] = ()
    processing_time_ms: Optional[int] = None

    def apply(self, patch: Dict[str, Any]) -> "ConversationMessage":
        """Return a copy with *patch* applied; ``id`` and ``sender`` are immutable."""
        allowed = {f.name for f in fields(self)} - {"id", "sender", "timestamp"}
        unknown = set(patch) - allowed
        if unknown:
            raise ValueError(f"Unknown or immutable message fields: {sorted(unknown)}")
        if "errors" in patch:
            patch = {**patch, "errors": tuple(patch["errors"] or ())}
        return replace(self, **patch)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "sender": self.sender.value,
            "originalText": self.original_text,
            "originalLanguage": self.original_language.value,
            "translatedText": self.translated_text,
            "translatedLanguage": self.translated_language.value if self.translated_language else None,
            "audioBase64": base64.b64encode(self.audio_out).decode("ascii") if self.audio_out else None,
            "audioDuration": self.audio_duration,
            "confidence": self.confidence.to_dict(),
            "status": self.status.value,
            "errors": [e.to_dict() for e in self.errors],
            "processingTime": self.processing_time_ms,
        }


@dataclass(frozen=True)
class OfflineQueueEntry:
    id: str
    message_id: str
    sender: Sender
    request: TranslationRequest
    enqueued_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "messageId": self.message_id,
            "sender": self.sender.value,
            "enqueuedAt": self.enqueued_at.isoformat(),
            **self.request.summary(),
        }
