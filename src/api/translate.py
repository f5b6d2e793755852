"""
Stateless translation endpoint.

Accepts: { audioBase64?, text?, sourceLang, targetLang }
Returns 200 on full success, 206 when some stages produced output, 500 when
nothing usable was produced.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

from ..core.models import TranslationRequest, decode_audio_base64
from ..core.orchestrator import ConversationOrchestrator
from ..errors import ValidationError
from ..pipelines.sequencer import PipelineOutcome
from .deps import get_orchestrator

logger = structlog.get_logger(__name__)

router = APIRouter()


class TranslateBody(BaseModel):
    audioBase64: Optional[str] = None
    text: Optional[str] = None
    sourceLang: Optional[str] = None
    targetLang: Optional[str] = None


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": message})


@router.post("/translate")
async def translate(body: TranslateBody, orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    if not body.sourceLang or not body.targetLang:
        return _bad_request("Missing required parameters: sourceLang and targetLang")
    if not body.audioBase64 and not body.text:
        return _bad_request("Either audioBase64 or text must be provided")

    try:
        request = TranslationRequest.create(
            source_lang=body.sourceLang,
            target_lang=body.targetLang,
            text=body.text,
            audio_payload=decode_audio_base64(body.audioBase64),
        )
    except ValidationError as e:
        return _bad_request(str(e))

    result = await orchestrator.translate_once(request)
    data = result.to_response_data()

    if result.outcome is PipelineOutcome.COMPLETED:
        return JSONResponse(status_code=200, content={"success": True, "data": data})
    if result.outcome is PipelineOutcome.PARTIAL:
        return JSONResponse(
            status_code=206,
            content={"success": False, "partial": True, "data": data, "error": result.error_message},
        )
    logger.warning("Translation request produced no output", error=result.error_message)
    return JSONResponse(status_code=500, content={"success": False, "data": data, "error": result.error_message})
