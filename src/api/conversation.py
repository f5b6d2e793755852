"""Conversation endpoints used by the citizen/officer UI."""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.models import MessageStatus, Sender, decode_audio_base64
from ..core.orchestrator import ConversationOrchestrator
from ..errors import SubmissionRejected, ValidationError
from .deps import get_orchestrator

router = APIRouter()


class SubmissionBody(BaseModel):
    text: Optional[str] = None
    audioBase64: Optional[str] = None
    language: Optional[str] = None


class LanguagesBody(BaseModel):
    citizen: Optional[str] = None
    officer: Optional[str] = None


class ConnectivityBody(BaseModel):
    online: bool


@router.post("/{sender}/submit")
async def submit(
    sender: Sender,
    body: SubmissionBody,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    try:
        message = await orchestrator.submit(
            sender,
            language=body.language,
            text=body.text,
            audio_payload=decode_audio_base64(body.audioBase64),
        )
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})
    except SubmissionRejected as e:
        return JSONResponse(status_code=409, content={"success": False, "error": str(e)})

    status_code = 202 if message.status is MessageStatus.OFFLINE else 200
    return JSONResponse(
        status_code=status_code,
        content={"success": message.status is not MessageStatus.FAILED, "message": message.to_dict()},
    )


@router.get("/messages")
async def list_messages(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    return {"messages": [m.to_dict() for m in orchestrator.store.all()], **orchestrator.snapshot()}


@router.put("/languages")
async def set_languages(body: LanguagesBody, orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    try:
        if body.citizen is not None:
            orchestrator.set_language(Sender.CITIZEN, body.citizen)
        if body.officer is not None:
            orchestrator.set_language(Sender.OFFICER, body.officer)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})
    return {"languages": {s.value: code.value for s, code in orchestrator.languages.items()}}


@router.get("/queue")
async def list_queue(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    return {
        "entries": [e.to_dict() for e in orchestrator.queue.pending()],
        "draining": orchestrator.queue.draining,
    }


@router.post("/queue/drain")
async def drain_queue(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    report = await orchestrator.drain_offline_queue()
    return {
        "attempted": report.attempted,
        "failed": report.failed,
        "remaining": report.remaining,
        "skipped": report.skipped,
    }


@router.post("/connectivity")
async def set_connectivity(body: ConnectivityBody, orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    changed = await orchestrator.set_online(body.online)
    return {"online": orchestrator.monitor.is_online, "changed": changed}
