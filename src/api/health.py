from fastapi import APIRouter, Depends

from ..core.orchestrator import ConversationOrchestrator
from .deps import get_orchestrator

router = APIRouter()


@router.get("/health")
async def health_check(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    probe = await orchestrator.sequencer.client.probe()
    return {"status": "online" if probe.is_up else "offline", "responseTime": probe.latency_ms}
