from fastapi import Request

from ..core.orchestrator import ConversationOrchestrator


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    return request.app.state.orchestrator
