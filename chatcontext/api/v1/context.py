"""Context router: run a retrieval turn, validate attribution of an answer."""

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from chatcontext.agents.orchestrator import RetrievalOrchestrator, TurnContext, TurnRequest
from chatcontext.models.schemas import (
    ContextRequest,
    ContextResponse,
    SourceResultOut,
    ToolResults,
    TurnTimeoutResponse,
    ValidateRequest,
    ValidateResponse,
)
from chatcontext.services.response_validator import is_attributed, validate_response

logger = structlog.get_logger(__name__)
router = APIRouter()


def get_orchestrator(request: Request) -> RetrievalOrchestrator:
    return request.app.state.orchestrator


def _to_response(turn: TurnContext) -> ContextResponse:
    return ContextResponse(
        turn_id=turn.turn_id,
        status=turn.status,
        query=turn.query,
        urls=turn.urls,
        results=[
            SourceResultOut(
                source_name=r.source_name,
                content=r.content,
                outcome=r.outcome.value,
                from_cache=r.from_cache,
                retrieved_at=r.retrieved_at,
                meta=r.meta,
            )
            for r in turn.results
        ],
        used_sources=turn.used_sources,
        tool_results=turn.tool_results,
        skipped=turn.skipped,
        summary=turn.summary,
        elapsed_ms=turn.elapsed_ms,
    )


@router.post(
    "",
    response_model=ContextResponse,
    responses={status.HTTP_408_REQUEST_TIMEOUT: {"model": TurnTimeoutResponse}},
)
async def assemble_context(
    body: ContextRequest,
    orchestrator: RetrievalOrchestrator = Depends(get_orchestrator),
):
    """Assemble source context for one chat turn.

    Returns 408 with a ``turn_timeout`` body when the outer deadline fires, so
    callers can retry with reduced scope.
    """
    turn = await orchestrator.run_turn(
        TurnRequest(
            query=body.query,
            deep_research_enabled=body.deep_research_enabled,
            urls=body.urls,
        )
    )
    if turn.timed_out and turn.error is not None:
        payload = TurnTimeoutResponse(
            message=str(turn.error),
            turn_id=turn.turn_id,
            budget_seconds=turn.error.budget_seconds,
            elapsed_ms=turn.error.elapsed_ms,
            used_sources=turn.used_sources,
        )
        return JSONResponse(
            status_code=status.HTTP_408_REQUEST_TIMEOUT, content=payload.model_dump()
        )
    return _to_response(turn)


@router.post("/validate", response_model=ValidateResponse)
async def validate_attribution(body: ValidateRequest) -> ValidateResponse:
    text = validate_response(body.response_text, body.used_sources)
    missing = [
        name
        for name in dict.fromkeys(body.used_sources)
        if not is_attributed(body.response_text, name)
    ]
    return ValidateResponse(text=text, changed=text != body.response_text, missing_sources=missing)
