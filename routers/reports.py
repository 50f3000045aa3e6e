import json
import time
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from models.internal import Fingerprint
from models.requests import AuthenticityRequest, RewriteRequest, normalize_handle
from models.responses import AuthenticityScore, ErrorResponse, LookupStatus, RewriteResult, UnifiedReport
from services.conductor import Conductor
from services.fingerprint import score_authenticity
from services.rewrite import rewrite_with_authenticity
from utils.auth import get_optional_caller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["reports"])


def get_conductor(request: Request) -> Conductor:
    return request.app.state.conductor


def _valid_handle(handle: str) -> str:
    try:
        return normalize_handle(handle)
    except ValueError as e:
        raise HTTPException(status_code=422, detail={"error": "Invalid handle", "detail": str(e)})


@router.post(
    "/reports/{handle}",
    response_model=UnifiedReport,
    responses={
        422: {"model": ErrorResponse, "description": "Invalid handle or no usable sources"},
        500: {"model": ErrorResponse, "description": "Run failed"},
    },
    summary="Build a brand intelligence report",
    description=(
        "Fetches public signals for the handle, builds its voice fingerprint and runs "
        "every analysis agent. Served from cache when a fresh report exists."
    ),
)
async def create_report(
    handle: str,
    conductor: Conductor = Depends(get_conductor),
    caller: Optional[str] = Depends(get_optional_caller),
) -> UnifiedReport:
    handle = _valid_handle(handle)
    start_time = time.time()
    outcome = await conductor.run(handle, caller=caller)
    elapsed = time.time() - start_time

    if outcome.succeeded:
        logger.info(f"Report for '{handle}' ready in {elapsed:.1f}s (cache: {outcome.from_cache})")
        return outcome.report

    reached = outcome.history[-2].value if len(outcome.history) > 1 else None
    logger.warning(f"Report for '{handle}' failed after {elapsed:.1f}s: {outcome.failure}")
    if outcome.failure == "insufficient_signal":
        raise HTTPException(
            status_code=422,
            detail={
                "error": "Insufficient signal",
                "detail": f"No source returned public data for '{handle}'",
                "state_reached": reached,
            },
        )
    raise HTTPException(
        status_code=500,
        detail={"error": "Report failed", "detail": outcome.failure, "state_reached": reached},
    )


@router.get(
    "/reports/{handle}",
    response_model=UnifiedReport,
    responses={
        202: {"description": "A run for this handle is in progress"},
        404: {"model": ErrorResponse, "description": "No report for this handle"},
    },
    summary="Read the latest report for a handle",
)
async def read_report(handle: str, conductor: Conductor = Depends(get_conductor)):
    lookup = await conductor.get_report(_valid_handle(handle))
    if lookup.status == LookupStatus.READY:
        return lookup.report
    if lookup.status == LookupStatus.IN_PROGRESS:
        return JSONResponse(status_code=202, content={"handle": lookup.handle, "status": lookup.status.value})
    raise HTTPException(status_code=404, detail={"error": "Report not found", "detail": lookup.handle})


@router.post("/reports/{handle}/stream", summary="Build a report with SSE progress")
async def stream_report(
    handle: str,
    conductor: Conductor = Depends(get_conductor),
    caller: Optional[str] = Depends(get_optional_caller),
):
    handle = _valid_handle(handle)

    async def generate():
        start_time = time.time()
        try:
            async for event in conductor.stream(handle, caller=caller):
                if event["type"] in ("result", "failed"):
                    event["elapsed"] = round(time.time() - start_time, 1)
                yield f"data: {json.dumps(event)}\n\n"
        except Exception as e:
            elapsed = round(time.time() - start_time, 1)
            logger.error(f"Report stream for '{handle}' failed after {elapsed}s: {e}", exc_info=True)
            yield f"data: {json.dumps({'type': 'error', 'message': 'Something went wrong. Please try again.'})}\n\n"

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def _ready_fingerprint(conductor: Conductor, handle: str) -> Fingerprint:
    lookup = await conductor.get_report(handle)
    if lookup.status != LookupStatus.READY:
        raise HTTPException(
            status_code=404,
            detail={"error": "No fingerprint available", "detail": f"Build a report for '{handle}' first"},
        )
    return lookup.report.fingerprint


@router.post(
    "/voice/authenticity",
    response_model=AuthenticityScore,
    responses={404: {"model": ErrorResponse, "description": "No fingerprint for this handle yet"}},
    summary="Score a draft against a handle's voice fingerprint",
)
async def check_authenticity(
    request: AuthenticityRequest,
    conductor: Conductor = Depends(get_conductor),
) -> AuthenticityScore:
    return score_authenticity(request.content, await _ready_fingerprint(conductor, request.handle))


@router.post(
    "/voice/rewrite",
    response_model=RewriteResult,
    responses={404: {"model": ErrorResponse, "description": "No fingerprint for this handle yet"}},
    summary="Rewrite a draft until it matches a handle's voice",
    description=(
        "Scores the draft, then asks the model to fix the flagged deviations. "
        "A rewrite is kept only when it scores higher than the current draft."
    ),
)
async def rewrite_draft(
    request: RewriteRequest,
    conductor: Conductor = Depends(get_conductor),
) -> RewriteResult:
    result = await rewrite_with_authenticity(
        request.content,
        await _ready_fingerprint(conductor, request.handle),
        conductor.generator,
        max_attempts=request.max_attempts,
        threshold=request.threshold,
        context=request.context,
        timeout=conductor.options.agent_timeout_sec,
    )
    logger.info(
        f"Rewrite for '{request.handle}': {result.original_score.overall} -> {result.score.overall} "
        f"in {result.attempts} attempt(s)"
    )
    return result


@router.get("/health")
async def health(conductor: Conductor = Depends(get_conductor)):
    return {
        "status": "ok",
        "sources": [c.status() for c in conductor.connectors],
        "agents": [
            {"agent": a.kind.value, "enabled": conductor.agent_configs.get(a.kind, a.default_config).enabled}
            for a in conductor.agents
        ],
    }
