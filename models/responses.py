from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from models.internal import AgentKind, AgentReport, Fingerprint, RunState, SourceStatus


class SourceSummary(BaseModel):
    status: SourceStatus
    items: int = 0
    cause: Optional[str] = None

    model_config = {"frozen": True}


class UnifiedReport(BaseModel):
    """Terminal artifact of one run; the read contract for dashboard and chat."""
    handle: str
    fingerprint: Fingerprint
    per_agent: Dict[AgentKind, AgentReport]
    overall_score: Optional[float] = Field(
        None,
        description="Mean of non-errored agent scores; null when every agent failed",
    )
    degraded: bool = False
    generated_at: datetime
    corpus_size: int = 0
    sources: Dict[str, SourceSummary] = {}

    model_config = {"frozen": True}


class RunOutcome(BaseModel):
    handle: str
    state: RunState
    report: Optional[UnifiedReport] = None
    failure: Optional[str] = None  # "insufficient_signal", "cancelled", "internal_error: ..."
    from_cache: bool = False
    history: List[RunState] = []

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE and self.report is not None


class LookupStatus(str, Enum):
    READY = "ready"
    IN_PROGRESS = "in_progress"
    NOT_FOUND = "not_found"


class ReportLookup(BaseModel):
    handle: str
    status: LookupStatus
    report: Optional[UnifiedReport] = None


# ── Voice authenticity ──

class AuthenticityFlag(BaseModel):
    dimension: str
    severity: str  # "low", "medium", "high"
    reason: str
    suggestion: str = ""


class AuthenticityScore(BaseModel):
    overall: float
    dimensions: Dict[str, float] = {}
    keyword_overlap: float = 0.0
    verdict: str  # "authentic", "mostly_authentic", "needs_work", "generic"
    flags: List[AuthenticityFlag] = []
    summary: str = ""


class RewriteResult(BaseModel):
    content: str
    score: AuthenticityScore
    original_score: AuthenticityScore
    attempts: int = 0
    improved: bool = False


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    state_reached: Optional[str] = None
