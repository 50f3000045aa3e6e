import asyncio
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, model_validator


class SourceKind(str, Enum):
    SOCIAL_TIMELINE = "social_timeline"
    WEB_SEARCH = "web_search"
    VIDEO_PLATFORM = "video_platform"
    REDDIT = "reddit"


# Tie-break order when two corpus items rank equally
SOURCE_PRIORITY = [
    SourceKind.SOCIAL_TIMELINE,
    SourceKind.WEB_SEARCH,
    SourceKind.VIDEO_PLATFORM,
    SourceKind.REDDIT,
]


class SignalMetadata(BaseModel):
    url: str = ""
    title: str = ""
    author: str = ""
    engagement: Dict[str, int] = {}  # likes, shares, comments, views, score...

    model_config = {"frozen": True}


class RawSignal(BaseModel):
    """One item fetched from a connector."""
    source_kind: SourceKind
    handle: str
    timestamp: datetime
    text: str
    metadata: SignalMetadata = SignalMetadata()

    model_config = {"frozen": True}

    @property
    def total_engagement(self) -> int:
        return sum(max(v, 0) for v in self.metadata.engagement.values())


class SourceStatus(str, Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"


class SourceResult(BaseModel):
    """Outcome of one connector call. Failures are values, not exceptions."""
    source_kind: SourceKind
    status: SourceStatus
    signals: Tuple[RawSignal, ...] = ()
    cause: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def ok(cls, source_kind: SourceKind, signals: List[RawSignal]) -> "SourceResult":
        return cls(source_kind=source_kind, status=SourceStatus.OK, signals=tuple(signals))

    @classmethod
    def unavailable(cls, source_kind: SourceKind, cause: str) -> "SourceResult":
        return cls(source_kind=source_kind, status=SourceStatus.UNAVAILABLE, cause=cause)

    @classmethod
    def rate_limited(cls, source_kind: SourceKind, cause: str = "request budget exhausted") -> "SourceResult":
        return cls(source_kind=source_kind, status=SourceStatus.RATE_LIMITED, cause=cause)

    @property
    def succeeded(self) -> bool:
        return self.status == SourceStatus.OK


class Corpus(BaseModel):
    """Deduplicated, ranked signals for one handle. Read-only once built."""
    handle: str
    items: Tuple[RawSignal, ...] = ()
    sources_used: Tuple[SourceKind, ...] = ()
    source_failures: Dict[SourceKind, str] = {}

    model_config = {"frozen": True}

    def __len__(self) -> int:
        return len(self.items)

    def texts(self) -> List[str]:
        return [item.text for item in self.items]


class Fingerprint(BaseModel):
    tone_scores: Dict[str, float] = Field(
        default_factory=dict,
        description="dimension -> 0-100",
    )
    formality: float = 50.0
    energy: float = 50.0
    confidence: float = 50.0
    keywords: Tuple[str, ...] = Field(
        default=(),
        description="Deduplicated, ordered by weight descending",
    )
    voice_summary: str = ""
    evidence_count: int = 0
    low_confidence: bool = False

    model_config = {"frozen": True}


class AgentKind(str, Enum):
    AUTHORITY = "authority"
    CAMPAIGN = "campaign"
    CONTENT = "content"
    ANALYTICS = "analytics"


class AgentConfig(BaseModel):
    kind: AgentKind
    weights: Dict[str, float] = {}
    thresholds: Dict[str, float] = {}
    max_findings: int = Field(5, ge=1, le=20)
    max_tokens: int = Field(1024, ge=64)
    generation_timeout_sec: float = Field(40.0, gt=0)
    enabled: bool = True

    model_config = {"frozen": True}


class Finding(BaseModel):
    title: str
    detail: str = ""
    category: str = "general"
    severity: str = "info"  # "info", "opportunity", "warning"
    evidence: Optional[str] = None

    model_config = {"frozen": True}


class AgentReport(BaseModel):
    agent_kind: AgentKind
    score: Optional[float] = Field(None, ge=0, le=100)
    findings: Tuple[Finding, ...] = ()
    error: Optional[str] = None
    elapsed_sec: float = 0.0

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _error_iff_no_score(self):
        if (self.error is None) == (self.score is None):
            raise ValueError("AgentReport needs exactly one of score or error")
        return self

    @classmethod
    def failed(cls, agent_kind: AgentKind, error: str, elapsed_sec: float = 0.0) -> "AgentReport":
        return cls(agent_kind=agent_kind, error=error, elapsed_sec=round(elapsed_sec, 3))

    @property
    def succeeded(self) -> bool:
        return self.error is None


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING_SOURCES = "fetching_sources"
    AGGREGATING = "aggregating"
    FINGERPRINTING = "fingerprinting"
    RUNNING_AGENTS = "running_agents"
    SYNTHESIZING = "synthesizing"
    DONE = "done"
    FAILED = "failed"


class RunContext(BaseModel):
    """Process-local state for one conductor run. Never persisted."""
    run_id: str
    handle: str
    caller: Optional[str] = None
    state: RunState = RunState.IDLE
    history: List[RunState] = [RunState.IDLE]
    cancel_event: asyncio.Event = Field(default_factory=asyncio.Event)
    source_results: List[SourceResult] = []
    corpus: Optional[Corpus] = None
    fingerprint: Optional[Fingerprint] = None
    agent_reports: Dict[AgentKind, AgentReport] = {}
    failure: Optional[str] = None

    model_config = {"arbitrary_types_allowed": True}

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()
