import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from models.internal import AgentConfig, AgentKind, Corpus, RawSignal, SignalMetadata, SourceKind
from services.agents.base import agent_report
from services.conductor import ConductorOptions
from services.errors import GenerationError
from services.sources.base import SourceConnector

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

ALICE_POSTS = [
    "Shipped the new onboarding flow today. Activation is up 12% in the first week!",
    "Hot take: most growth teams should delete half their dashboards.",
    "Writing a thread on pricing experiments we ran this quarter. What should I cover?",
    "We definitely underestimated how much people love keyboard shortcuts.",
    "Our design system finally has dark mode. Took three tries, worth it.",
]
ALICE_MENTIONS = [
    "Alice Chen on product-led growth at SaaStr. Notes from the keynote on activation.",
    "Interview: how Alice rebuilt onboarding for a developer audience.",
    "Podcast episode with @alice about pricing, packaging and talking to customers.",
]
GENERIC_DRAFT = (
    "In today's fast-paced world, we are excited to announce a game-changer! "
    "Unlock the power of synergy!!! Let's dive in!!!"
)
ON_VOICE_DRAFT = (
    "Shipped a pricing experiment this week. Activation is up, onboarding is simpler. What should we test next?"
)


def make_signal(
    kind: SourceKind,
    text: str,
    hours_ago: float = 0,
    engagement: Optional[dict] = None,
    handle: str = "alice",
) -> RawSignal:
    return RawSignal(
        source_kind=kind,
        handle=handle,
        timestamp=BASE_TIME - timedelta(hours=hours_ago),
        text=text,
        metadata=SignalMetadata(engagement=engagement or {}),
    )


def alice_social() -> List[RawSignal]:
    return [
        make_signal(SourceKind.SOCIAL_TIMELINE, text, hours_ago=i * 20, engagement={"likes": 40 * (i + 1)})
        for i, text in enumerate(ALICE_POSTS)
    ]


def alice_search() -> List[RawSignal]:
    return [
        make_signal(SourceKind.WEB_SEARCH, text, hours_ago=30 + i * 48)
        for i, text in enumerate(ALICE_MENTIONS)
    ]


def make_corpus(signals: List[RawSignal], handle: str = "alice") -> Corpus:
    return Corpus(
        handle=handle,
        items=tuple(signals),
        sources_used=tuple(dict.fromkeys(s.source_kind for s in signals)),
    )


class StubConnector(SourceConnector):
    """Connector returning canned signals, raising a canned error, or stalling."""

    def __init__(self, kind: SourceKind, signals=(), error: Optional[Exception] = None, delay: float = 0.0):
        super().__init__()
        self.kind = kind
        self._signals = list(signals)
        self._error = error
        self._delay = delay
        self.calls = 0

    async def _fetch(self, handle: str, limit: int) -> List[RawSignal]:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._signals


class FixedAgent:
    """Agent that ignores the generator and returns a fixed score after an optional delay."""

    def __init__(self, kind: AgentKind, score: float = 50.0, delay: float = 0.0, error: Optional[Exception] = None):
        self.kind = kind
        self.default_config = AgentConfig(kind=kind)
        self.score = score
        self.delay = delay
        self.error = error
        self.calls = 0

    async def run(self, corpus, fingerprint, config, generator):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return agent_report(self.kind, self.score, [])


class ScriptedGenerator:
    """
    Deterministic TextGenerator. Returns ``text`` (or JSON of ``payload``),
    raises ``error``, or sleeps ``delay`` seconds first.
    """

    DEFAULT_PAYLOAD = {
        "authority_score": 72,
        "readiness_score": 64,
        "quality_score": 81,
        "positioning": "Practical voice on product-led growth",
        "pillars": ["onboarding", "pricing", "growth experiments"],
        "findings": [
            {"title": "Lead with experiment results", "detail": "Numbers travel further.", "category": "proof",
             "severity": "opportunity", "evidence": "item 1"},
            {"title": "Turn the pricing thread into a series", "detail": "Audience asked for it.",
             "category": "series", "severity": "opportunity"},
        ],
    }

    def __init__(self, payload: Optional[dict] = None, text: Optional[str] = None,
                 error: Optional[Exception] = None, delay: float = 0.0):
        self.text = text if text is not None else json.dumps(payload or self.DEFAULT_PAYLOAD)
        self.error = error
        self.delay = delay
        self.prompts: List[str] = []

    async def generate(self, prompt: str, max_tokens: int, timeout: float) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.text


def failing_generator(message: str = "model unavailable") -> ScriptedGenerator:
    return ScriptedGenerator(error=GenerationError(message))


def fast_options(**overrides) -> ConductorOptions:
    values = {
        "fetch_timeout_sec": 2.0,
        "connector_timeout_sec": 1.0,
        "agent_timeout_sec": 1.0,
        "agent_stage_timeout_sec": 2.0,
        "cache_ttl_sec": 600.0,
    }
    values.update(overrides)
    return ConductorOptions(**values)
