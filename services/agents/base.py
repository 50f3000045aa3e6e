"""
Shared agent harness.

An agent is anything with a ``kind`` and an async ``run(corpus, fingerprint,
config, generator)``. Agents only read the corpus and fingerprint, never each
other's output, so the conductor can run them side by side. ``run_agent`` is
the one place where timeouts, generation failures and unparseable output
become an errored AgentReport.
"""
import asyncio
import json
import math
import re
import time
import logging
from typing import Dict, List, Protocol

from models.internal import AgentConfig, AgentKind, AgentReport, Corpus, Finding, Fingerprint
from services.errors import GenerationError
from services.fingerprint import format_fingerprint_for_prompt
from services.generation import TextGenerator
from utils.text import truncate

logger = logging.getLogger(__name__)

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")
_SEVERITIES = ("info", "opportunity", "warning")


class Agent(Protocol):
    kind: AgentKind
    default_config: AgentConfig

    async def run(
        self,
        corpus: Corpus,
        fingerprint: Fingerprint,
        config: AgentConfig,
        generator: TextGenerator,
    ) -> AgentReport:
        ...


async def run_agent(
    agent: Agent,
    corpus: Corpus,
    fingerprint: Fingerprint,
    config: AgentConfig,
    generator: TextGenerator,
    timeout: float,
) -> AgentReport:
    """Run one agent; any failure comes back as an AgentReport with ``error`` set."""
    start = time.monotonic()

    def _elapsed():
        return time.monotonic() - start

    if not config.enabled:
        return AgentReport.failed(agent.kind, "disabled")

    try:
        report = await asyncio.wait_for(
            agent.run(corpus, fingerprint, config, generator),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Agent {agent.kind.value} timed out after {timeout}s")
        return AgentReport.failed(agent.kind, f"timeout after {timeout}s", _elapsed())
    except GenerationError as e:
        logger.warning(f"Agent {agent.kind.value} generation failed: {e}")
        return AgentReport.failed(agent.kind, f"generation failed: {e}", _elapsed())
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Agent {agent.kind.value} produced unusable output: {e}")
        return AgentReport.failed(agent.kind, f"malformed output: {e}", _elapsed())

    elapsed = _elapsed()
    logger.info(f"Agent {agent.kind.value} scored {report.score} in {elapsed:.1f}s")
    return report.model_copy(update={
        "findings": tuple(report.findings[: config.max_findings]),
        "elapsed_sec": round(elapsed, 3),
    })


# ── Helpers shared by concrete agents ──

def parse_json_object(text: str) -> dict:
    """Strict JSON first, then the outermost {...} block. Raises ValueError."""
    text = (text or "").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_BLOCK_RE.search(text)
        if not match:
            raise ValueError("no JSON object in generated text")
        data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def clamp_score(value) -> float:
    """Coerce a generated score into 0-100. Raises ValueError for non-numeric input."""
    score = float(value)
    if math.isnan(score):
        raise ValueError("score is NaN")
    return min(max(score, 0.0), 100.0)


def blend(weights: Dict[str, float], components: Dict[str, float]) -> float:
    """Weighted mean of the components that have a weight."""
    used = {k: w for k, w in weights.items() if k in components and w > 0}
    total = sum(used.values())
    if total == 0:
        return round(sum(components.values()) / len(components), 1) if components else 0.0
    return round(sum(components[k] * w for k, w in used.items()) / total, 1)


def parse_findings(raw_list, max_findings: int, default_category: str) -> List[Finding]:
    findings = []
    for raw in (raw_list or [])[: max_findings * 2]:
        if not isinstance(raw, dict):
            continue
        title = str(raw.get("title") or "").strip()
        if not title:
            continue
        severity = str(raw.get("severity") or "info").lower()
        findings.append(Finding(
            title=truncate(title, 120),
            detail=truncate(str(raw.get("detail") or "").strip(), 600),
            category=str(raw.get("category") or default_category).lower(),
            severity=severity if severity in _SEVERITIES else "info",
            evidence=str(raw["evidence"]) if raw.get("evidence") else None,
        ))
        if len(findings) >= max_findings:
            break
    return findings


def corpus_digest(corpus: Corpus, max_items: int = 20, max_chars: int = 280) -> str:
    lines = []
    for i, item in enumerate(corpus.items[:max_items], start=1):
        engagement = ", ".join(f"{k} {v}" for k, v in item.metadata.engagement.items() if v)
        meta = f" [{engagement}]" if engagement else ""
        lines.append(
            f"{i}. ({item.source_kind.value}, {item.timestamp.date().isoformat()}){meta} "
            f"{truncate(' '.join(item.text.split()), max_chars)}"
        )
    return "\n".join(lines) if lines else "(no items)"


def build_prompt(task: str, corpus: Corpus, fingerprint: Fingerprint, output_schema: str) -> str:
    return (
        f"HANDLE: @{corpus.handle}\n"
        f"SOURCES: {', '.join(k.value for k in corpus.sources_used) or 'none'}\n\n"
        f"{format_fingerprint_for_prompt(fingerprint)}\n\n"
        f"PUBLIC SIGNALS (ranked):\n{corpus_digest(corpus)}\n\n"
        f"TASK:\n{task}\n\n"
        f"Return ONLY valid JSON:\n{output_schema}"
    )


async def generate_json(generator: TextGenerator, prompt: str, config: AgentConfig) -> dict:
    text = await generator.generate(prompt, config.max_tokens, config.generation_timeout_sec)
    return parse_json_object(text)


def average_engagement(corpus: Corpus) -> float:
    if not corpus.items:
        return 0.0
    return sum(item.total_engagement for item in corpus.items) / len(corpus.items)


def engagement_component(avg_engagement: float, log_cap: float) -> float:
    """log10 scale: avg engagement of 10**log_cap maps to 100."""
    if log_cap <= 0:
        return 0.0
    return round(min(math.log10(1 + avg_engagement) / log_cap, 1.0) * 100, 1)


def posts_per_week(corpus: Corpus, source_kind=None) -> float:
    stamps = sorted(
        item.timestamp for item in corpus.items
        if source_kind is None or item.source_kind == source_kind
    )
    if len(stamps) < 2:
        return float(len(stamps))
    span_weeks = max((stamps[-1] - stamps[0]).total_seconds() / (7 * 86400), 1.0)
    return len(stamps) / span_weeks


def heuristic_finding(title: str, detail: str, category: str, severity: str = "info") -> Finding:
    return Finding(title=title, detail=detail, category=category, severity=severity)


def agent_report(kind: AgentKind, score: float, findings: List[Finding]) -> AgentReport:
    return AgentReport(agent_kind=kind, score=round(score, 1), findings=tuple(findings))
