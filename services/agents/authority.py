import logging
import re

from models.internal import AgentConfig, AgentKind, AgentReport, Corpus, Fingerprint
from services.agents.base import (
    agent_report,
    average_engagement,
    blend,
    build_prompt,
    clamp_score,
    engagement_component,
    generate_json,
    heuristic_finding,
    parse_findings,
)
from services.generation import TextGenerator

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z0-9_'\-]+")

_TASK = """Assess how much topical authority this handle has built.
Consider: expertise signals (specific claims, data, experience), consistency of topic,
whether others cite or discuss them, and whether the voice sounds like an expert or a spectator.
Return 3-5 findings: strengths to double down on and gaps that undercut credibility."""

_SCHEMA = """{
  "authority_score": 0-100,
  "positioning": "one sentence: what they are (or could be) known for",
  "findings": [
    {"title": "max 12 words", "detail": "1-2 sentences", "category": "expertise|consistency|proof|reach",
     "severity": "info|opportunity|warning", "evidence": "short quote or item number, or null"}
  ]
}"""


def _keyword_focus(corpus: Corpus, fingerprint: Fingerprint) -> float:
    """Share of items that touch at least one of the top keywords, 0-100."""
    top = set(fingerprint.keywords[:5])
    if not corpus.items or not top:
        return 0.0
    hits = sum(1 for item in corpus.items if top & set(_WORD_RE.findall(item.text.lower())))
    return round(hits / len(corpus.items) * 100, 1)


class AuthorityAgent:
    kind = AgentKind.AUTHORITY
    default_config = AgentConfig(
        kind=AgentKind.AUTHORITY,
        weights={"generated": 0.5, "confidence": 0.2, "focus": 0.15, "engagement": 0.15},
        thresholds={"low_confidence": 40.0, "low_focus": 30.0, "engagement_log_cap": 4.0},
        max_findings=6,
    )

    async def run(
        self,
        corpus: Corpus,
        fingerprint: Fingerprint,
        config: AgentConfig,
        generator: TextGenerator,
    ) -> AgentReport:
        prompt = build_prompt(_TASK, corpus, fingerprint, _SCHEMA)
        data = await generate_json(generator, prompt, config)

        components = {
            "generated": clamp_score(data["authority_score"]),
            "confidence": fingerprint.confidence,
            "focus": _keyword_focus(corpus, fingerprint),
            "engagement": engagement_component(
                average_engagement(corpus), config.thresholds.get("engagement_log_cap", 4.0)
            ),
        }

        findings = []
        positioning = str(data.get("positioning") or "").strip()
        if positioning:
            findings.append(heuristic_finding("Positioning", positioning, "positioning"))
        if fingerprint.confidence < config.thresholds.get("low_confidence", 40.0):
            findings.append(heuristic_finding(
                "Hedged language weakens authority",
                f"Confidence reads {fingerprint.confidence:.0f}/100; qualifiers dilute expert claims.",
                "voice",
                "warning",
            ))
        if components["focus"] < config.thresholds.get("low_focus", 30.0):
            findings.append(heuristic_finding(
                "Topic focus is scattered",
                f"Only {components['focus']:.0f}% of items touch the core themes.",
                "consistency",
                "warning",
            ))
        findings.extend(parse_findings(data.get("findings"), config.max_findings, "expertise"))

        return agent_report(self.kind, blend(config.weights, components), findings)
