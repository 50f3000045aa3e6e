import statistics
from typing import Dict, List

from models.internal import AgentConfig, AgentKind, AgentReport, Corpus, Fingerprint
from services.agents.base import (
    agent_report,
    blend,
    build_prompt,
    clamp_score,
    generate_json,
    heuristic_finding,
    parse_findings,
)
from services.fingerprint import DIMENSIONS, tone_scores_for_text
from services.generation import TextGenerator

_TASK = """Review this handle's content strategy.
Identify their content pillars (recurring themes), which formats and topics earn the most
engagement, and where the content drifts from the voice fingerprint.
Return 3-5 findings with concrete next pieces of content to make."""

_SCHEMA = """{
  "quality_score": 0-100,
  "pillars": ["2-4 recurring themes, a few words each"],
  "findings": [
    {"title": "max 12 words", "detail": "1-2 sentences", "category": "pillar|format|gap|drift",
     "severity": "info|opportunity|warning", "evidence": "item number or quote, or null"}
  ]
}"""


def tone_spread(texts: List[str]) -> Dict[str, float]:
    """Population std of each tone dimension across items, 0-100 scale."""
    per_item = [tone_scores_for_text(t) for t in texts if t.strip()]
    if len(per_item) < 2:
        return {dim: 0.0 for dim in DIMENSIONS}
    return {
        dim: round(statistics.pstdev(scores.get(dim, 50.0) for scores in per_item), 1)
        for dim in DIMENSIONS
    }


def consistency_component(spread: Dict[str, float]) -> float:
    # std of 50 is as inconsistent as a 0-100 scale allows
    if not spread:
        return 100.0
    mean_spread = sum(spread.values()) / len(spread)
    return round(max(0.0, 100.0 - mean_spread * 2), 1)


class ContentAgent:
    kind = AgentKind.CONTENT
    default_config = AgentConfig(
        kind=AgentKind.CONTENT,
        weights={"generated": 0.6, "consistency": 0.4},
        thresholds={"high_spread": 20.0},
    )

    async def run(
        self,
        corpus: Corpus,
        fingerprint: Fingerprint,
        config: AgentConfig,
        generator: TextGenerator,
    ) -> AgentReport:
        data = await generate_json(generator, build_prompt(_TASK, corpus, fingerprint, _SCHEMA), config)

        spread = tone_spread(corpus.texts())
        components = {
            "generated": clamp_score(data["quality_score"]),
            "consistency": consistency_component(spread),
        }

        findings = []
        pillars = [str(p).strip() for p in (data.get("pillars") or []) if str(p).strip()]
        if pillars:
            findings.append(heuristic_finding("Content pillars", ", ".join(pillars[:4]), "pillar"))

        high_spread = config.thresholds.get("high_spread", 20.0)
        drifting = [dim for dim, value in spread.items() if value >= high_spread]
        if drifting:
            findings.append(heuristic_finding(
                "Tone swings between posts",
                f"Large variation in {', '.join(drifting)} across items makes the voice harder to recognize.",
                "drift",
                "warning",
            ))

        findings.extend(parse_findings(data.get("findings"), config.max_findings, "content"))
        return agent_report(self.kind, blend(config.weights, components), findings)
