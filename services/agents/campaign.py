from models.internal import AgentConfig, AgentKind, AgentReport, Corpus, Fingerprint
from services.agents.base import (
    agent_report,
    blend,
    build_prompt,
    clamp_score,
    generate_json,
    heuristic_finding,
    parse_findings,
    posts_per_week,
)
from services.generation import TextGenerator

_TASK = """Plan the next campaign for this handle.
Judge how ready their public presence is to carry a campaign: is there a clear hook,
an audience that responds, and a voice that can be extended without sounding off-brand?
Return 3-5 campaign opportunities as findings. Each should name a concrete angle or format
and say why it fits the voice fingerprint above."""

_SCHEMA = """{
  "readiness_score": 0-100,
  "findings": [
    {"title": "campaign angle, max 12 words", "detail": "format + why it fits, 1-2 sentences",
     "category": "launch|series|collab|community|evergreen", "severity": "opportunity",
     "evidence": "item number or quote that supports it, or null"}
  ]
}"""


def cadence_component(weekly: float, target: float) -> float:
    """100 when posting at or above the target rate, linear below it."""
    if target <= 0:
        return 100.0
    return round(min(weekly / target, 1.0) * 100, 1)


class CampaignAgent:
    kind = AgentKind.CAMPAIGN
    default_config = AgentConfig(
        kind=AgentKind.CAMPAIGN,
        weights={"generated": 0.7, "cadence": 0.3},
        thresholds={"target_posts_per_week": 5.0, "low_cadence": 40.0},
    )

    async def run(
        self,
        corpus: Corpus,
        fingerprint: Fingerprint,
        config: AgentConfig,
        generator: TextGenerator,
    ) -> AgentReport:
        data = await generate_json(generator, build_prompt(_TASK, corpus, fingerprint, _SCHEMA), config)

        weekly = posts_per_week(corpus)
        components = {
            "generated": clamp_score(data["readiness_score"]),
            "cadence": cadence_component(weekly, config.thresholds.get("target_posts_per_week", 5.0)),
        }

        findings = parse_findings(data.get("findings"), config.max_findings, "campaign")
        if components["cadence"] < config.thresholds.get("low_cadence", 40.0):
            findings.insert(0, heuristic_finding(
                "Posting cadence too thin for a campaign",
                f"About {weekly:.1f} public items per week; campaigns need a steadier drumbeat.",
                "cadence",
                "warning",
            ))

        return agent_report(self.kind, blend(config.weights, components), findings)
