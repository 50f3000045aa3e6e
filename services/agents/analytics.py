"""
Analytics agent.

Rule-based: it never calls the generator, so it still produces a score when
the language model is down. Looks at engagement per source, posting cadence
and how many sources returned anything.
"""
from typing import Dict

from models.internal import SOURCE_PRIORITY, AgentConfig, AgentKind, AgentReport, Corpus, Fingerprint, SourceKind
from services.agents.base import (
    agent_report,
    average_engagement,
    blend,
    engagement_component,
    heuristic_finding,
    posts_per_week,
)
from services.agents.campaign import cadence_component
from services.generation import TextGenerator
from utils.text import truncate


def engagement_by_source(corpus: Corpus) -> Dict[SourceKind, float]:
    totals: Dict[SourceKind, list] = {}
    for item in corpus.items:
        totals.setdefault(item.source_kind, []).append(item.total_engagement)
    return {
        kind: round(sum(values) / len(values), 1)
        for kind, values in sorted(totals.items(), key=lambda kv: SOURCE_PRIORITY.index(kv[0]))
    }


class AnalyticsAgent:
    kind = AgentKind.ANALYTICS
    default_config = AgentConfig(
        kind=AgentKind.ANALYTICS,
        weights={"engagement": 0.4, "cadence": 0.3, "coverage": 0.3},
        thresholds={"engagement_log_cap": 4.0, "target_posts_per_week": 5.0},
    )

    async def run(
        self,
        corpus: Corpus,
        fingerprint: Fingerprint,
        config: AgentConfig,
        generator: TextGenerator,
    ) -> AgentReport:
        weekly = posts_per_week(corpus)
        components = {
            "engagement": engagement_component(
                average_engagement(corpus), config.thresholds.get("engagement_log_cap", 4.0)
            ),
            "cadence": cadence_component(weekly, config.thresholds.get("target_posts_per_week", 5.0)),
            "coverage": round(len(corpus.sources_used) / len(SOURCE_PRIORITY) * 100, 1),
        }

        findings = []
        per_source = engagement_by_source(corpus)
        if per_source:
            best = max(per_source, key=per_source.get)
            breakdown = ", ".join(f"{kind.value} {avg:g}" for kind, avg in per_source.items())
            findings.append(heuristic_finding(
                f"Strongest engagement on {best.value}",
                f"Average engagement per item: {breakdown}.",
                "engagement",
            ))

        if corpus.items:
            top = max(corpus.items, key=lambda item: item.total_engagement)
            if top.total_engagement > 0:
                findings.append(heuristic_finding(
                    "Top performing item",
                    f"{truncate(' '.join(top.text.split()), 160)} ({top.total_engagement} interactions)",
                    "engagement",
                    "opportunity",
                ))

        findings.append(heuristic_finding(
            "Posting cadence",
            f"About {weekly:.1f} public items per week across sources.",
            "cadence",
            "info" if components["cadence"] >= 60 else "warning",
        ))

        missing = [kind.value for kind in SOURCE_PRIORITY if kind not in corpus.sources_used]
        if missing:
            findings.append(heuristic_finding(
                "Gaps in source coverage",
                f"No signal from: {', '.join(missing)}.",
                "coverage",
                "warning" if len(missing) > 1 else "info",
            ))

        return agent_report(self.kind, blend(config.weights, components), findings)
