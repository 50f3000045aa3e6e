"""
Research aggregation: connector results -> one deduplicated, ranked Corpus.

Ranking depends only on the set of successful results (recency is measured
against the newest item, not the wall clock), so the corpus order is the same
whatever order the connectors finished in.
"""
import math
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from models.internal import SOURCE_PRIORITY, Corpus, RawSignal, SourceKind, SourceResult
from services.errors import InsufficientSignal
from utils.text import dedup_key

logger = logging.getLogger(__name__)


class RankingWeights(BaseModel):
    recency_weight: float = 0.6
    engagement_weight: float = 0.4
    half_life_days: float = 14.0

    model_config = {"frozen": True}


def _dedupe(results: List[SourceResult]) -> List[Tuple[int, RawSignal]]:
    """Drop near-identical texts, keeping the earliest-timestamped copy. Returns (fetch_order, signal)."""
    kept: Dict[str, Tuple[int, RawSignal]] = {}
    order = 0
    for result in results:
        for signal in result.signals:
            key = dedup_key(signal.text)
            if not key:
                order += 1
                continue
            existing = kept.get(key)
            if existing is None or signal.timestamp < existing[1].timestamp:
                kept[key] = (order, signal)
            order += 1
    return list(kept.values())


def _rank(entries: List[Tuple[int, RawSignal]], weights: RankingWeights) -> List[RawSignal]:
    if not entries:
        return []

    newest = max(s.timestamp for _, s in entries)
    max_engagement = max(s.total_engagement for _, s in entries)
    log_max = math.log1p(max_engagement)

    def sort_key(entry: Tuple[int, RawSignal]):
        order, signal = entry
        age_days = max((newest - signal.timestamp).total_seconds(), 0.0) / 86400
        recency = 0.5 ** (age_days / weights.half_life_days)
        engagement = math.log1p(signal.total_engagement) / log_max if log_max > 0 else 0.0
        score = round(weights.recency_weight * recency + weights.engagement_weight * engagement, 9)
        return (-score, SOURCE_PRIORITY.index(signal.source_kind), order)

    return [signal for _, signal in sorted(entries, key=sort_key)]


def aggregate(
    results: Iterable[SourceResult],
    handle: str,
    max_items: Optional[int] = None,
    weights: Optional[RankingWeights] = None,
) -> Corpus:
    """
    Build the Corpus from every connector result, successes and failures alike.
    Raises InsufficientSignal when no source succeeded.
    """
    results = list(results)
    weights = weights or RankingWeights()

    succeeded = [r for r in results if r.succeeded]
    failures: Dict[SourceKind, str] = {
        r.source_kind: f"{r.status.value}: {r.cause or 'unknown'}" for r in results if not r.succeeded
    }

    if not succeeded:
        logger.warning(f"Aggregation for '{handle}': all {len(results)} source(s) failed")
        raise InsufficientSignal(handle, failures={k.value: v for k, v in failures.items()})

    total_raw = sum(len(r.signals) for r in succeeded)
    ranked = _rank(_dedupe(succeeded), weights)
    if max_items is not None:
        ranked = ranked[:max_items]

    logger.info(
        f"Aggregation for '{handle}': {len(succeeded)}/{len(results)} source(s) ok, "
        f"{total_raw} raw item(s) -> {len(ranked)} in corpus"
    )
    return Corpus(
        handle=handle,
        items=tuple(ranked),
        sources_used=tuple(r.source_kind for r in succeeded),
        source_failures=failures,
    )
