"""
Voice fingerprint pipeline.

Pure functions of the corpus text: no network, no clock. The same Corpus always
yields the same Fingerprint. Feature scales and dimension weights are exposed
through FingerprintParams so they can be tuned without touching code.

Each tone dimension is 0.5 plus a weighted sum of features normalized to
[0, 1], clamped and scaled to 0-100.
"""
import math
import re
import logging
from collections import Counter
from typing import Dict, List, Optional

from pydantic import BaseModel

from models.internal import Corpus, Fingerprint
from models.responses import AuthenticityFlag, AuthenticityScore

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[A-Za-z][A-Za-z']*")
_TERM_RE = re.compile(r"#?[a-z][a-z0-9_'\-]*")
_URL_RE = re.compile(r"https?://\S+|www\.\S+")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+(?=\s|$)|\n+")
_PUNCT_RE = re.compile(r"[,;:!?\-—–()\"]")
_CONTRACTION_RE = re.compile(r"^[a-z]+'(s|t|re|ve|ll|d|m)$")
_EMOJI_RE = re.compile(
    "[\U0001F300-\U0001FAFF\U00002600-\U000027BF\U0001F1E6-\U0001F1FF]"
)

FIRST_PERSON = frozenset({"i", "me", "my", "mine", "myself", "we", "us", "our", "ours", "i'm", "i've", "i'll", "i'd", "we're", "we've"})
SECOND_PERSON = frozenset({"you", "your", "yours", "yourself", "yourselves", "you're", "you've", "you'll", "ya", "y'all"})

HEDGES = (
    "maybe", "perhaps", "might", "possibly", "probably", "i think", "i guess",
    "i feel like", "kind of", "sort of", "seems", "somewhat", "not sure", "could be",
)
CERTAINTY_MARKERS = (
    "definitely", "certainly", "clearly", "always", "never", "absolutely",
    "guaranteed", "no doubt", "undeniably", "without question", "must", "proven", "the truth is",
)

GENERIC_PHRASES = (
    "in today's fast-paced world", "excited to announce", "game-changer", "game changer",
    "delve into", "unlock the power", "elevate your", "in the ever-evolving",
    "look no further", "let's dive in",
)

STOP_WORDS = frozenset("""
a about above after again against all also am an and any are aren't as at be because been before
being below between both but by can can't cannot could couldn't did didn't do does doesn't doing
don't down during each even ever every few for from further get gets getting got had hadn't has
hasn't have haven't having he he'd he'll he's her here here's hers herself him himself his how
how's i i'd i'll i'm i've if in into is isn't it it's its itself just let's like made make many me
more most much must mustn't my myself need new no nor not now of off on once one only or other
ought our ours ourselves out over own really same say says said shan't she she'd she'll she's
should shouldn't so some still such than that that's the their theirs them themselves then there
there's these they they'd they'll they're they've this those through to too under until up upon
us very via was wasn't we we'd we'll we're we've were weren't what what's when when's where
where's which while who who's whom why why's will with won't would wouldn't yet you you'd you'll
you're you've your yours yourself yourselves amp http https www com rt via
""".split())

DIMENSIONS = ("formality", "energy", "confidence", "warmth")


class FingerprintParams(BaseModel):
    min_corpus_size: int = 5
    max_keywords: int = 15
    min_keyword_length: int = 3
    # Raw feature value that maps to 1.0
    feature_scales: Dict[str, float] = {
        "sentence_length": 30.0,  # words per sentence
        "exclamation": 1.0,  # per sentence
        "question": 1.0,  # per sentence
        "punctuation_density": 0.3,  # per word
        "first_person": 0.08,  # per word
        "second_person": 0.05,  # per word
        "hedging": 0.5,  # per sentence
        "certainty": 0.5,  # per sentence
        "contraction": 0.05,  # per word
        "emoji": 1.0,  # per item
        "caps": 0.05,  # per word
    }
    dimension_weights: Dict[str, Dict[str, float]] = {
        "formality": {
            "sentence_length": 0.5, "contraction": -0.3, "emoji": -0.2,
            "exclamation": -0.2, "first_person": -0.1,
        },
        "energy": {
            "exclamation": 0.4, "caps": 0.2, "emoji": 0.2,
            "punctuation_density": 0.2, "sentence_length": -0.2,
        },
        "confidence": {
            "certainty": 0.5, "hedging": -0.5, "question": -0.1,
        },
        "warmth": {
            "second_person": 0.4, "first_person": 0.2, "emoji": 0.2, "contraction": 0.1,
        },
    }

    model_config = {"frozen": True}


def _count_phrases(text_lower: str, phrases) -> int:
    return sum(
        len(re.findall(r"\b" + re.escape(p) + r"\b", text_lower))
        for p in phrases
    )


def _extract_features(texts: List[str], params: FingerprintParams) -> Optional[Dict[str, float]]:
    """Normalized (0-1) stylistic features over all texts, or None when there are no words."""
    texts = [_URL_RE.sub(" ", t) for t in texts]
    words = [w.lower() for t in texts for w in _WORD_RE.findall(t)]
    if not words:
        return None

    sentences = [
        s for t in texts for s in _SENTENCE_SPLIT_RE.split(t)
        if _WORD_RE.search(s)
    ]
    n_sentences = max(len(sentences), 1)
    n_words = len(words)
    joined = "\n".join(texts)
    joined_lower = joined.lower()

    raw = {
        "sentence_length": n_words / n_sentences,
        "exclamation": joined.count("!") / n_sentences,
        "question": joined.count("?") / n_sentences,
        "punctuation_density": len(_PUNCT_RE.findall(joined)) / n_words,
        "first_person": sum(1 for w in words if w in FIRST_PERSON) / n_words,
        "second_person": sum(1 for w in words if w in SECOND_PERSON) / n_words,
        "hedging": _count_phrases(joined_lower, HEDGES) / n_sentences,
        "certainty": _count_phrases(joined_lower, CERTAINTY_MARKERS) / n_sentences,
        "contraction": sum(1 for w in words if _CONTRACTION_RE.match(w)) / n_words,
        "emoji": len(_EMOJI_RE.findall(joined)) / max(len(texts), 1),
        "caps": sum(
            1 for t in texts for w in _WORD_RE.findall(t)
            if len(w) >= 2 and w.isupper() and w != "I"
        ) / n_words,
    }
    return {
        name: min(value / params.feature_scales.get(name, 1.0), 1.0)
        for name, value in raw.items()
    }


def _tone_scores(features: Optional[Dict[str, float]], params: FingerprintParams) -> Dict[str, float]:
    if features is None:
        return {dim: 50.0 for dim in DIMENSIONS}
    scores = {}
    for dim in DIMENSIONS:
        weights = params.dimension_weights.get(dim, {})
        value = 0.5 + sum(w * features.get(f, 0.0) for f, w in weights.items())
        scores[dim] = round(min(max(value, 0.0), 1.0) * 100, 1)
    return scores


def tone_scores_for_text(text: str, params: Optional[FingerprintParams] = None) -> Dict[str, float]:
    """Tone dimensions of a single text, on the same scale as a corpus fingerprint."""
    params = params or FingerprintParams()
    return _tone_scores(_extract_features([text], params), params)


def _terms(text: str) -> List[str]:
    out = []
    for term in _TERM_RE.findall(_URL_RE.sub(" ", text.lower())):
        term = term.lstrip("#").strip("'-")
        if term.endswith("'s"):
            term = term[:-2]
        out.append(term)
    return out


def extract_keywords(texts: List[str], handle: str = "", params: Optional[FingerprintParams] = None) -> List[str]:
    """Frequency-weighted terms, stop words and the handle excluded, heaviest first."""
    params = params or FingerprintParams()
    excluded = STOP_WORDS | {handle.lower()}
    tf: Counter = Counter()
    df: Counter = Counter()
    for text in texts:
        terms = [
            t for t in _terms(text)
            if len(t) >= params.min_keyword_length and t not in excluded and not t.isdigit()
        ]
        tf.update(terms)
        df.update(set(terms))

    weighted = sorted(
        ((term, count * (1 + math.log(df[term]))) for term, count in tf.items()),
        key=lambda pair: (-pair[1], pair[0]),
    )
    return [term for term, _ in weighted[: params.max_keywords]]


def _describe(score: float, high: str, low: str, middle: str) -> str:
    if score >= 65:
        return high
    if score <= 35:
        return low
    return middle


def _voice_summary(scores: Dict[str, float], keywords: List[str], evidence: int, low_confidence: bool) -> str:
    if evidence == 0:
        return "Limited evidence: no text was available to characterize this voice."

    formality = _describe(scores["formality"], "formal", "casual", "conversational")
    energy = _describe(scores["energy"], "high-energy", "calm", "measured")
    confidence = _describe(scores["confidence"], "assertive", "tentative", "balanced")
    warmth = _describe(scores["warmth"], "warm, audience-facing", "reserved", "neutral")

    summary = f"{formality.capitalize()}, {energy} voice; {confidence} in its claims with a {warmth} register."
    if keywords:
        summary += f" Recurring themes: {', '.join(keywords[:5])}."
    if low_confidence:
        summary = f"Limited evidence ({evidence} item{'s' if evidence != 1 else ''}): {summary}"
    return summary


def compute_fingerprint(corpus: Corpus, params: Optional[FingerprintParams] = None) -> Fingerprint:
    """Derive the voice fingerprint for a corpus. Never raises."""
    params = params or FingerprintParams()
    texts = corpus.texts()
    evidence = len(texts)

    features = _extract_features(texts, params)
    scores = _tone_scores(features, params)
    keywords = extract_keywords(texts, corpus.handle, params)
    low_confidence = evidence < params.min_corpus_size or features is None

    if low_confidence:
        logger.info(f"Fingerprint for '{corpus.handle}' built from limited evidence ({evidence} item(s))")

    return Fingerprint(
        tone_scores=scores,
        formality=scores["formality"],
        energy=scores["energy"],
        confidence=scores["confidence"],
        keywords=tuple(keywords),
        voice_summary=_voice_summary(scores, keywords, evidence, low_confidence),
        evidence_count=evidence,
        low_confidence=low_confidence,
    )


# ── Prompt summaries ──

class FingerprintSummary(BaseModel):
    voice_description: str
    key_rules: List[str] = []
    anti_rules: List[str] = []
    signature_markers: List[str] = []


def summarize_fingerprint(fp: Fingerprint) -> FingerprintSummary:
    """Compress a fingerprint into rules suitable for a generation prompt."""
    rules = []
    anti = []

    if fp.formality >= 65:
        rules.append("Use complete, well-formed sentences")
        anti.append("Never use slang or emoji")
    elif fp.formality <= 35:
        rules.append("Write conversationally; contractions and fragments are fine")
        anti.append("Avoid corporate phrasing")

    if fp.energy >= 65:
        rules.append("Keep the pace up with short, punchy lines")
    elif fp.energy <= 35:
        rules.append("Keep a calm, even pace")
        anti.append("Avoid exclamation marks and hype")

    if fp.confidence >= 65:
        rules.append("Make strong, direct claims without hedging")
        anti.append("Avoid hedges like 'maybe' or 'I think'")
    elif fp.confidence <= 35:
        rules.append("Acknowledge complexity and qualify statements")

    warmth = fp.tone_scores.get("warmth", 50.0)
    if warmth >= 65:
        rules.append("Address the reader directly as 'you'")

    if fp.keywords:
        rules.append(f"Naturally incorporate words like: {', '.join(fp.keywords[:5])}")

    anti.extend(["Never open with 'In today's fast-paced world'", "Never use 'excited to announce'"])

    return FingerprintSummary(
        voice_description=fp.voice_summary,
        key_rules=rules[:8],
        anti_rules=anti[:5],
        signature_markers=[f"Returns to the theme of '{kw}'" for kw in fp.keywords[:4]],
    )


def format_fingerprint_for_prompt(fp: Fingerprint) -> str:
    summary = summarize_fingerprint(fp)
    tone = ", ".join(f"{dim} {score:.0f}/100" for dim, score in fp.tone_scores.items())
    lines = [
        "VOICE FINGERPRINT:",
        summary.voice_description,
        f"Tone: {tone}",
        "",
        "VOICE RULES (match these):",
        *[f"- {r}" for r in summary.key_rules],
        "",
        "VOICE ANTI-RULES (never do these):",
        *[f"- {r}" for r in summary.anti_rules],
    ]
    if summary.signature_markers:
        lines += ["", "SIGNATURE MARKERS:", *[f"- {m}" for m in summary.signature_markers]]
    return "\n".join(lines)


# ── Authenticity check ──

_DIRECTION_HINTS = {
    "formality": ("Loosen the phrasing; use contractions", "Tighten the phrasing; drop slang"),
    "energy": ("Calm it down; fewer exclamation marks", "Add momentum; shorter lines"),
    "confidence": ("Soften absolute claims", "Cut the hedging; state the point directly"),
    "warmth": ("Less direct address", "Speak to the reader as 'you'"),
}


def score_authenticity(text: str, fp: Fingerprint, params: Optional[FingerprintParams] = None) -> AuthenticityScore:
    """How closely a draft matches a reference voice fingerprint (0-100)."""
    params = params or FingerprintParams()
    draft_scores = tone_scores_for_text(text, params)

    dimensions = {}
    flags = []
    for dim in DIMENSIONS:
        reference = fp.tone_scores.get(dim, 50.0)
        diff = draft_scores[dim] - reference
        dimensions[dim] = round(100 - abs(diff), 1)
        if abs(diff) >= 25:
            too_high, too_low = _DIRECTION_HINTS[dim]
            flags.append(AuthenticityFlag(
                dimension=dim,
                severity="high" if abs(diff) >= 40 else "medium",
                reason=f"Draft {dim} is {draft_scores[dim]:.0f} vs {reference:.0f} for this voice",
                suggestion=too_high if diff > 0 else too_low,
            ))

    reference_keywords = set(fp.keywords[:10])
    draft_terms = set(_terms(text))
    overlap = 0.0
    if reference_keywords:
        overlap = min(len(reference_keywords & draft_terms) / min(len(reference_keywords), 5), 1.0)

    lowered = text.lower()
    cliches = [p for p in GENERIC_PHRASES if p in lowered]
    for phrase in cliches:
        flags.append(AuthenticityFlag(
            dimension="vocabulary",
            severity="medium",
            reason=f"Generic phrase '{phrase}'",
            suggestion="Replace with wording this voice actually uses",
        ))

    mean_dim = sum(dimensions.values()) / len(dimensions)
    overall = 0.8 * mean_dim + 0.2 * overlap * 100 - 5 * len(cliches)
    overall = round(min(max(overall, 0.0), 100.0), 1)

    if overall >= 85:
        verdict = "authentic"
    elif overall >= 70:
        verdict = "mostly_authentic"
    elif overall >= 50:
        verdict = "needs_work"
    else:
        verdict = "generic"

    return AuthenticityScore(
        overall=overall,
        dimensions=dimensions,
        keyword_overlap=round(overlap * 100, 1),
        verdict=verdict,
        flags=flags,
        summary=f"{verdict.replace('_', ' ').capitalize()}: {len(flags)} flag(s), keyword overlap {overlap * 100:.0f}%.",
    )
