from conftest import alice_search, alice_social, make_corpus, make_signal
from models.internal import Corpus, SourceKind
from services.fingerprint import (
    FingerprintParams,
    compute_fingerprint,
    extract_keywords,
    format_fingerprint_for_prompt,
    score_authenticity,
    summarize_fingerprint,
    tone_scores_for_text,
)


def alice_corpus():
    return make_corpus(alice_social() + alice_search())


def test_fingerprint_is_deterministic():
    corpus = alice_corpus()
    first = compute_fingerprint(corpus)
    second = compute_fingerprint(alice_corpus())
    assert first == second


def test_fingerprint_scores_are_in_range():
    fp = compute_fingerprint(alice_corpus())

    assert set(fp.tone_scores) == {"formality", "energy", "confidence", "warmth"}
    for score in fp.tone_scores.values():
        assert 0 <= score <= 100
    assert fp.formality == fp.tone_scores["formality"]
    assert fp.evidence_count == 8
    assert not fp.low_confidence
    assert fp.keywords


def test_small_corpus_is_flagged_low_confidence():
    corpus = make_corpus([make_signal(SourceKind.SOCIAL_TIMELINE, "Just one post about pricing.")])
    fp = compute_fingerprint(corpus)

    assert fp.low_confidence
    assert fp.voice_summary.startswith("Limited evidence")
    assert fp.evidence_count == 1


def test_min_corpus_size_is_tunable():
    corpus = make_corpus(alice_social()[:2])
    assert compute_fingerprint(corpus).low_confidence
    assert not compute_fingerprint(corpus, FingerprintParams(min_corpus_size=2)).low_confidence


def test_empty_corpus_yields_neutral_fingerprint():
    fp = compute_fingerprint(Corpus(handle="nobody"))

    assert fp.low_confidence
    assert fp.evidence_count == 0
    assert fp.keywords == ()
    assert all(score == 50.0 for score in fp.tone_scores.values())
    assert fp.voice_summary.startswith("Limited evidence")


def test_keywords_exclude_stop_words_and_handle():
    texts = [
        "Pricing experiments beat pricing opinions. #pricing",
        "Alice here: onboarding experiments again",
        "The onboarding checklist is live",
    ]
    keywords = extract_keywords(texts, handle="alice")

    # spread across items outweighs repetition inside one item
    assert keywords[:3] == ["experiments", "onboarding", "pricing"]
    assert "alice" not in keywords
    assert "the" not in keywords
    assert "here" not in keywords


def test_keywords_ties_are_alphabetical():
    assert extract_keywords(["zebra apple mango"]) == ["apple", "mango", "zebra"]


def test_dimension_weights_shift_scores():
    text = "This will definitely work. It is absolutely proven."
    default = tone_scores_for_text(text)
    muted = tone_scores_for_text(
        text,
        FingerprintParams(dimension_weights={"confidence": {}, "formality": {}, "energy": {}, "warmth": {}}),
    )
    assert default["confidence"] > 50
    assert muted["confidence"] == 50.0


def test_hedging_lowers_confidence():
    hedged = tone_scores_for_text("Maybe this works. I think it might, perhaps. Not sure.")
    certain = tone_scores_for_text("This works. It definitely does. Absolutely proven.")
    assert hedged["confidence"] < certain["confidence"]


def test_summary_and_prompt_format():
    fp = compute_fingerprint(alice_corpus())
    summary = summarize_fingerprint(fp)
    prompt = format_fingerprint_for_prompt(fp)

    assert summary.voice_description == fp.voice_summary
    assert "VOICE FINGERPRINT:" in prompt
    assert "VOICE ANTI-RULES" in prompt
    assert any("excited to announce" in rule for rule in summary.anti_rules)


def test_authenticity_prefers_drafts_in_the_same_voice():
    fp = compute_fingerprint(alice_corpus())

    on_voice = score_authenticity(
        "Shipped a pricing experiment this week. Activation is up, onboarding is simpler. What should we test next?",
        fp,
    )
    generic = score_authenticity(
        "In today's fast-paced world, we are excited to announce a game-changer! "
        "Unlock the power of synergy!!! Let's dive in!!!",
        fp,
    )

    assert on_voice.overall > generic.overall
    assert generic.verdict in ("needs_work", "generic")
    assert any(flag.dimension == "vocabulary" for flag in generic.flags)
    assert on_voice.keyword_overlap > 0
    assert set(on_voice.dimensions) == {"formality", "energy", "confidence", "warmth"}
