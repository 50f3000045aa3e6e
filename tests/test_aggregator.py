import pytest

from conftest import alice_search, alice_social, make_signal
from models.internal import SourceKind, SourceResult
from services.aggregator import RankingWeights, aggregate
from services.errors import InsufficientSignal
from utils.text import dedup_key


def alice_results():
    return [
        SourceResult.ok(SourceKind.SOCIAL_TIMELINE, alice_social()),
        SourceResult.ok(SourceKind.WEB_SEARCH, alice_search()),
        SourceResult.unavailable(SourceKind.VIDEO_PLATFORM, "upstream returned HTTP 500"),
        SourceResult.unavailable(SourceKind.REDDIT, "timeout"),
    ]


def test_alice_two_of_four_sources_builds_full_corpus():
    corpus = aggregate(alice_results(), "alice")

    assert len(corpus) == 8
    assert corpus.sources_used == (SourceKind.SOCIAL_TIMELINE, SourceKind.WEB_SEARCH)
    assert set(corpus.source_failures) == {SourceKind.VIDEO_PLATFORM, SourceKind.REDDIT}
    assert "timeout" in corpus.source_failures[SourceKind.REDDIT]


def test_all_sources_failed_raises_insufficient_signal():
    results = [
        SourceResult.unavailable(SourceKind.SOCIAL_TIMELINE, "not configured"),
        SourceResult.rate_limited(SourceKind.WEB_SEARCH),
        SourceResult.unavailable(SourceKind.VIDEO_PLATFORM, "timeout"),
        SourceResult.unavailable(SourceKind.REDDIT, "upstream returned HTTP 503"),
    ]
    with pytest.raises(InsufficientSignal) as exc_info:
        aggregate(results, "bob")

    assert exc_info.value.handle == "bob"
    assert set(exc_info.value.failures) == {"social_timeline", "web_search", "video_platform", "reddit"}


def test_single_successful_empty_source_is_not_insufficient():
    corpus = aggregate(
        [
            SourceResult.ok(SourceKind.REDDIT, []),
            SourceResult.unavailable(SourceKind.WEB_SEARCH, "timeout"),
        ],
        "carol",
    )
    assert len(corpus) == 0
    assert corpus.sources_used == (SourceKind.REDDIT,)


def test_duplicates_keep_earliest_copy():
    late = make_signal(SourceKind.SOCIAL_TIMELINE, "Big launch today: https://t.co/abc", hours_ago=1)
    early = make_signal(SourceKind.WEB_SEARCH, "big launch TODAY!", hours_ago=10)
    corpus = aggregate(
        [
            SourceResult.ok(SourceKind.SOCIAL_TIMELINE, [late]),
            SourceResult.ok(SourceKind.WEB_SEARCH, [early]),
        ],
        "alice",
    )

    assert len(corpus) == 1
    assert corpus.items[0] == early


def test_emoji_and_link_only_items_are_kept():
    corpus = aggregate(
        [SourceResult.ok(SourceKind.SOCIAL_TIMELINE, [
            make_signal(SourceKind.SOCIAL_TIMELINE, "🔥🔥🔥", hours_ago=1),
            make_signal(SourceKind.SOCIAL_TIMELINE, "https://example.com/launch", hours_ago=2),
            make_signal(SourceKind.SOCIAL_TIMELINE, "Shipped it today.", hours_ago=3),
            make_signal(SourceKind.SOCIAL_TIMELINE, "🔥🔥🔥 ", hours_ago=4),
        ])],
        "alice",
    )

    assert sorted(s.text for s in corpus.items) == sorted(["🔥🔥🔥 ", "https://example.com/launch", "Shipped it today."])


def test_dedup_key_falls_back_to_raw_text():
    assert dedup_key("Big  launch TODAY!") == "big launch today"
    assert dedup_key("  🔥🔥🔥\n") == "🔥🔥🔥"
    assert dedup_key("HTTPS://Example.com/x") == "https://example.com/x"
    assert dedup_key("   ") == ""


def test_ties_break_by_source_priority_then_fetch_order():
    reddit = make_signal(SourceKind.REDDIT, "reddit post")
    search_a = make_signal(SourceKind.WEB_SEARCH, "search result a")
    search_b = make_signal(SourceKind.WEB_SEARCH, "search result b")
    social = make_signal(SourceKind.SOCIAL_TIMELINE, "timeline post")

    corpus = aggregate(
        [
            SourceResult.ok(SourceKind.REDDIT, [reddit]),
            SourceResult.ok(SourceKind.WEB_SEARCH, [search_a, search_b]),
            SourceResult.ok(SourceKind.SOCIAL_TIMELINE, [social]),
        ],
        "alice",
    )

    assert [s.text for s in corpus.items] == ["timeline post", "search result a", "search result b", "reddit post"]


def test_ranking_prefers_recent_and_engaged_items():
    old_quiet = make_signal(SourceKind.SOCIAL_TIMELINE, "old quiet post", hours_ago=24 * 60)
    new_quiet = make_signal(SourceKind.SOCIAL_TIMELINE, "new quiet post", hours_ago=0)
    new_loud = make_signal(SourceKind.SOCIAL_TIMELINE, "new loud post", hours_ago=0, engagement={"likes": 900})

    corpus = aggregate([SourceResult.ok(SourceKind.SOCIAL_TIMELINE, [old_quiet, new_quiet, new_loud])], "alice")

    assert [s.text for s in corpus.items] == ["new loud post", "new quiet post", "old quiet post"]


def test_order_does_not_depend_on_connector_completion_order():
    forward = aggregate(alice_results(), "alice")
    backward = aggregate(list(reversed(alice_results())), "alice")
    assert forward.items == backward.items


def test_max_items_and_custom_weights():
    corpus = aggregate(
        alice_results(),
        "alice",
        max_items=3,
        weights=RankingWeights(recency_weight=1.0, engagement_weight=0.0),
    )
    assert len(corpus) == 3
    # pure recency: newest first
    assert corpus.items[0].text == alice_social()[0].text
