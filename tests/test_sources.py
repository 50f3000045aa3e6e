import asyncio

import httpx

from conftest import StubConnector
from config import Settings
from models.internal import SourceKind, SourceStatus
from services.errors import SourceUnavailable
from services.rate_limit import RequestBudget
from services.sources.reddit import RedditConnector
from services.sources.registry import build_default_connectors
from services.sources.serper import WebSearchConnector
from services.sources.twitter import SocialTimelineConnector
from services.sources.youtube import VideoPlatformConnector


def run(coro):
    return asyncio.run(coro)


def twitter_handler(request: httpx.Request) -> httpx.Response:
    assert request.headers["Authorization"] == "Bearer test-token"
    if request.url.path.endswith("/users/by/username/alice"):
        return httpx.Response(200, json={"data": {"id": "42", "username": "Alice"}})
    if request.url.path.endswith("/users/42/tweets"):
        assert request.url.params["exclude"] == "retweets,replies"
        return httpx.Response(200, json={"data": [
            {"id": "1", "text": "Shipped it!", "created_at": "2026-02-01T10:00:00.000Z",
             "public_metrics": {"like_count": 10, "retweet_count": 2, "reply_count": 1, "quote_count": 0}},
            {"id": "2", "text": "   ", "created_at": "2026-02-02T10:00:00.000Z", "public_metrics": {}},
        ]})
    return httpx.Response(404)


def test_social_timeline_parses_tweets():
    connector = SocialTimelineConnector("test-token", transport=httpx.MockTransport(twitter_handler))
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert result.status == SourceStatus.OK
    assert len(result.signals) == 1  # blank tweet dropped
    tweet = result.signals[0]
    assert tweet.source_kind == SourceKind.SOCIAL_TIMELINE
    assert tweet.metadata.url == "https://x.com/Alice/status/1"
    assert tweet.metadata.engagement["likes"] == 10
    assert tweet.total_engagement == 13
    assert tweet.timestamp.tzinfo is not None


def test_missing_credentials_mean_unavailable_without_requests():
    def handler(request):
        raise AssertionError("no request expected")

    connector = SocialTimelineConnector("", transport=httpx.MockTransport(handler))
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert result.status == SourceStatus.UNAVAILABLE
    assert result.cause == "not configured"
    assert result.signals == ()


def test_http_429_becomes_rate_limited():
    transport = httpx.MockTransport(lambda request: httpx.Response(429, headers={"retry-after": "30"}))
    connector = WebSearchConnector(api_key="key", transport=transport)
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert result.status == SourceStatus.RATE_LIMITED


def test_http_error_status_becomes_unavailable():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    connector = WebSearchConnector(api_key="key", transport=transport)
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert result.status == SourceStatus.UNAVAILABLE
    assert "503" in result.cause


def test_transport_failure_becomes_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    connector = WebSearchConnector(api_key="key", transport=httpx.MockTransport(handler))
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert result.status == SourceStatus.UNAVAILABLE
    assert result.cause.startswith("request failed")


def test_malformed_payload_becomes_unavailable():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"data": "not a listing"}))
    connector = RedditConnector("test-agent", transport=transport)
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert result.status == SourceStatus.UNAVAILABLE
    assert result.cause == "malformed response"


def test_non_object_json_becomes_unavailable():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=[]))
    connectors = [
        SocialTimelineConnector("test-token", transport=transport),
        WebSearchConnector(api_key="key", transport=transport),
        RedditConnector("test-agent", transport=transport),
    ]

    for connector in connectors:
        result = run(connector.fetch("alice", limit=10, timeout=5))
        assert result.status == SourceStatus.UNAVAILABLE, connector.kind
        assert result.cause == "malformed response"


def test_slow_connector_times_out():
    connector = StubConnector(SourceKind.REDDIT, delay=5.0)
    result = run(connector.fetch("alice", limit=10, timeout=0.05))

    assert result.status == SourceStatus.UNAVAILABLE
    assert result.cause == "timeout"


def test_source_unavailable_is_converted():
    connector = StubConnector(SourceKind.VIDEO_PLATFORM, error=SourceUnavailable("video_platform", "channel removed"))
    result = run(connector.fetch("alice", limit=10, timeout=1))

    assert result.status == SourceStatus.UNAVAILABLE
    assert result.cause == "channel removed"


def test_exhausted_budget_fails_fast():
    now = [0.0]
    budget = RequestBudget(max_requests=1, window_sec=60, clock=lambda: now[0])
    connector = StubConnector(SourceKind.WEB_SEARCH, signals=[])
    connector.budget = budget

    first = run(connector.fetch("alice", limit=10, timeout=1))
    second = run(connector.fetch("alice", limit=10, timeout=1))

    assert first.status == SourceStatus.OK
    assert second.status == SourceStatus.RATE_LIMITED
    assert connector.calls == 1

    now[0] = 61.0
    third = run(connector.fetch("alice", limit=10, timeout=1))
    assert third.status == SourceStatus.OK


def test_request_budget_window():
    now = [100.0]
    budget = RequestBudget(max_requests=2, window_sec=10, clock=lambda: now[0])

    assert budget.try_acquire() and budget.try_acquire()
    assert not budget.try_acquire()
    assert budget.remaining == 0
    assert budget.reset_in == 10

    now[0] = 110.0
    assert budget.remaining == 2
    assert budget.try_acquire()


def test_serper_results():
    def handler(request):
        assert request.headers["X-API-KEY"] == "key"
        return httpx.Response(200, json={"organic": [
            {"title": "Alice on growth", "snippet": "A talk about onboarding.", "link": "https://www.example.com/a",
             "date": "3 days ago"},
            {"title": "Alice interview", "link": "https://news.example.org/b"},
        ]})

    connector = WebSearchConnector(api_key="key", transport=httpx.MockTransport(handler))
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert [s.text for s in result.signals] == ["Alice on growth. A talk about onboarding", "Alice interview"]
    assert result.signals[0].metadata.author == "example.com"
    assert result.signals[0].timestamp < result.signals[1].timestamp


def test_search_falls_back_to_duckduckgo_without_key():
    html = """
    <div class="result">
      <a class="result__a" href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fblog.example.com%2Fpost&rut=x">Alice's blog</a>
      <a class="result__snippet">Notes on pricing.</a>
    </div>
    <div class="result">
      <a class="result__a" href="https://blog.example.com/post">Duplicate</a>
    </div>
    """

    def handler(request):
        assert request.url.host == "html.duckduckgo.com"
        return httpx.Response(200, text=html)

    connector = WebSearchConnector(transport=httpx.MockTransport(handler))
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert len(result.signals) == 1
    assert result.signals[0].metadata.url == "https://blog.example.com/post"
    assert result.signals[0].text == "Alice's blog. Notes on pricing."


def test_reddit_falls_back_to_search_for_unknown_user():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        if request.url.path.startswith("/user/"):
            return httpx.Response(404)
        return httpx.Response(200, json={"data": {"children": [
            {"data": {"title": "Anyone tried alice's pricing template?", "selftext": "Looks useful.",
                      "created_utc": 1767225600, "permalink": "/r/saas/comments/1", "score": 12,
                      "num_comments": 4, "author": "someone"}},
        ]}})

    connector = RedditConnector("test-agent", transport=httpx.MockTransport(handler))
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert paths == ["/user/alice/submitted.json", "/search.json"]
    assert result.signals[0].total_engagement == 16
    assert result.signals[0].metadata.url == "https://reddit.com/r/saas/comments/1"


def test_youtube_quota_is_rate_limited():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(403, json={"error": {"errors": [{"reason": "quotaExceeded"}]}})
    )
    connector = VideoPlatformConnector(api_key="key", transport=transport)
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert result.status == SourceStatus.RATE_LIMITED


def test_youtube_videos_with_statistics():
    def handler(request):
        if request.url.path.endswith("/search"):
            return httpx.Response(200, json={"items": [
                {"id": {"videoId": "abc123def45"},
                 "snippet": {"title": "Pricing teardown", "description": "Live review",
                             "publishedAt": "2026-01-10T00:00:00Z", "channelTitle": "Alice"}},
                {"id": {"channelId": "skip-me"}, "snippet": {"title": "channel"}},
            ]})
        return httpx.Response(200, json={"items": [
            {"id": "abc123def45", "statistics": {"viewCount": "1000", "likeCount": "50", "commentCount": "5"}},
        ]})

    connector = VideoPlatformConnector(api_key="key", transport=httpx.MockTransport(handler))
    result = run(connector.fetch("alice", limit=10, timeout=5))

    assert len(result.signals) == 1
    assert result.signals[0].text == "Pricing teardown. Live review"
    assert result.signals[0].metadata.engagement == {"views": 1000, "likes": 50, "comments": 5}


def test_default_connectors_in_priority_order():
    connectors = build_default_connectors(Settings(x_bearer_token="", youtube_api_key="yt"))

    assert [c.kind for c in connectors] == [
        SourceKind.SOCIAL_TIMELINE, SourceKind.WEB_SEARCH, SourceKind.VIDEO_PLATFORM, SourceKind.REDDIT,
    ]
    status = {s["source"]: s for s in (c.status() for c in connectors)}
    assert status["social_timeline"]["enabled"] is False
    assert status["video_platform"]["enabled"] is True
    assert status["reddit"]["budget_remaining"] == Settings().reddit_requests_per_window
