import asyncio
import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import (
    GENERIC_DRAFT,
    ON_VOICE_DRAFT,
    FixedAgent,
    ScriptedGenerator,
    StubConnector,
    alice_search,
    alice_social,
    fast_options,
)
from main import lifespan
from models.internal import AgentKind, SourceKind
from routers.reports import router
from services.cache import InMemoryReportCache
from services.conductor import Conductor
from services.errors import SourceUnavailable
from utils.auth import create_jwt


def build_app(connectors=None, generator=None, sink=None, app_lifespan=None):
    connectors = connectors if connectors is not None else [
        StubConnector(SourceKind.SOCIAL_TIMELINE, signals=alice_social()),
        StubConnector(SourceKind.WEB_SEARCH, signals=alice_search()),
        StubConnector(SourceKind.VIDEO_PLATFORM, error=SourceUnavailable("video_platform", "down")),
        StubConnector(SourceKind.REDDIT, error=SourceUnavailable("reddit", "down")),
    ]
    agents = [FixedAgent(kind, 60.0) for kind in AgentKind]
    app = FastAPI(lifespan=app_lifespan)
    app.state.conductor = Conductor(
        connectors=connectors,
        agents=agents,
        agent_configs={a.kind: a.default_config for a in agents},
        generator=generator if generator is not None else ScriptedGenerator(),
        cache=InMemoryReportCache(),
        sink=sink,
        options=fast_options(),
    )
    app.include_router(router)
    return app


@pytest.fixture
def client():
    with TestClient(build_app()) as c:
        yield c


def test_create_then_read_report(client):
    resp = client.post("/api/v1/reports/@Alice")
    assert resp.status_code == 200
    body = resp.json()
    assert body["handle"] == "alice"
    assert body["overall_score"] == 60.0
    assert set(body["per_agent"]) == {"authority", "campaign", "content", "analytics"}

    resp = client.get("/api/v1/reports/alice")
    assert resp.status_code == 200
    assert resp.json()["generated_at"] == body["generated_at"]


def test_read_unknown_report_is_404(client):
    assert client.get("/api/v1/reports/nobody").status_code == 404


def test_read_in_progress_is_202():
    app = build_app()
    app.state.conductor._in_flight["alice"] = 1
    with TestClient(app) as c:
        resp = c.get("/api/v1/reports/alice")
    assert resp.status_code == 202
    assert resp.json() == {"handle": "alice", "status": "in_progress"}


def test_insufficient_signal_is_422():
    connectors = [
        StubConnector(kind, error=SourceUnavailable(kind.value, "down"))
        for kind in (SourceKind.SOCIAL_TIMELINE, SourceKind.WEB_SEARCH, SourceKind.VIDEO_PLATFORM, SourceKind.REDDIT)
    ]
    with TestClient(build_app(connectors)) as c:
        resp = c.post("/api/v1/reports/bob")

    assert resp.status_code == 422
    assert resp.json()["detail"]["error"] == "Insufficient signal"
    assert resp.json()["detail"]["state_reached"] == "aggregating"


def test_invalid_handle_is_422(client):
    resp = client.post("/api/v1/reports/bad%20handle!")
    assert resp.status_code == 422


def test_bad_token_is_treated_as_anonymous(client):
    resp = client.post("/api/v1/reports/alice", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 200

    token = create_jwt({"email": "analyst@example.com"})
    resp = client.post("/api/v1/reports/alice", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


def test_stream_emits_sse_events(client):
    resp = client.post("/api/v1/reports/alice/stream")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")

    events = [
        json.loads(line[len("data: "):])
        for line in resp.text.splitlines()
        if line.startswith("data: ")
    ]
    assert events[0]["type"] == "state"
    assert [e["type"] for e in events].count("agent_report") == 4
    assert events[-1]["type"] == "result"
    assert "elapsed" in events[-1]


def test_authenticity_requires_a_report_first(client):
    payload = {"handle": "alice", "content": "Shipped a pricing experiment this week."}
    assert client.post("/api/v1/voice/authenticity", json=payload).status_code == 404

    client.post("/api/v1/reports/alice")
    resp = client.post("/api/v1/voice/authenticity", json=payload)
    assert resp.status_code == 200
    body = resp.json()
    assert 0 <= body["overall"] <= 100
    assert body["verdict"] in ("authentic", "mostly_authentic", "needs_work", "generic")


def test_health_lists_sources_and_agents(client):
    body = client.get("/api/v1/health").json()
    assert body["status"] == "ok"
    assert [s["source"] for s in body["sources"]] == [
        "social_timeline", "web_search", "video_platform", "reddit",
    ]
    assert all(a["enabled"] for a in body["agents"])


def test_rewrite_requires_a_report_then_rewrites():
    generator = ScriptedGenerator(text=json.dumps({"rewritten_content": ON_VOICE_DRAFT, "changes_applied": []}))
    payload = {"handle": "@alice", "content": GENERIC_DRAFT, "context": "launch announcement thread"}

    with TestClient(build_app(generator=generator)) as c:
        assert c.post("/api/v1/voice/rewrite", json=payload).status_code == 404

        c.post("/api/v1/reports/alice")
        resp = c.post("/api/v1/voice/rewrite", json=payload)

    assert resp.status_code == 200
    body = resp.json()
    assert body["content"] == ON_VOICE_DRAFT
    assert body["improved"] is True
    assert body["score"]["overall"] > body["original_score"]["overall"]
    assert "launch announcement thread" in generator.prompts[0]


def test_rewrite_validates_attempts(client):
    payload = {"handle": "alice", "content": GENERIC_DRAFT, "max_attempts": 0}
    assert client.post("/api/v1/voice/rewrite", json=payload).status_code == 422


def test_shutdown_drains_pending_sink_writes():
    stored = []

    class SlowSink:
        async def store(self, handle, report):
            await asyncio.sleep(0.2)
            stored.append(handle)

    with TestClient(build_app(sink=SlowSink(), app_lifespan=lifespan)) as c:
        assert c.post("/api/v1/reports/alice").status_code == 200

    assert stored == ["alice"]
