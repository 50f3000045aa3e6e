from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routers.reports import router as reports_router
from config import settings
from database import SqliteReportSink
from services.agents.registry import AGENT_REGISTRY, load_agent_configs
from services.cache import InMemoryReportCache
from services.conductor import Conductor, ConductorOptions
from services.generation import GeminiTextGenerator
from services.sources.registry import build_default_connectors
import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)

AGENT_SYSTEM_INSTRUCTION = (
    "You are a brand strategist analysing a creator's public presence. "
    "Ground every claim in the supplied signals and voice fingerprint. "
    "Respond with a single JSON object and nothing else."
)


def build_conductor() -> Conductor:
    sink = SqliteReportSink(settings.report_db_path) if settings.report_db_path else None
    return Conductor(
        connectors=build_default_connectors(settings),
        agents=AGENT_REGISTRY,
        agent_configs=load_agent_configs(settings.agent_config_path or None),
        generator=GeminiTextGenerator(system_instruction=AGENT_SYSTEM_INSTRUCTION),
        cache=InMemoryReportCache(),
        sink=sink,
        options=ConductorOptions.from_settings(settings),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let background runs and pending sink writes finish before exit
    await app.state.conductor.drain()


app = FastAPI(
    title="Brand Intelligence Engine",
    description="Voice fingerprint and brand analysis for a social handle, from public signals + Gemini",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=r"^chrome-extension://.*$",
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.state.conductor = build_conductor()
app.include_router(reports_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8001, reload=True)
