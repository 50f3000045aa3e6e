from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    x_bearer_token: str = ""
    youtube_api_key: str = ""
    serper_api_key: str = ""
    gemini_api_key: str = "PLACEHOLDER_GEMINI_KEY"
    jwt_secret_key: str = "change-me"
    reddit_user_agent: str = "BrandIntel Research Agent/1.0"
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Orchestration limits
    max_connector_concurrency: int = 4
    max_agent_concurrency: int = 4
    fetch_timeout_sec: float = 20.0  # whole FetchingSources stage
    connector_timeout_sec: float = 15.0  # single connector call
    agent_timeout_sec: float = 45.0  # single agent call
    agent_stage_timeout_sec: float = 60.0  # whole RunningAgents stage
    cache_ttl_sec: float = 3600.0
    min_corpus_size: int = 5
    items_per_source: int = 25
    max_corpus_items: int = 100

    # Per-connector request budgets (fixed window)
    rate_window_sec: float = 60.0
    social_timeline_requests_per_window: int = 15
    web_search_requests_per_window: int = 30
    video_platform_requests_per_window: int = 20
    reddit_requests_per_window: int = 30

    # Video enrichment
    video_fetch_transcripts: bool = False
    max_transcript_videos: int = 2
    max_transcript_chars: int = 4000

    # Agents
    agent_config_path: str = ""  # optional JSON overrides for AgentConfig

    # Persistence sink (empty disables it)
    report_db_path: str = ""

    # Gemini settings
    gemini_model: str = "gemini-2.5-flash"
    gemini_max_output_tokens: int = 2048
    gemini_temperature: float = 0.3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
