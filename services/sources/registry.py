from typing import List, Optional

import httpx

from config import Settings
from services.rate_limit import RequestBudget
from services.sources.base import SourceConnector
from services.sources.reddit import RedditConnector
from services.sources.serper import WebSearchConnector
from services.sources.twitter import SocialTimelineConnector
from services.sources.youtube import VideoPlatformConnector


def build_default_connectors(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[SourceConnector]:
    """All four connectors in source-priority order, each with its own request budget."""
    window = settings.rate_window_sec
    timeout = settings.connector_timeout_sec
    return [
        SocialTimelineConnector(
            bearer_token=settings.x_bearer_token,
            budget=RequestBudget(settings.social_timeline_requests_per_window, window),
            transport=transport,
            http_timeout=timeout,
        ),
        WebSearchConnector(
            api_key=settings.serper_api_key,
            budget=RequestBudget(settings.web_search_requests_per_window, window),
            transport=transport,
            http_timeout=timeout,
        ),
        VideoPlatformConnector(
            api_key=settings.youtube_api_key,
            budget=RequestBudget(settings.video_platform_requests_per_window, window),
            transport=transport,
            http_timeout=timeout,
            fetch_transcripts=settings.video_fetch_transcripts,
            max_transcript_videos=settings.max_transcript_videos,
            max_transcript_chars=settings.max_transcript_chars,
        ),
        RedditConnector(
            user_agent=settings.reddit_user_agent,
            budget=RequestBudget(settings.reddit_requests_per_window, window),
            transport=transport,
            http_timeout=timeout,
        ),
    ]
