import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from youtube_transcript_api import YouTubeTranscriptApi

from models.internal import RawSignal, SignalMetadata, SourceKind
from services.errors import RateLimited
from services.rate_limit import RequestBudget
from services.sources.base import SourceConnector
from utils.text import clean_transcript_text, parse_timestamp, truncate

logger = logging.getLogger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"


def _fetch_transcript_sync(video_id: str, max_chars: int) -> Optional[str]:
    """Existing English captions for a video, or None."""
    try:
        transcript = YouTubeTranscriptApi().fetch(video_id, languages=["en"])
        snippets = transcript.snippets
        if not snippets:
            return None
        text = clean_transcript_text(" ".join(s.text for s in snippets))
        return truncate(text, max_chars)
    except Exception as e:
        logger.info(f"No transcript for {video_id}: {e}")
        return None


class VideoPlatformConnector(SourceConnector):
    """
    Recent videos matching the handle from the YouTube Data API, with view/like/comment
    counts. Caption text can be appended for the first few videos.
    """

    kind = SourceKind.VIDEO_PLATFORM
    display_name = "YouTube"

    def __init__(
        self,
        api_key: str,
        budget: Optional[RequestBudget] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_timeout: float = 15.0,
        fetch_transcripts: bool = False,
        max_transcript_videos: int = 2,
        max_transcript_chars: int = 4000,
    ):
        super().__init__(budget=budget, transport=transport, http_timeout=http_timeout)
        self._api_key = api_key
        self._fetch_transcripts = fetch_transcripts
        self._max_transcript_videos = max_transcript_videos
        self._max_transcript_chars = max_transcript_chars

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def _check_response(self, resp: httpx.Response) -> None:
        # Quota exhaustion comes back as 403 rather than 429
        if resp.status_code == 403 and "quota" in resp.text.lower():
            raise RateLimited(self.kind.value, "daily quota exceeded")
        super()._check_response(resp)

    async def _fetch(self, handle: str, limit: int) -> List[RawSignal]:
        search_params = {
            "part": "snippet",
            "q": handle,
            "type": "video",
            "order": "date",
            "maxResults": str(min(limit, 50)),
            "key": self._api_key,
        }
        async with self._client() as client:
            resp = await client.get(f"{YOUTUBE_API_BASE}/search", params=search_params)
            self._check_response(resp)
            items = [
                i for i in resp.json().get("items", [])
                if i.get("id", {}).get("videoId")
            ]
            if not items:
                return []

            video_ids = [i["id"]["videoId"] for i in items]
            resp = await client.get(
                f"{YOUTUBE_API_BASE}/videos",
                params={"part": "statistics", "id": ",".join(video_ids), "key": self._api_key},
            )
            self._check_response(resp)
            stats = {v["id"]: v.get("statistics", {}) for v in resp.json().get("items", [])}

        transcripts = {}
        if self._fetch_transcripts:
            transcripts = await self._fetch_transcripts_for(video_ids[: self._max_transcript_videos])

        fetched_at = datetime.now(timezone.utc)
        signals = []
        for item in items:
            video_id = item["id"]["videoId"]
            snippet = item.get("snippet", {})
            stat = stats.get(video_id, {})
            title = snippet.get("title", "")
            description = snippet.get("description", "")
            text = f"{title}. {description}".strip(". ") if description else title
            if transcripts.get(video_id):
                text = f"{text}\n\n{transcripts[video_id]}"

            signals.append(
                RawSignal(
                    source_kind=self.kind,
                    handle=handle,
                    timestamp=parse_timestamp(snippet.get("publishedAt")) or fetched_at,
                    text=text,
                    metadata=SignalMetadata(
                        url=f"https://www.youtube.com/watch?v={video_id}",
                        title=title,
                        author=snippet.get("channelTitle", ""),
                        engagement={
                            "views": int(stat.get("viewCount", 0)),
                            "likes": int(stat.get("likeCount", 0)),
                            "comments": int(stat.get("commentCount", 0)),
                        },
                    ),
                )
            )
        return signals

    async def _fetch_transcripts_for(self, video_ids: List[str]) -> dict:
        loop = asyncio.get_running_loop()
        results = await asyncio.gather(
            *[
                loop.run_in_executor(None, _fetch_transcript_sync, vid, self._max_transcript_chars)
                for vid in video_ids
            ]
        )
        return {vid: text for vid, text in zip(video_ids, results) if text}
