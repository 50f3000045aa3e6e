import logging
from datetime import datetime, timezone
from typing import List, Optional

import httpx

from models.internal import RawSignal, SignalMetadata, SourceKind
from services.rate_limit import RequestBudget
from services.sources.base import SourceConnector
from utils.text import parse_timestamp

logger = logging.getLogger(__name__)

REDDIT_BASE = "https://www.reddit.com"


class RedditConnector(SourceConnector):
    """
    Public Reddit JSON, no API key needed.
    The user's own submissions first; a site-wide search for the handle when the
    user has none (or does not exist).
    """

    kind = SourceKind.REDDIT
    display_name = "Reddit"

    def __init__(
        self,
        user_agent: str,
        budget: Optional[RequestBudget] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_timeout: float = 15.0,
    ):
        super().__init__(budget=budget, transport=transport, http_timeout=http_timeout)
        self._user_agent = user_agent

    async def _fetch(self, handle: str, limit: int) -> List[RawSignal]:
        params = {"limit": str(min(limit, 100)), "sort": "new"}
        async with self._client(headers={"User-Agent": self._user_agent}) as client:
            resp = await client.get(f"{REDDIT_BASE}/user/{handle}/submitted.json", params=params)
            children = []
            if resp.status_code == 404:
                logger.info(f"Reddit user '{handle}' not found, falling back to search")
            else:
                self._check_response(resp)
                children = resp.json()["data"]["children"]

            if not children:
                resp = await client.get(
                    f"{REDDIT_BASE}/search.json",
                    params={"q": handle, "sort": "new", "t": "year", "limit": params["limit"]},
                )
                self._check_response(resp)
                children = resp.json()["data"]["children"]

        fetched_at = datetime.now(timezone.utc)
        signals = []
        for child in children:
            post = child.get("data", {})
            title = post.get("title", "")
            body = post.get("selftext") or ""
            text = f"{title}\n\n{body}".strip() if body else title
            signals.append(
                RawSignal(
                    source_kind=self.kind,
                    handle=handle,
                    timestamp=parse_timestamp(post.get("created_utc")) or fetched_at,
                    text=text,
                    metadata=SignalMetadata(
                        url=f"https://reddit.com{post.get('permalink', '')}",
                        title=title,
                        author=post.get("author", ""),
                        engagement={
                            "score": int(post.get("score", 0)),
                            "comments": int(post.get("num_comments", 0)),
                        },
                    ),
                )
            )
        return signals
