import logging
from datetime import datetime, timezone
from typing import List, Optional

import httpx

from models.internal import RawSignal, SignalMetadata, SourceKind
from services.errors import SourceUnavailable
from services.rate_limit import RequestBudget
from services.sources.base import SourceConnector
from utils.text import parse_timestamp

logger = logging.getLogger(__name__)

TWITTER_API_BASE = "https://api.twitter.com/2"


class SocialTimelineConnector(SourceConnector):
    """The handle's own recent posts from the X API v2 (retweets and replies excluded)."""

    kind = SourceKind.SOCIAL_TIMELINE
    display_name = "X/Twitter"

    def __init__(
        self,
        bearer_token: str,
        budget: Optional[RequestBudget] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_timeout: float = 15.0,
    ):
        super().__init__(budget=budget, transport=transport, http_timeout=http_timeout)
        self._token = bearer_token

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    async def _fetch(self, handle: str, limit: int) -> List[RawSignal]:
        headers = {"Authorization": f"Bearer {self._token}"}
        async with self._client(headers=headers) as client:
            resp = await client.get(f"{TWITTER_API_BASE}/users/by/username/{handle}")
            self._check_response(resp)
            user = resp.json().get("data")
            if not user:
                raise SourceUnavailable(self.kind.value, "user not found")

            params = {
                # API accepts 5..100
                "max_results": str(min(max(limit, 5), 100)),
                "exclude": "retweets,replies",
                "tweet.fields": "created_at,public_metrics,entities",
            }
            resp = await client.get(f"{TWITTER_API_BASE}/users/{user['id']}/tweets", params=params)
            self._check_response(resp)
            data = resp.json()

        username = user.get("username", handle)
        fetched_at = datetime.now(timezone.utc)
        signals = []
        for tweet in data.get("data") or []:
            metrics = tweet.get("public_metrics") or {}
            signals.append(
                RawSignal(
                    source_kind=self.kind,
                    handle=handle,
                    timestamp=parse_timestamp(tweet.get("created_at")) or fetched_at,
                    text=tweet["text"],
                    metadata=SignalMetadata(
                        url=f"https://x.com/{username}/status/{tweet['id']}",
                        author=username,
                        engagement={
                            "likes": int(metrics.get("like_count", 0)),
                            "reposts": int(metrics.get("retweet_count", 0)),
                            "replies": int(metrics.get("reply_count", 0)),
                            "quotes": int(metrics.get("quote_count", 0)),
                        },
                    ),
                )
            )
        return signals
