import re
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import unquote, quote_plus

import httpx
from bs4 import BeautifulSoup

from models.internal import RawSignal, SignalMetadata, SourceKind
from services.rate_limit import RequestBudget
from services.sources.base import BROWSER_HEADERS, SourceConnector
from utils.text import extract_domain

logger = logging.getLogger(__name__)

SERPER_API_URL = "https://google.serper.dev/search"
DDG_HTML_URL = "https://html.duckduckgo.com/html/"

_RELATIVE_DATE_RE = re.compile(r"(\d+)\s+(minute|hour|day|week|month|year)s?\s+ago", re.I)
_UNIT_DAYS = {"minute": 1 / 1440, "hour": 1 / 24, "day": 1, "week": 7, "month": 30, "year": 365}


def _parse_result_date(date_str: Optional[str], now: datetime) -> datetime:
    """Serper dates come as '3 days ago' or 'Jan 5, 2025'. Unknown dates fall back to now."""
    if not date_str:
        return now
    m = _RELATIVE_DATE_RE.search(date_str)
    if m:
        return now - timedelta(days=int(m.group(1)) * _UNIT_DAYS[m.group(2).lower()])
    for fmt in ("%b %d, %Y", "%B %d, %Y", "%Y-%m-%d", "%d %b %Y"):
        try:
            return datetime.strptime(date_str.strip(), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return now


class WebSearchConnector(SourceConnector):
    """
    Web mentions of the handle.
    Serper.dev when a key is configured, otherwise DuckDuckGo's HTML results page.
    """

    kind = SourceKind.WEB_SEARCH
    display_name = "Web search"

    def __init__(
        self,
        api_key: str = "",
        budget: Optional[RequestBudget] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_timeout: float = 15.0,
    ):
        super().__init__(budget=budget, transport=transport, http_timeout=http_timeout)
        self._api_key = api_key

    async def _fetch(self, handle: str, limit: int) -> List[RawSignal]:
        if self._api_key:
            return await self._search_serper(handle, limit)
        logger.info("Serper API not configured, using DuckDuckGo HTML search")
        return await self._search_ddg(handle, limit)

    async def _search_serper(self, handle: str, limit: int) -> List[RawSignal]:
        payload = {"q": f'"{handle}"', "num": min(limit, 100)}
        headers = {
            "X-API-KEY": self._api_key,
            "Content-Type": "application/json",
        }
        async with self._client() as client:
            resp = await client.post(SERPER_API_URL, json=payload, headers=headers)
        self._check_response(resp)

        now = datetime.now(timezone.utc)
        signals = []
        for item in resp.json().get("organic", []):
            title = item.get("title", "")
            snippet = item.get("snippet", "")
            text = f"{title}. {snippet}".strip(". ") if snippet else title
            link = item.get("link", "")
            signals.append(
                RawSignal(
                    source_kind=self.kind,
                    handle=handle,
                    timestamp=_parse_result_date(item.get("date"), now),
                    text=text,
                    metadata=SignalMetadata(
                        url=link,
                        title=title,
                        author=extract_domain(link) if link else "",
                    ),
                )
            )
            if len(signals) >= limit:
                break
        return signals

    async def _search_ddg(self, handle: str, limit: int) -> List[RawSignal]:
        query = f'"{handle}"'
        search_url = f"{DDG_HTML_URL}?q={quote_plus(query)}"
        async with self._client(headers=BROWSER_HEADERS) as client:
            resp = await client.get(search_url)
        self._check_response(resp)

        soup = BeautifulSoup(resp.text, "html.parser")
        now = datetime.now(timezone.utc)
        signals = []
        seen_urls = set()

        for result in soup.select("div.result"):
            if len(signals) >= limit:
                break

            link_tag = result.select_one("a.result__a")
            if not link_tag:
                continue

            href = link_tag.get("href", "")
            if "uddg=" in href:
                actual_url = unquote(href.split("uddg=")[1].split("&")[0])
            elif href.startswith("http"):
                actual_url = href
            else:
                continue
            if actual_url in seen_urls:
                continue
            seen_urls.add(actual_url)

            title = link_tag.get_text(strip=True)
            snippet_tag = result.select_one("a.result__snippet")
            snippet = snippet_tag.get_text(strip=True) if snippet_tag else ""

            signals.append(
                RawSignal(
                    source_kind=self.kind,
                    handle=handle,
                    timestamp=now,
                    text=f"{title}. {snippet}" if snippet else title,
                    metadata=SignalMetadata(
                        url=actual_url,
                        title=title,
                        author=extract_domain(actual_url),
                    ),
                )
            )

        return signals
