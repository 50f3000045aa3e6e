import asyncio
import logging
from typing import List, Optional

import httpx

from models.internal import RawSignal, SourceKind, SourceResult
from services.errors import RateLimited, SourceUnavailable
from services.rate_limit import RequestBudget

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
}


class SourceConnector:
    """
    Fetches raw signals about a handle from one source.

    fetch() never raises: timeouts, upstream errors and malformed payloads come
    back as a failed SourceResult so sibling connectors keep running. Each call
    opens its own HTTP client; the request budget is the only state shared
    between calls.
    """

    kind: SourceKind
    display_name: str = ""

    def __init__(
        self,
        budget: Optional[RequestBudget] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_timeout: float = 15.0,
    ):
        self.budget = budget
        self._transport = transport
        self._http_timeout = http_timeout

    @property
    def enabled(self) -> bool:
        """False when required credentials are missing."""
        return True

    def _client(self, headers: Optional[dict] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._http_timeout,
            follow_redirects=True,
            headers=headers,
            transport=self._transport,
        )

    def _check_response(self, resp: httpx.Response) -> None:
        if resp.status_code == 429:
            retry_after = resp.headers.get("retry-after")
            raise RateLimited(
                self.kind.value,
                "upstream returned HTTP 429",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if resp.status_code != 200:
            raise SourceUnavailable(self.kind.value, f"upstream returned HTTP {resp.status_code}")

    async def _fetch(self, handle: str, limit: int) -> List[RawSignal]:
        raise NotImplementedError

    async def fetch(self, handle: str, limit: int, timeout: float) -> SourceResult:
        if not self.enabled:
            logger.info(f"{self.kind.value} skipped: not configured")
            return SourceResult.unavailable(self.kind, "not configured")

        if self.budget is not None and not self.budget.try_acquire():
            logger.warning(
                f"{self.kind.value} request budget exhausted "
                f"(resets in {self.budget.reset_in:.0f}s)"
            )
            return SourceResult.rate_limited(self.kind)

        try:
            signals = await asyncio.wait_for(self._fetch(handle, limit), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.kind.value} timed out after {timeout}s for '{handle}'")
            return SourceResult.unavailable(self.kind, "timeout")
        except RateLimited as e:
            logger.warning(f"{self.kind.value} rate limited for '{handle}': {e.cause}")
            return SourceResult.rate_limited(self.kind, e.cause)
        except SourceUnavailable as e:
            logger.warning(f"{self.kind.value} unavailable for '{handle}': {e.cause}")
            return SourceResult.unavailable(self.kind, e.cause)
        except httpx.HTTPError as e:
            logger.warning(f"{self.kind.value} request failed for '{handle}': {e!r}")
            return SourceResult.unavailable(self.kind, f"request failed: {type(e).__name__}")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"{self.kind.value} returned a malformed payload for '{handle}': {e}")
            return SourceResult.unavailable(self.kind, "malformed response")

        signals = [s for s in signals if s.text.strip()][:limit]
        logger.info(f"{self.kind.value} returned {len(signals)} item(s) for '{handle}'")
        return SourceResult.ok(self.kind, signals)

    def status(self) -> dict:
        return {
            "source": self.kind.value,
            "name": self.display_name or self.kind.value,
            "enabled": self.enabled,
            "budget_remaining": self.budget.remaining if self.budget else None,
        }
