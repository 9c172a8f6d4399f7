"""Lightweight extractor that walks HTTP redirects with httpx.

Works for sources that hand out the tokenized URL through plain
``Location`` headers, without the cost of a browser.
"""

import logging

import httpx

from services.browser_extractor import EXTRA_HEADERS, USER_AGENT, is_token_url
from services.extraction import ExtractionResult

logger = logging.getLogger(__name__)


class RedirectExtractor:
    def __init__(self, max_hops: int = 10, transport: httpx.AsyncBaseTransport | None = None):
        self.max_hops = max_hops
        self._transport = transport

    async def extract(self, url: str, timeout_ms: int) -> ExtractionResult:
        headers = {"User-Agent": USER_AGENT, **EXTRA_HEADERS}
        current = httpx.URL(url)

        async with httpx.AsyncClient(
            timeout=timeout_ms / 1000,
            follow_redirects=False,
            headers=headers,
            transport=self._transport,
        ) as client:
            for _ in range(self.max_hops):
                if is_token_url(str(current)):
                    return ExtractionResult.ok(str(current))
                try:
                    resp = await client.get(current)
                except httpx.HTTPError as e:
                    logger.warning("Redirect fetch failed for %s: %s", str(current)[:50], e)
                    return ExtractionResult.failed(f"{e.__class__.__name__}: {e}")

                location = resp.headers.get("location")
                if not resp.is_redirect or not location:
                    break
                current = current.join(location)

        if is_token_url(str(current)):
            return ExtractionResult.ok(str(current))
        return ExtractionResult.failed("Failed to capture tokenized URL")

    async def close(self) -> None:
        return None
