"""Headless-browser extractor (Playwright).

Loads the source page in Chromium with request interception. The first
request whose URL carries a ``token=`` query parameter is captured and
aborted; documents, XHR and HLS playlists continue; every other resource
is blocked to keep page loads cheap.

A fresh browser is launched per attempt and always closed afterwards.
"""

import logging

from services.extraction import ExtractionResult

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

EXTRA_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "*/*",
}

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--window-size=1920x1080",
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process",
]

PASSTHROUGH_RESOURCE_TYPES = {"document", "xhr"}


def is_token_url(url: str) -> bool:
    return "token=" in url


def should_continue(url: str, resource_type: str) -> bool:
    """Whether a non-token request is needed to reach the token redirect."""
    return resource_type in PASSTHROUGH_RESOURCE_TYPES or ".m3u8" in url


class BrowserExtractor:
    def __init__(self, headless: bool = True):
        self.headless = headless

    async def extract(self, url: str, timeout_ms: int) -> ExtractionResult:
        from playwright.async_api import async_playwright

        captured: list[str] = []

        async def handle_route(route, request):
            if not captured and is_token_url(request.url):
                captured.append(request.url)
                await route.abort()
            elif should_continue(request.url, request.resource_type):
                await route.continue_()
            else:
                await route.abort()

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=self.headless, args=CHROMIUM_ARGS)
            try:
                context = await browser.new_context(user_agent=USER_AGENT, extra_http_headers=EXTRA_HEADERS)
                page = await context.new_page()
                await page.route("**/*", handle_route)

                try:
                    await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                except Exception as e:
                    # Aborting the token request can fail the navigation itself
                    if not captured:
                        raise
                    logger.debug("Navigation ended after token capture: %s", e)
            finally:
                await browser.close()

        if captured:
            return ExtractionResult.ok(captured[0])
        return ExtractionResult.failed("Failed to capture tokenized URL")

    async def close(self) -> None:
        # Browsers are scoped to a single attempt; nothing to release.
        return None
