"""Playwright-backed automation driver.

One headless Chromium instance is launched lazily and shared by every
target of a run; each target gets its own ``BrowserContext`` so cookies,
storage and tabs never leak between targets.

The in-page extractor is not part of this package. It is expected to be
present on the page (for example via the ``extractor_script`` config key,
which is injected as an init script into every context) and to follow a
small DOM-event handshake:

* scrapectl dispatches ``scrapectl:trigger-extraction`` on ``window``;
* the extractor answers exactly once with ``scrapectl:extraction-complete``
  whose ``detail`` is ``{"postsScraped": <int>}`` or ``{"error": "..."}``.

Install the browser binary once with::

    playwright install chromium
"""

import asyncio
import logging
from typing import Optional

from playwright.async_api import async_playwright

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

TRIGGER_EVENT = "scrapectl:trigger-extraction"
COMPLETE_EVENT = "scrapectl:extraction-complete"

SCROLL_JS = """
() => {
  window.scrollTo({ top: document.documentElement.scrollHeight, behavior: "smooth" });
}
"""

TRIGGER_EXTRACTION_JS = """
([triggerEvent, completeEvent]) => new Promise((resolve, reject) => {
  window.addEventListener(completeEvent, (event) => {
    const detail = event.detail || {};
    if (detail.error) {
      reject(new Error(detail.error));
      return;
    }
    resolve(Number(detail.postsScraped || 0));
  }, { once: true });
  window.dispatchEvent(new CustomEvent(triggerEvent));
})
"""


class PlaywrightContext:
    def __init__(self, context, page):
        self.context = context
        self.page = page

    async def wait_loaded(self):
        # bounded by the controller's overall timeout
        await self.page.wait_for_load_state("load", timeout=0)

    async def scroll_to_bottom(self):
        await self.page.evaluate(SCROLL_JS)

    async def trigger_extraction(self) -> int:
        return await self.page.evaluate(TRIGGER_EXTRACTION_JS, [TRIGGER_EVENT, COMPLETE_EVENT])

    async def close(self):
        await self.context.close()


class PlaywrightDriver:
    def __init__(self, *, headless: bool = True, extractor_script: Optional[str] = None,
                 user_agent: str = USER_AGENT):
        self.headless = headless
        self.extractor_script = extractor_script
        self.user_agent = user_agent
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    async def _ensure_browser(self):
        async with self._lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=self.headless)
                logger.info("browser: launched chromium (headless=%s)", self.headless)
        return self._browser

    async def open_context(self, url: str) -> PlaywrightContext:
        browser = await self._ensure_browser()
        context = await browser.new_context(user_agent=self.user_agent)
        try:
            if self.extractor_script:
                await context.add_init_script(path=self.extractor_script)
            page = await context.new_page()
            await page.goto(url, wait_until="commit", timeout=0)
        except (Exception, asyncio.CancelledError):
            await context.close()
            raise
        return PlaywrightContext(context, page)

    async def close(self):
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
