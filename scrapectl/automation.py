"""Per-target browser automation: open, settle, scroll, trigger extraction, tear down.

The controller only talks to an :class:`AutomationDriver`, so the same
sequence and timeout logic runs against Playwright in production
(:mod:`scrapectl.browser`) and against in-memory fakes in tests.
"""

import asyncio
import logging
from typing import Optional, Protocol

from .config import Settings
from .errors import TargetAutomationError, TargetTimeoutError
from .models import ExtractionSummary, Target
from .utils import error_message

logger = logging.getLogger(__name__)

#: Upper bound for closing a context after the sequence has ended or timed out.
TEARDOWN_TIMEOUT = 5.0


class AutomationContext(Protocol):
    """One isolated browsing context showing a single target page."""

    async def wait_loaded(self) -> None: ...

    async def scroll_to_bottom(self) -> None: ...

    async def trigger_extraction(self) -> int:
        """Signal the in-page extractor and return the acknowledged record count."""
        ...

    async def close(self) -> None: ...


class AutomationDriver(Protocol):
    async def open_context(self, url: str) -> AutomationContext: ...

    async def close(self) -> None: ...


class TargetAutomation(Protocol):
    """What the executor depends on: one call per target."""

    async def run(self, target: Target) -> ExtractionSummary: ...


class TargetAutomationController:
    """Runs the automation sequence for one target under a single hard timeout."""

    def __init__(self, driver: AutomationDriver, settings: Optional[Settings] = None):
        self.driver = driver
        self.settings = settings or Settings()

    async def run(self, target: Target) -> ExtractionSummary:
        """Automate ``target`` and return the extraction summary.

        Raises:
            TargetTimeoutError: the whole sequence exceeded ``timeout_seconds``.
            TargetAutomationError: any other failure (open, load, extraction).
        """
        opened = []
        timeout = self.settings.timeout_seconds
        try:
            return await asyncio.wait_for(self._sequence(target, opened), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("automation: %s timed out after %gs", target.url, timeout)
            raise TargetTimeoutError(f"Timeout after {timeout:g}s") from None
        except TargetAutomationError:
            raise
        except Exception as exc:
            raise TargetAutomationError(error_message(exc)) from exc
        finally:
            for context in opened:
                await self._teardown(context, target)

    async def _sequence(self, target: Target, opened: list) -> ExtractionSummary:
        try:
            context = await self.driver.open_context(target.url)
        except Exception as exc:
            raise TargetAutomationError(
                f"Failed to open context for {target.url}: {error_message(exc)}"
            ) from exc
        opened.append(context)

        await context.wait_loaded()
        logger.debug("automation: %s loaded, starting scroll sequence", target.url)

        total = self.settings.scroll_count
        for n in range(1, total + 1):
            await asyncio.sleep(self.settings.scroll_interval)
            try:
                await context.scroll_to_bottom()
                logger.debug("automation: scroll %d/%d on %s", n, total, target.url)
            except Exception as exc:
                logger.warning(
                    "automation: scroll %d/%d failed on %s, continuing: %s",
                    n, total, target.url, exc,
                )

        await asyncio.sleep(self.settings.settle_delay)
        count = await context.trigger_extraction()
        logger.debug("automation: %s acknowledged extraction of %s posts", target.url, count)
        return ExtractionSummary(posts_scraped=int(count or 0))

    async def _teardown(self, context: AutomationContext, target: Target):
        try:
            await asyncio.wait_for(context.close(), timeout=TEARDOWN_TIMEOUT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("automation: closing context for %s failed: %s", target.url, exc)

    async def close(self):
        await self.driver.close()
