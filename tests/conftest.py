import asyncio

import pytest

from scrapectl.config import Settings
from scrapectl.db import connect_db, init_db
from scrapectl.models import ExtractionSummary
from scrapectl.repository import add_target


class FakeAutomation:
    """Stands in for the browser automation port.

    ``outcomes`` maps target id -> posts count or an exception to raise.
    ``gates`` maps target id -> asyncio.Event the run blocks on until set.
    """

    def __init__(self):
        self.outcomes = {}
        self.gates = {}
        self.calls = []

    def hold(self, target_id):
        gate = asyncio.Event()
        self.gates[target_id] = gate
        return gate

    async def run(self, target):
        self.calls.append(target.id)
        gate = self.gates.get(target.id)
        if gate is not None:
            await gate.wait()
        outcome = self.outcomes.get(target.id, 5)
        if isinstance(outcome, Exception):
            raise outcome
        return ExtractionSummary(posts_scraped=outcome)


class FakeContext:
    def __init__(self, events, *, posts=3, scroll_error=None, extract_error=None,
                 hang_on=None, close_error=None):
        self.events = events
        self.posts = posts
        self.scroll_error = scroll_error
        self.extract_error = extract_error
        self.hang_on = hang_on
        self.close_error = close_error
        self.closed = False

    async def _maybe_hang(self, step):
        if self.hang_on == step:
            await asyncio.Event().wait()

    async def wait_loaded(self):
        self.events.append("loaded")
        await self._maybe_hang("load")

    async def scroll_to_bottom(self):
        self.events.append("scroll")
        if self.scroll_error:
            raise self.scroll_error

    async def trigger_extraction(self):
        self.events.append("trigger")
        await self._maybe_hang("extract")
        if self.extract_error:
            raise self.extract_error
        return self.posts

    async def close(self):
        self.events.append("close")
        self.closed = True
        if self.close_error:
            raise self.close_error


class FakeDriver:
    def __init__(self, open_error=None, **context_kwargs):
        self.events = []
        self.open_error = open_error
        self.context_kwargs = context_kwargs
        self.contexts = []

    async def open_context(self, url):
        self.events.append(f"open {url}")
        if self.open_error:
            raise self.open_error
        ctx = FakeContext(self.events, **self.context_kwargs)
        self.contexts.append(ctx)
        return ctx

    async def close(self):
        self.events.append("driver closed")


@pytest.fixture
def conn():
    c = init_db(connect_db(":memory:"))
    yield c
    c.close()


@pytest.fixture
def settings():
    return Settings(
        timeout_seconds=1.0,
        inter_target_delay=0,
        scroll_count=2,
        scroll_interval=0,
        settle_delay=0,
    )


@pytest.fixture
def automation():
    return FakeAutomation()


@pytest.fixture
def add_targets(conn):
    def _add(*ids):
        return [
            add_target(conn, target_id=i, url=f"https://example.com/groups/{i}", name=f"Group {i}")
            for i in ids
        ]
    return _add


@pytest.fixture
def make_driver():
    return FakeDriver
