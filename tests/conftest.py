"""
Shared fixtures: in-memory page/session doubles and isolated global state.

FakePage answers ``evaluate(script, arg)`` from a mapping keyed by the exact
script string (the module-level JS constants), so tests describe a page by
the results each scan would produce.
"""

import copy
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from phasecrawl.config import reset_config
from phasecrawl.observability import reset_metrics


class FakeFrame:
    def __init__(self, url="about:blank", responses=None, fail=False):
        self.url = url
        self.responses = dict(responses or {})
        self.fail = fail

    async def evaluate(self, script, arg=None):
        if self.fail:
            raise RuntimeError("frame detached")
        value = self.responses.get(script)
        return value(arg) if callable(value) else copy.deepcopy(value)


class FakePage:
    def __init__(self, responses=None, url="about:blank", html=""):
        self.responses = dict(responses or {})
        self.url = url
        self.html = html
        self.calls = []
        self.listeners = {}
        self.main_frame = FakeFrame(url)
        self.frames = [self.main_frame]
        self.selectors = {}

    async def evaluate(self, script, arg=None):
        self.calls.append((script, arg))
        value = self.responses.get(script)
        if isinstance(value, Exception):
            raise value
        return value(arg) if callable(value) else copy.deepcopy(value)

    async def content(self):
        return self.html

    async def query_selector(self, selector):
        return self.selectors.get(selector)

    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        self.listeners.get(event, []).remove(handler)

    def fire_request(self, url, resource_type="fetch"):
        for handler in list(self.listeners.get("request", [])):
            handler(SimpleNamespace(url=url, resource_type=resource_type))

    def fire_response(self, url, headers, status=200):
        for handler in list(self.listeners.get("response", [])):
            handler(SimpleNamespace(url=url, headers=headers, status=status))

    def evaluated(self, script):
        return [arg for s, arg in self.calls if s == script]


class FakeSession:
    """Stands in for BrowserSession: same attributes, no browser."""

    def __init__(self, page):
        self._page = page
        self.page = None
        self.init_scripts = []
        self.initialized = []
        self.closed = 0

    @property
    def url(self):
        return self.page.url if self.page is not None else ""

    async def launch(self):
        self.page = self._page
        return self.page

    async def add_init_script(self, script):
        await self.launch()
        self.init_scripts.append(script)

    async def initialize(self, url):
        await self.launch()
        self.initialized.append(url)
        self.page.url = url

    async def close(self):
        self.closed += 1
        self.page = None

    def stats(self):
        return {"requests": 0, "errors": 0}


@pytest.fixture(autouse=True)
def isolated_globals():
    reset_metrics()
    reset_config()
    yield
    reset_metrics()
    reset_config()


@pytest.fixture
def no_sleep():
    return AsyncMock()


@pytest.fixture
def make_page():
    return FakePage


@pytest.fixture
def make_session():
    return FakeSession


@pytest.fixture
def make_frame():
    return FakeFrame
