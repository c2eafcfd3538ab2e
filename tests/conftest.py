"""Shared in-memory fakes for the HTTP client, the browser and the model service."""

import httpx
import pytest
from playwright.sync_api import Error as PlaywrightError


class FakeHttpResponse:
    def __init__(self, status_code=200, body=b"", headers=None):
        self.status_code = status_code
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        self.headers = headers or {}


class FakeHttpClient:
    """Maps URL -> body / (status, body[, headers]) / exception. Unknown URLs are 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeHttpResponse(404, b"not found")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, tuple):
            return FakeHttpResponse(*route)
        return FakeHttpResponse(200, route)

    def close(self):
        pass


class FakeNavResponse:
    def __init__(self, status):
        self.status = status


class FakePage:
    def __init__(self, status=200, error=None, links=(), footer_links=(), evaluate_result=None, url_errors=None, settle_error=None):
        self.status = status
        self.error = error
        self.links = list(links)
        self.footer_links = list(footer_links)
        self.evaluate_result = evaluate_result
        self.url_errors = dict(url_errors or {})
        self.settle_error = settle_error
        self.visited = []
        self.closed = False

    def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        if self.error is not None:
            raise self.error
        if url in self.url_errors:
            raise self.url_errors[url]
        return FakeNavResponse(self.status) if self.status is not None else None

    def wait_for_load_state(self, state=None, timeout=None):
        pass

    def wait_for_timeout(self, ms):
        if self.settle_error is not None:
            raise self.settle_error

    def eval_on_selector_all(self, selector, script):
        if selector == "a[href]":
            return list(self.links)
        return list(self.footer_links)

    def evaluate(self, script, arg=None):
        if callable(self.evaluate_result):
            return self.evaluate_result(self.visited[-1])
        return self.evaluate_result

    def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, page_factory):
        self.page_factory = page_factory
        self.pages = []

    def new_page(self, **kwargs):
        page = self.page_factory()
        self.pages.append(page)
        return page


class ClosedBrowser:
    """A browser whose pages can no longer be opened."""

    def new_page(self, **kwargs):
        raise PlaywrightError("Target page, context or browser has been closed")


class FakeLLMService:
    """Returns queued responses in order; queued exceptions are raised."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def create(self, prompt, **options):
        self.calls.append({"prompt": prompt, **options})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def llm_text(text, input_tokens=10, output_tokens=5):
    """A Responses-API-shaped dict carrying text and usage."""
    return {
        "output_text": text,
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens, "total_tokens": input_tokens + output_tokens},
    }


@pytest.fixture
def no_sleep():
    delays = []
    return delays.append, delays


@pytest.fixture
def connect_error():
    return httpx.ConnectError("connection refused")
