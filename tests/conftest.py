import time
from typing import Dict, List, Optional

import pytest
import requests


class FakeResponse:
    def __init__(self, body: bytes, status_code: int = 200, chunk_error: Optional[Exception] = None):
        self.body = body
        self.status_code = status_code
        self.chunk_error = chunk_error
        self.closed = False

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i:i + chunk_size]
        if self.chunk_error is not None:
            raise self.chunk_error

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


class FakeSession:
    """Stands in for requests.Session: canned bodies per URL, exceptions for the rest."""

    def __init__(self, pages: Dict[str, object]):
        self.pages = pages
        self.calls: List[dict] = []

    def get(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        page = self.pages.get(url)
        if page is None:
            raise requests.ConnectionError(f"cannot connect to {url}")
        if isinstance(page, Exception):
            raise page
        if isinstance(page, FakeResponse):
            return page
        return FakeResponse(page)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


class TrickleRaw:
    """urllib3-style raw stream handing out ``step`` bytes per read1 after ``delay`` seconds."""

    def __init__(self, body: bytes, step: int = 1, delay: float = 0.0):
        self.body = body
        self.step = step
        self.delay = delay
        self.pos = 0
        self.reads = 0

    def read1(self, amt=None, decode_content=None):
        if self.delay: time.sleep(self.delay)
        self.reads += 1
        chunk = self.body[self.pos:self.pos + min(self.step, amt or self.step)]
        self.pos += len(chunk)
        return chunk


@pytest.fixture
def trickle_response():
    def make(body: bytes, step: int = 1, delay: float = 0.0) -> FakeResponse:
        resp = FakeResponse(b"")
        resp.raw = TrickleRaw(body, step=step, delay=delay)
        return resp
    return make
