"""Shared fixtures for the maxmux test suite."""

import asyncio

import httpx
import pytest

from maxmux.config.settings import CONFIG_PATH_ENV, get_settings
from maxmux.security.auth import get_authenticator

OAUTH_TOKEN = "sk-ant-REDACTED"
VIRTUAL_KEYS = "vk-alice-111,vk-bob-222"
UPSTREAM = "https://api.anthropic.com"


@pytest.fixture
def override_settings(monkeypatch, tmp_path):
    """Factory fixture: set env vars and clear settings cache.

    Runs from an empty temp dir so a stray config.yaml or .env is never read.

    Usage:
        override_settings(OAUTH_TOKEN="tok", VIRTUAL_KEYS="k1,k2")
    """
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)

    def _override(**kwargs):
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_caches so Settings re-reads env
        get_settings.cache_clear()
        get_authenticator.cache_clear()

    yield _override

    # Always clear caches on teardown so other tests get fresh settings
    get_settings.cache_clear()
    get_authenticator.cache_clear()


class ChunkStream(httpx.AsyncByteStream):
    """Unread upstream body delivered as the given chunks, like a real transport."""

    def __init__(self, *chunks: bytes):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


class RecordingUpstream:
    """httpx MockTransport handler that records every request it receives."""

    def __init__(self, status_code: int = 200, headers: dict | None = None, content: bytes = b"{}"):
        self.status_code = status_code
        self.headers = headers or {"content-type": "application/json"}
        self.content = content
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        return httpx.Response(self.status_code, headers=self.headers, stream=ChunkStream(self.content))

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


class GatedStream(httpx.AsyncByteStream):
    """Upstream body that sends its first chunk, then waits to be released.

    Records whether the gateway closed it, and can fail after the first
    chunk to simulate an upstream dropping mid-stream.
    """

    def __init__(self, chunks: list[bytes], fail_with: Exception | None = None):
        self.chunks = chunks
        self.fail_with = fail_with
        self.release = asyncio.Event()
        self.closed = False

    async def __aiter__(self):
        yield self.chunks[0]
        await self.release.wait()
        if self.fail_with is not None:
            raise self.fail_with
        for chunk in self.chunks[1:]:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def upstream() -> RecordingUpstream:
    return RecordingUpstream()
