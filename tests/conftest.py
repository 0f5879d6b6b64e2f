"""Shared fixtures: scripted HTTP transports and fake task services."""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from healthlab.core.errors import HealthLabError
from healthlab.core.models import GenerationRequest, GenerationTask
from healthlab.core.settings import GeminiSettings, MeshySettings


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: List[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    @property
    def urls(self) -> List[str]:
        return [str(request.url) for request in self.requests]


def routed(routes: Dict[str, httpx.Response], default_status: int = 404) -> Callable[[httpx.Request], httpx.Response]:
    """Answer by URL prefix; unknown URLs get ``default_status``."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        for prefix, template in routes.items():
            if url.startswith(prefix):
                return httpx.Response(template.status_code, headers=template.headers, content=template.content)
        return httpx.Response(default_status, text="not found")

    return handler


class FakeTaskService:
    """Scripted stand-in for MeshyClient used by polling tests."""

    def __init__(self, submitted: GenerationTask, polls: List[object]) -> None:
        self.submitted = submitted
        self.polls = list(polls)
        self.submit_calls: List[tuple] = []
        self.poll_calls: List[tuple] = []
        self.polled = asyncio.Event()

    async def submit(self, kind: str, request: GenerationRequest) -> GenerationTask:
        self.submit_calls.append((kind, request))
        if isinstance(self.submitted, HealthLabError):
            raise self.submitted
        return self.submitted

    async def poll(self, task_id: str, source: str, endpoint_hint: Optional[str] = None) -> GenerationTask:
        self.poll_calls.append((task_id, source, endpoint_hint))
        self.polled.set()
        outcome = self.polls.pop(0) if len(self.polls) > 1 else self.polls[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class GatedTaskService(FakeTaskService):
    """FakeTaskService whose submissions block until ``gate`` is set.

    Each submit call hands out the next task from ``submitted`` in call order.
    """

    def __init__(self, submitted: List[GenerationTask], polls: List[object]) -> None:
        super().__init__(submitted[0], polls)
        self.queue = list(submitted)
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def submit(self, kind: str, request: GenerationRequest) -> GenerationTask:
        task = self.queue[len(self.submit_calls)]
        self.submit_calls.append((kind, request))
        self.entered.set()
        await self.gate.wait()
        return task


@pytest.fixture
def meshy_settings() -> MeshySettings:
    return MeshySettings(
        api_key="msy-test",
        preferred_base="https://env.example/v1/",
        fallback_bases=("https://api.meshy.ai/v1", "https://api.meshy.ai/v2"),
        poll_interval_s=0,
    )


@pytest.fixture
def gemini_settings() -> GeminiSettings:
    return GeminiSettings(api_key="gm-test")
