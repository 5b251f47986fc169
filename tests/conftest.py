"""Pytest fixtures and shared test configuration.

Fixtures:
    - settings: Settings with a fake key, no .env file and zero poll interval
    - remote: In-memory stand-in for the sessions/interactions REST API
    - client: GeminiClient wired to the fake remote
    - agent: DeepResearchAgent wired to the fake remote
    - async_client: HTTPX client for the FastAPI app (UI not mounted)
"""

import json
from collections.abc import AsyncGenerator
from typing import Any, Optional

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from gemini_research_agent.client import GeminiClient
from gemini_research_agent.config import Settings
from gemini_research_agent.research import DeepResearchAgent
from gemini_research_agent.web import create_app

SESSION_NAME = "sessions/s1"
INTERACTION_NAME = "sessions/s1/interactions/i1"


class FakeRemote:
    """Routes requests like the remote API and records everything it sees.

    Successive GETs of the interaction return successive entries of
    interaction_states; the last one repeats.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.interaction_states: list[dict[str, Any]] = [
            {"name": INTERACTION_NAME, "state": "RUNNING"}
        ]
        self.sessions: list[dict[str, Any]] = [
            {
                "name": SESSION_NAME,
                "displayName": "deep-research-1",
                "model": "models/deep-research-pro-preview",
                "createTime": "2025-01-01T10:00:00Z",
            }
        ]
        self.next_page_token: Optional[str] = None
        # (method, path suffix) -> canned response
        self.overrides: dict[tuple[str, str], httpx.Response] = {}

    def finish_with(self, *states: dict[str, Any]) -> None:
        self.interaction_states = [{"name": INTERACTION_NAME, **s} for s in states]

    def paths(self, method: Optional[str] = None) -> list[str]:
        return [
            r.url.path for r in self.requests if method is None or r.method == method
        ]

    def body(self, index: int) -> dict[str, Any]:
        return json.loads(self.requests[index].content)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path

        for (o_method, suffix), response in self.overrides.items():
            if method == o_method and path.endswith(suffix):
                return response

        if method == "POST" and path.endswith("/files"):
            return httpx.Response(
                200,
                json={
                    "file": {
                        "name": "files/f1",
                        "uri": "https://generativelanguage.googleapis.com/v1beta/files/f1",
                        "mimeType": request.headers.get("content-type"),
                    }
                },
            )
        if method == "POST" and path.endswith("/interactions"):
            return httpx.Response(200, json={"name": INTERACTION_NAME, "state": "PENDING"})
        if method == "POST" and path.endswith("/sessions"):
            return httpx.Response(200, json=self.sessions[0])
        if method == "GET" and "/interactions/" in path:
            state = self.interaction_states[0]
            if len(self.interaction_states) > 1:
                self.interaction_states.pop(0)
            return httpx.Response(200, json=state)
        if method == "GET" and path.endswith("/sessions"):
            payload: dict[str, Any] = {"sessions": self.sessions}
            if self.next_page_token:
                payload["nextPageToken"] = self.next_page_token
            return httpx.Response(200, json=payload)
        if method == "GET" and "/sessions/" in path:
            for session in self.sessions:
                if path.endswith(session["name"]):
                    return httpx.Response(200, json=session)

        return httpx.Response(
            404, json={"error": {"code": 404, "message": "Not found", "status": "NOT_FOUND"}}
        )


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        gemini_api_key="test-key",
        default_poll_interval=0,
        default_poll_timeout=60,
        environment="production",
        _env_file=None,
    )


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def client(settings: Settings, remote: FakeRemote) -> GeminiClient:
    return GeminiClient(settings, transport=httpx.MockTransport(remote.handler))


@pytest.fixture
def agent(client: GeminiClient, settings: Settings) -> DeepResearchAgent:
    return DeepResearchAgent(client, settings)


@pytest.fixture
async def async_client(
    settings: Settings, agent: DeepResearchAgent
) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing.

    Server errors are returned as responses instead of re-raised.
    """
    app = create_app(settings=settings, agent=agent, mount_ui=False)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
