"""Unit tests for the inference adapter.

The local OpenAI-compatible path is exercised end to end with either a stub
completions object or an httpx mock transport, so no server is needed.
"""

from __future__ import annotations

from types import SimpleNamespace

import httpx
import openai
import pytest
from pydantic_ai.models.anthropic import AnthropicModel
from pydantic_ai.models.openai import OpenAIChatModel

from agents.insight import MAX_BODY_CHARS, InsightAgent, _build_model, _parse_local_model, build_request
from agents.parsing import InsightParseError
from config import ThrottleSettings
from errors import UpstreamError
from models import InsightCategory
from tests.conftest import FakeClock
from throttle import ThrottledClient

LOCAL_MODEL = "openai:qwen3-4b@http://127.0.0.1:8080/v1"
REQUEST = httpx.Request("POST", "http://127.0.0.1:8080/v1/chat/completions")


class StubCompletions:

    def __init__(self, content: str | None = None, error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.requests: list[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def local_agent(completions: StubCompletions) -> InsightAgent:
    agent = InsightAgent(LOCAL_MODEL)
    agent._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return agent


class TestHelpers:

    def test_parse_local_model(self) -> None:
        assert _parse_local_model(LOCAL_MODEL) == ("qwen3-4b", "http://127.0.0.1:8080/v1")

    def test_remote_model_not_local(self) -> None:
        assert _parse_local_model("anthropic:claude-haiku-4-5") is None
        assert _parse_local_model("openai:gpt-4o-mini") is None

    def test_build_request(self) -> None:
        message = build_request("Sync broke", "Lost a week of entries.", "Journaling")
        assert "r/Journaling" in message
        assert "Title: Sync broke" in message
        assert "Lost a week of entries." in message

    def test_build_request_truncates_long_body(self) -> None:
        message = build_request("t", "x" * (MAX_BODY_CHARS + 500), "Journaling")
        assert "x" * MAX_BODY_CHARS + "..." in message
        assert "x" * (MAX_BODY_CHARS + 1) not in message

    def test_build_request_empty_body(self) -> None:
        assert "(no body text)" in build_request("t", "", "Journaling")


class TestLocalInference:

    async def test_parses_fenced_reply(self) -> None:
        completions = StubCompletions('```json\n{"insight_type": "feature_request", "topics": ["export"]}\n```')
        draft = await local_agent(completions).infer("Need PDF export", "", "Journaling")

        assert draft.category == InsightCategory.FEATURE_REQUEST
        (request,) = completions.requests
        assert request["model"] == "qwen3-4b"
        assert request["messages"][0]["role"] == "user"
        assert "Need PDF export" in request["messages"][0]["content"]

    async def test_unusable_reply_raises_parse_error(self) -> None:
        with pytest.raises(InsightParseError):
            await local_agent(StubCompletions("Sorry, I can't help with that.")).infer("t", "", "Journaling")

    async def test_rate_limit_mapped_to_upstream_error(self) -> None:
        error = openai.RateLimitError(
            "Too many requests",
            response=httpx.Response(429, request=REQUEST),
            body=None,
        )
        with pytest.raises(UpstreamError) as exc_info:
            await local_agent(StubCompletions(error=error)).infer("t", "", "Journaling")

        assert exc_info.value.status == 429
        assert exc_info.value.is_throttling is True
        assert exc_info.value.dependency == "inference"

    async def test_client_error_not_throttling(self) -> None:
        error = openai.BadRequestError(
            "context too long",
            response=httpx.Response(400, request=REQUEST),
            body=None,
        )
        with pytest.raises(UpstreamError) as exc_info:
            await local_agent(StubCompletions(error=error)).infer("t", "", "Journaling")

        assert exc_info.value.status == 400
        assert exc_info.value.is_throttling is False

    async def test_connection_error_has_no_status(self) -> None:
        error = openai.APIConnectionError(request=REQUEST)
        with pytest.raises(UpstreamError) as exc_info:
            await local_agent(StubCompletions(error=error)).infer("t", "", "Journaling")

        assert exc_info.value.status is None
        assert exc_info.value.is_throttling is True


class TestSdkRetries:
    """Every inference request is paced by the throttled client, so SDK clients never retry."""

    async def test_local_rate_limit_sends_one_request(self, clock: FakeClock) -> None:
        hits: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hits.append(request)
            return httpx.Response(429, json={"error": {"message": "slow down"}})

        agent = InsightAgent(LOCAL_MODEL)
        assert agent._client.max_retries == 0
        agent._client = agent._client.with_options(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        client = ThrottledClient("inference", ThrottleSettings(base_interval_ms=0), clock=clock, sleep=clock.sleep)

        with pytest.raises(UpstreamError):
            await client.call(lambda: agent.infer("t", "", "Journaling"))

        assert len(hits) == 1
        assert client.state.backoff_ms == 10000

    def test_anthropic_client_never_retries(self) -> None:
        model = _build_model("anthropic:claude-haiku-4-5", "sk-test")
        assert isinstance(model, AnthropicModel)
        assert model.client.max_retries == 0

    def test_openai_client_never_retries(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        model = _build_model("openai:gpt-4o-mini")
        assert isinstance(model, OpenAIChatModel)
        assert model.client.max_retries == 0

    def test_other_providers_passed_through(self) -> None:
        assert _build_model("groq:llama-3.3-70b") == "groq:llama-3.3-70b"
