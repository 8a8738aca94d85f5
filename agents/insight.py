"""Insight agent: turns one post into a structured marketing insight.

The agent is a thin adapter over the inference service. It builds the
request, runs it, and maps every service failure onto UpstreamError so the
throttled client in front of it can tell throttling signals from other
errors:

    - HTTP errors keep their status code (429 and 5xx feed the backoff)
    - Connection failures and timeouts carry status None
    - Unusable model output is raised as-is (it says nothing about load)

Two backends are supported:
    - Remote models through PydanticAI, e.g. 'anthropic:claude-haiku-4-5'
    - Local OpenAI-compatible servers, 'openai:{model_name}@{base_url}',
      called directly and parsed with agents.parsing
"""

import logging

import openai
from openai import AsyncOpenAI
from pydantic_ai import Agent, PromptedOutput
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.models import Model

from agents.parsing import parse_insight_text
from errors import UpstreamError
from models.insight import InsightDraft

logger = logging.getLogger(__name__)

DEPENDENCY_NAME = "inference"
MAX_BODY_CHARS = 4000

INSIGHT_PROMPT = """You are a marketing research analyst reviewing community posts for product insights.

## Task
Read one post and extract the single most useful marketing insight it contains.

## Insight Types
- pain_point: the author describes a frustration, problem or unmet need
- competitor_mention: the author names or compares an alternative product or service
- feature_request: the author asks for, or wishes for, a specific capability
- general_sentiment: anything else worth tracking about how people feel

## Priority
- high: strong, specific signal that a product team should act on soon
- medium: clear signal, worth tracking
- low: weak or generic signal

## Output Requirements
Respond with JSON containing:
- narrative: 2-3 sentences describing the key insight
- insight_type: one of pain_point, competitor_mention, feature_request, general_sentiment
- priority: one of high, medium, low
- sentiment: one of positive, negative, neutral
- topics: 2-5 short keywords
- summary: one sentence summary"""


def build_request(title: str, body: str, partition_key: str) -> str:
    """Render the user message for one post."""
    body = (body or "").strip()
    if len(body) > MAX_BODY_CHARS:
        body = body[:MAX_BODY_CHARS] + "..."
    return f"""Community: r/{partition_key}
Title: {title}

{body or "(no body text)"}"""


def _parse_local_model(model_str: str) -> tuple[str, str] | None:
    """Parse local model string into (model_name, base_url) or None if not local."""
    if model_str.startswith("openai:") and "@" in model_str:
        model_name, base_url = model_str[len("openai:"):].split("@", 1)
        return model_name, base_url
    return None


def _build_model(model: str, api_key: str = "") -> Model | str:
    """Resolve a remote model string into a PydanticAI model.

    Anthropic and OpenAI models get an SDK client with max_retries=0: every
    request goes through the throttled client, which does all the waiting.
    Other providers are passed through as strings.
    """
    provider, _, model_name = model.partition(":")
    if provider == "anthropic":
        from anthropic import AsyncAnthropic
        from pydantic_ai.models.anthropic import AnthropicModel
        from pydantic_ai.providers.anthropic import AnthropicProvider

        client = AsyncAnthropic(api_key=api_key or None, max_retries=0)
        return AnthropicModel(model_name, provider=AnthropicProvider(anthropic_client=client))
    if provider == "openai":
        from pydantic_ai.models.openai import OpenAIChatModel
        from pydantic_ai.providers.openai import OpenAIProvider

        client = AsyncOpenAI(max_retries=0)
        return OpenAIChatModel(model_name, provider=OpenAIProvider(openai_client=client))
    return model


def _create_agent(model: str, api_key: str = "") -> Agent[None, InsightDraft]:
    """Create the PydanticAI agent for remote models.

    PromptedOutput keeps the JSON contract in the prompt, so the same agent
    works with providers that lack tool calling.
    """
    return Agent(
        _build_model(model, api_key),
        output_type=PromptedOutput(InsightDraft),
        system_prompt=INSIGHT_PROMPT,
        retries=2,
    )


class InsightAgent:
    """Runs one inference call per item.

    Example:
        >>> agent = InsightAgent("anthropic:claude-haiku-4-5")
        >>> draft = await agent.infer("Lost all my entries", "...", "Journaling")
        >>> draft.category
        <InsightCategory.PAIN_POINT: 'pain_point'>
    """

    name = DEPENDENCY_NAME

    def __init__(self, model: str, api_key: str = ""):
        self.model = model
        self._local_model = _parse_local_model(model)
        if self._local_model:
            model_name, base_url = self._local_model
            logger.info("Using local model | model=%s base_url=%s", model_name, base_url)
            # Local servers don't need authentication - use placeholder
            self._client = AsyncOpenAI(base_url=base_url, api_key="local-model", max_retries=0)
            self._agent = None
        else:
            self._client = None
            self._agent = _create_agent(model, api_key)

    async def infer(self, title: str, body: str, partition_key: str) -> InsightDraft:
        """Analyze one post.

        Returns:
            Normalized InsightDraft

        Raises:
            UpstreamError: The inference service failed or refused the call
            InsightParseError: A local model replied without usable JSON
            UnexpectedModelBehavior: A remote model kept returning invalid output
        """
        message = build_request(title, body, partition_key)
        try:
            if self._local_model:
                return await self._infer_local(message)
            return await self._infer_remote(message, title)
        except ModelHTTPError as e:
            raise UpstreamError(self.name, f"{e.model_name}: {e.message}", status=e.status_code) from e
        except openai.APIStatusError as e:
            raise UpstreamError(self.name, e.message, status=e.status_code) from e
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise UpstreamError(self.name, f"{type(e).__name__}: {e}") from e

    async def _infer_remote(self, message: str, title: str) -> InsightDraft:
        result = await self._agent.run(message)
        usage = result.usage()
        logger.debug(
            "Insight inferred: %s... -> %s | requests=%d tokens=%s",
            title[:50],
            result.output.category.value,
            usage.requests,
            usage.total_tokens,
        )
        return result.output

    async def _infer_local(self, message: str) -> InsightDraft:
        """Call a local OpenAI-compatible server.

        Local chat templates often reject system messages, so the instructions
        are embedded in a single user message.
        """
        model_name, _ = self._local_model
        prompt = f"""{INSIGHT_PROMPT}

---

Analyze the following post. Output ONLY valid JSON.

{message}

JSON:"""

        resp = await self._client.chat.completions.create(
            model=model_name,
            messages=[{"role": "user", "content": prompt}],
            stream=False,
        )
        return parse_insight_text(resp.choices[0].message.content)
