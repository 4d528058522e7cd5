"""Research backends that turn one record into AI-generated analysis.

Two implementations share the ``ResearchClient`` interface:
- ``PerplexityClient`` calls the Perplexity chat-completions API over httpx,
  retrying once with a fallback model when the requested model is rejected.
- ``SimulatedResearchClient`` waits a random delay and returns canned text,
  for trying the workflow without an API key.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field

from recordhub.config.settings import AugmentationConfig, ResearchAPIConfig, SimulationConfig
from recordhub.records.models import Record
from recordhub.telemetry.errors import ConfigError, ErrorCode, NetworkError, emit_structured_error

logger = logging.getLogger(__name__)

MISSING_VALUE = "N/A"
NO_RESPONSE_TEXT = "No response from API"
CUSTOM_PROPERTIES_KEY = "custom_properties"

_PLACEHOLDER_RE = re.compile(r"\{([^{}\s]+)\}")
_CUSTOM_BLOCK_RE = re.compile(
    r"```json\s*(\{.*?\"" + CUSTOM_PROPERTIES_KEY + r"\".*?\})\s*```\s*$",
    re.DOTALL,
)
_MODEL_REJECTION_STATUSES = frozenset({400, 404, 422})


class ResearchResult(BaseModel):
    """Analysis text and researched property values for one record."""

    text: str
    custom_properties: dict[str, Any] = Field(default_factory=dict)
    model: str = ""
    used_fallback: bool = False
    citations: list[str] = Field(default_factory=list)


class ResearchClient(Protocol):
    async def research(self, record: Record, config: AugmentationConfig) -> ResearchResult: ...


# --- Prompt building and response parsing ---


def build_prompt(
    template: str,
    fields: Mapping[str, Any],
    custom_properties: list[str] | None = None,
) -> str:
    """Substitute ``{field}`` placeholders with record values.

    Placeholders for missing or empty fields become ``N/A``. When custom
    properties are requested, instructions for a trailing JSON block are
    appended.
    """

    def _substitute(match: re.Match[str]) -> str:
        value = fields.get(match.group(1))
        if value is None or value == "":
            return MISSING_VALUE
        return str(value)

    prompt = _PLACEHOLDER_RE.sub(_substitute, template)

    if custom_properties:
        keys = ", ".join(f'"{name}"' for name in custom_properties)
        prompt += (
            "\n\nAlso research the following data points for this company: "
            f"{', '.join(custom_properties)}.\n"
            "End your answer with a fenced ```json block of the form "
            f'{{"{CUSTOM_PROPERTIES_KEY}": {{...}}}} using exactly these keys: {keys}. '
            f'Use "{MISSING_VALUE}" for any value you cannot find.'
        )
    return prompt


def extract_custom_properties(content: str) -> tuple[str, dict[str, Any]]:
    """Split a trailing custom-properties JSON block off ``content``.

    Returns the remaining analysis text and the parsed properties. A missing
    or unparseable block yields an empty mapping.
    """
    match = _CUSTOM_BLOCK_RE.search(content)
    if match is None:
        return content.strip(), {}

    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        emit_structured_error(
            logger,
            code=ErrorCode.CUSTOM_PROPERTIES_PARSE_FAILED,
            message=str(exc),
            suppressed=True,
        )
        return content.strip(), {}

    properties = data.get(CUSTOM_PROPERTIES_KEY) if isinstance(data, dict) else None
    if not isinstance(properties, dict):
        return content.strip(), {}
    return content[: match.start()].strip(), properties


def select_model(config: AugmentationConfig, settings: ResearchAPIConfig) -> str:
    return settings.pro_model if config.use_sonar_pro else settings.standard_model


def is_model_rejection(status_code: int, error_text: str) -> bool:
    return status_code in _MODEL_REJECTION_STATUSES and "model" in error_text.lower()


# --- Perplexity ---


class PerplexityClient:
    """Client for the Perplexity chat-completions API.

    Stateless apart from its settings; a fresh httpx client is opened per
    request.
    """

    def __init__(
        self,
        settings: ResearchAPIConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    def build_payload(self, prompt: str, model: str, config: AugmentationConfig) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self._settings.max_tokens,
            "temperature": self._settings.temperature,
            "top_p": self._settings.top_p,
        }
        if config.use_deep_research:
            payload["search_recency_filter"] = config.search_recency_filter
        return payload

    async def research(self, record: Record, config: AugmentationConfig) -> ResearchResult:
        if not config.api_key:
            raise ConfigError("API key is required for real Perplexity API calls")

        prompt = build_prompt(config.prompt_template, record.fields, config.custom_properties)
        model = select_model(config, self._settings)
        fallback = self._settings.fallback_model

        async with httpx.AsyncClient(
            base_url=self._settings.base_url,
            timeout=self._settings.timeout_s,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
        ) as client:
            response = await self._post(client, self.build_payload(prompt, model, config))
            used_fallback = False

            if response.is_error and fallback != model and is_model_rejection(
                response.status_code, response.text
            ):
                logger.warning(
                    "Model %s rejected (status %d); retrying with %s",
                    model,
                    response.status_code,
                    fallback,
                    extra={"record_id": record.id},
                )
                model, used_fallback = fallback, True
                response = await self._post(client, self.build_payload(prompt, model, config))

            if response.is_error:
                raise NetworkError(
                    f"API request failed: {response.status_code} {response.reason_phrase}",
                    status_code=response.status_code,
                )

        try:
            data = response.json()
        except ValueError as exc:
            raise NetworkError(f"API returned invalid JSON: {exc}") from exc
        return self._parse_response(data, model, used_fallback)

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> httpx.Response:
        try:
            return await client.post("/chat/completions", json=payload)
        except httpx.HTTPError as exc:
            raise NetworkError(f"API call failed: {exc}") from exc

    @staticmethod
    def _parse_response(data: dict[str, Any], model: str, used_fallback: bool) -> ResearchResult:
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or NO_RESPONSE_TEXT
        text, properties = extract_custom_properties(content)
        citations = [str(item) for item in data.get("citations") or []]
        return ResearchResult(
            text=text,
            custom_properties=properties,
            model=data.get("model") or model,
            used_fallback=used_fallback,
            citations=citations,
        )


# --- Simulation ---

_SIMULATED_RESPONSES: dict[str, str] = {
    "Technology": """## Market Analysis for {name}

**Competitive Landscape:**
{name} operates in the highly competitive technology sector, competing with established players and innovative startups.

**Growth Opportunities:**
- Expansion into emerging markets
- Development of AI/ML capabilities
- Strategic partnerships with enterprise clients

**Recommendations:**
1. Invest in R&D for innovative solutions
2. Strengthen cybersecurity offerings
3. Focus on customer success and retention""",
    "Software": """## Strategic Analysis for {name}

**Market Position:**
As a software company, {name} has significant growth potential in the expanding SaaS market. The company's size ({size}) suggests it's well-positioned for scaling.

**Challenges:**
- Intense competition from larger players
- Customer acquisition costs

**Strategic Recommendations:**
1. Focus on product differentiation
2. Develop recurring revenue models""",
    "default": """## Business Analysis for {name}

**Company Overview:**
{name} is a {size} company in the {industry} industry, headquartered in {location}.

**Growth Opportunities:**
- Market expansion in adjacent industries
- Digital transformation initiatives

**Recommendations:**
1. Leverage technology for operational efficiency
2. Explore new market segments""",
}


class SimulatedResearchClient:
    """Stand-in backend that returns canned analysis after a random delay."""

    def __init__(
        self,
        settings: SimulationConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def research(self, record: Record, config: AugmentationConfig) -> ResearchResult:
        await self._sleep(self._rng.uniform(self._settings.min_delay_s, self._settings.max_delay_s))

        industry = str(record.fields.get("industry", ""))
        template = _SIMULATED_RESPONSES.get(industry, _SIMULATED_RESPONSES["default"])
        text = build_prompt(template, record.fields)
        properties = {name: f"Simulated {name}" for name in config.custom_properties}
        return ResearchResult(text=text, custom_properties=properties, model="simulated")


def create_research_client(
    config: AugmentationConfig,
    research_settings: ResearchAPIConfig,
    simulation_settings: SimulationConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ResearchClient:
    """Pick the real or simulated backend according to ``config.use_real_api``."""
    if config.use_real_api:
        return PerplexityClient(research_settings, transport=transport)
    return SimulatedResearchClient(simulation_settings)
