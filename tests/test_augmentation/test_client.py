"""Tests for prompt building, response parsing and the Perplexity client."""

import json
import random

import httpx
import pytest

from recordhub.augmentation.client import (
    NO_RESPONSE_TEXT,
    PerplexityClient,
    SimulatedResearchClient,
    build_prompt,
    create_research_client,
    extract_custom_properties,
    is_model_rejection,
)
from recordhub.config.settings import AugmentationConfig, ResearchAPIConfig, SimulationConfig
from recordhub.records.models import Record
from recordhub.telemetry.errors import ConfigError, NetworkError


@pytest.fixture
def record():
    return Record(fields={"name": "Acme", "industry": "Technology", "size": "Large", "annual_revenue": 0})


@pytest.fixture
def settings():
    return ResearchAPIConfig(base_url="https://api.test")


def _config(**overrides):
    values = {"api_key": "pplx-test", "prompt_template": "Research {name} ({industry})", "use_real_api": True}
    values.update(overrides)
    return AugmentationConfig(**values)


def _completion(content, **extra):
    return {"choices": [{"message": {"role": "assistant", "content": content}}], **extra}


class TestBuildPrompt:
    def test_substitutes_fields(self):
        assert build_prompt("{name} in {industry}", {"name": "Acme", "industry": "Tech"}) == "Acme in Tech"

    def test_missing_and_empty_fields_become_na(self):
        prompt = build_prompt("{name}/{website}/{size}", {"name": "Acme", "size": ""})
        assert prompt == "Acme/N/A/N/A"

    def test_zero_is_kept(self):
        assert build_prompt("{revenue}", {"revenue": 0}) == "0"

    def test_repeated_placeholders(self):
        assert build_prompt("{name} {name}", {"name": "Acme"}) == "Acme Acme"

    def test_custom_property_instructions_appended(self):
        prompt = build_prompt("{name}", {"name": "Acme"}, ["employees", "founded"])
        assert prompt.startswith("Acme\n\n")
        assert '"custom_properties"' in prompt
        assert '"employees", "founded"' in prompt


class TestExtractCustomProperties:
    def test_trailing_block_is_parsed_and_removed(self):
        content = 'Acme is growing.\n\n```json\n{"custom_properties": {"employees": "500"}}\n```'
        text, properties = extract_custom_properties(content)
        assert text == "Acme is growing."
        assert properties == {"employees": "500"}

    def test_absent_block_yields_empty_mapping(self):
        text, properties = extract_custom_properties("Just analysis.\n")
        assert text == "Just analysis."
        assert properties == {}

    def test_malformed_block_yields_empty_mapping(self):
        content = 'Text\n```json\n{"custom_properties": {"employees": }}\n```'
        text, properties = extract_custom_properties(content)
        assert properties == {}
        assert text == content.strip()

    def test_other_json_blocks_are_left_alone(self):
        content = 'Text\n```json\n{"other": 1}\n```'
        assert extract_custom_properties(content) == (content.strip(), {})


def test_is_model_rejection():
    assert is_model_rejection(400, '{"error": "Invalid model sonar-pro"}')
    assert not is_model_rejection(500, "model server overloaded")
    assert not is_model_rejection(401, "invalid api key")


class TestPerplexityClient:
    @pytest.mark.asyncio
    async def test_request_payload_and_response(self, record, settings):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = (
                "Acme analysis\n```json\n"
                '{"custom_properties": {"employees": "500"}}\n```'
            )
            return httpx.Response(200, json=_completion(body, citations=["https://acme.example"]))

        client = PerplexityClient(settings, transport=httpx.MockTransport(handler))
        result = await client.research(record, _config(custom_properties=["employees"]))

        assert result.text == "Acme analysis"
        assert result.custom_properties == {"employees": "500"}
        assert result.citations == ["https://acme.example"]
        assert result.used_fallback is False

        request = seen[0]
        assert request.url == "https://api.test/chat/completions"
        assert request.headers["Authorization"] == "Bearer pplx-test"
        payload = json.loads(request.content)
        assert payload["model"] == "sonar"
        assert payload["messages"][0]["role"] == "user"
        assert payload["messages"][0]["content"].startswith("Research Acme (Technology)")
        assert payload["max_tokens"] == 2000
        assert payload["temperature"] == 0.7
        assert payload["top_p"] == 0.9
        assert "search_recency_filter" not in payload

    @pytest.mark.asyncio
    async def test_deep_research_and_pro_model(self, record, settings):
        payloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json=_completion("ok"))

        client = PerplexityClient(settings, transport=httpx.MockTransport(handler))
        await client.research(
            record, _config(use_sonar_pro=True, use_deep_research=True, search_recency_filter="week")
        )

        assert payloads[0]["model"] == "sonar-pro"
        assert payloads[0]["search_recency_filter"] == "week"

    @pytest.mark.asyncio
    async def test_model_rejection_retries_once_with_fallback(self, record, settings):
        models = []

        def handler(request: httpx.Request) -> httpx.Response:
            model = json.loads(request.content)["model"]
            models.append(model)
            if model == "sonar-pro":
                return httpx.Response(400, json={"error": {"message": "Invalid model 'sonar-pro'"}})
            return httpx.Response(200, json=_completion("fallback answer"))

        client = PerplexityClient(settings, transport=httpx.MockTransport(handler))
        result = await client.research(record, _config(use_sonar_pro=True))

        assert models == ["sonar-pro", "sonar"]
        assert result.used_fallback is True
        assert result.model == "sonar"
        assert result.text == "fallback answer"

    @pytest.mark.asyncio
    async def test_fallback_failure_raises_network_error(self, record, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"error": "unknown model"})

        client = PerplexityClient(settings, transport=httpx.MockTransport(handler))
        with pytest.raises(NetworkError) as excinfo:
            await client.research(record, _config(use_sonar_pro=True))

        assert len(calls) == 2
        assert excinfo.value.status_code == 400

    @pytest.mark.asyncio
    async def test_non_model_error_is_not_retried(self, record, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="internal error")

        client = PerplexityClient(settings, transport=httpx.MockTransport(handler))
        with pytest.raises(NetworkError, match="500"):
            await client.research(record, _config(use_sonar_pro=True))
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error_raises_network_error(self, record, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = PerplexityClient(settings, transport=httpx.MockTransport(handler))
        with pytest.raises(NetworkError, match="connection refused"):
            await client.research(record, _config())

    @pytest.mark.asyncio
    async def test_empty_choices_yield_placeholder_text(self, record, settings):
        client = PerplexityClient(
            settings, transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
        )
        result = await client.research(record, _config())
        assert result.text == NO_RESPONSE_TEXT

    @pytest.mark.asyncio
    async def test_missing_api_key_raises_config_error(self, record, settings):
        client = PerplexityClient(settings, transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        with pytest.raises(ConfigError):
            await client.research(record, _config(api_key=""))


class TestSimulatedClient:
    @pytest.mark.asyncio
    async def test_returns_industry_specific_text(self, record):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        client = SimulatedResearchClient(
            SimulationConfig(min_delay_s=2, max_delay_s=5), sleep=fake_sleep, rng=random.Random(7)
        )
        result = await client.research(record, _config(custom_properties=["employees"]))

        assert 2 <= delays[0] <= 5
        assert result.text.startswith("## Market Analysis for Acme")
        assert result.custom_properties == {"employees": "Simulated employees"}
        assert result.model == "simulated"

    @pytest.mark.asyncio
    async def test_default_template_fills_missing_fields(self):
        async def fake_sleep(seconds):
            return None

        client = SimulatedResearchClient(SimulationConfig(min_delay_s=0, max_delay_s=0), sleep=fake_sleep)
        result = await client.research(Record(fields={"name": "Globex", "industry": "Energy"}), _config())
        assert "Globex is a N/A company in the Energy industry" in result.text


def test_create_research_client_picks_backend(settings):
    simulation = SimulationConfig(min_delay_s=0, max_delay_s=0)
    assert isinstance(create_research_client(_config(), settings, simulation), PerplexityClient)
    assert isinstance(
        create_research_client(_config(use_real_api=False), settings, simulation),
        SimulatedResearchClient,
    )
