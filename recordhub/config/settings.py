"""RecordHub configuration settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

DEFAULT_PROMPT_TEMPLATE = """Analyze the following company information and provide insights:

**Company Details:**
- Name: {name}
- Industry: {industry}
- Size: {size}
- Location: {location}
- Annual Revenue: {annual_revenue}
- Website: {website}
- Contact: {contact_email}

Please provide:
1. Market analysis and competitive landscape
2. Growth opportunities and potential challenges
3. Industry trends that may affect this company
4. Recommendations for business development
5. Key insights about their market position"""


def _float_env(var_name: str, default: str) -> float:
    return float(os.getenv(var_name, default))


class ResearchAPIConfig(BaseModel):
    """Perplexity chat-completions endpoint and generation parameters."""

    base_url: str = Field(
        default_factory=lambda: os.getenv("PERPLEXITY_BASE_URL", "https://api.perplexity.ai")
    )
    standard_model: str = "sonar"
    pro_model: str = "sonar-pro"
    fallback_model: str = "sonar"
    max_tokens: int = 2000
    temperature: float = 0.7
    top_p: float = 0.9
    timeout_s: float = Field(default_factory=lambda: _float_env("PERPLEXITY_TIMEOUT_S", "60"))

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"Invalid research API base URL: {value}")
        return value.rstrip("/")


class SimulationConfig(BaseModel):
    """Delay bounds for the simulated research backend."""

    min_delay_s: float = Field(default_factory=lambda: _float_env("RECORDHUB_SIM_MIN_DELAY_S", "2"))
    max_delay_s: float = Field(default_factory=lambda: _float_env("RECORDHUB_SIM_MAX_DELAY_S", "5"))

    @field_validator("min_delay_s", "max_delay_s")
    @classmethod
    def _validate_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("simulation delays must be >= 0")
        return value


class StorageConfig(BaseModel):
    """Local persistence of the record store."""

    data_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("RECORDHUB_DATA_DIR", "./data"))
    )
    storage_key: str = "record-store"
    enabled: bool = Field(
        default_factory=lambda: os.getenv("RECORDHUB_PERSIST", "true").lower() != "false"
    )


class APIConfig(BaseModel):
    """API/security controls from environment."""

    api_token: str = Field(default_factory=lambda: os.getenv("RECORDHUB_API_TOKEN", ""))
    allowed_origins: list[str] = Field(
        default_factory=lambda: APIConfig.parse_allowed_origins(
            os.getenv("RECORDHUB_ALLOWED_ORIGINS", "")
        )
    )

    @staticmethod
    def parse_allowed_origins(value: str) -> list[str]:
        if not value.strip():
            return ["http://localhost", "http://127.0.0.1"]
        origins = [origin.strip() for origin in value.split(",") if origin.strip()]
        if "*" in origins:
            raise ValueError("RECORDHUB_ALLOWED_ORIGINS cannot include '*'")
        return origins

    @field_validator("allowed_origins")
    @classmethod
    def _validate_allowed_origins(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("allowed_origins cannot be empty")
        for origin in value:
            parsed = urlparse(origin)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(f"Invalid CORS origin: {origin}")
        return value


class AugmentationConfig(BaseModel):
    """User-editable augmentation options, merged field-by-field at runtime."""

    api_key: str = Field(default_factory=lambda: os.getenv("PERPLEXITY_API_KEY", ""))
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE
    use_deep_research: bool = False
    use_sonar_pro: bool = False
    search_recency_filter: Literal["day", "week", "month", "year"] = "month"
    custom_properties: list[str] = Field(default_factory=list)
    use_real_api: bool = False

    model_config = {"validate_assignment": True}


class AppSettings(BaseModel):
    """Root configuration for a RecordHub process."""

    research: ResearchAPIConfig = Field(default_factory=ResearchAPIConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    log_level: str = Field(default_factory=lambda: os.getenv("RECORDHUB_LOG_LEVEL", "INFO"))
