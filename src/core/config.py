"""Configuration models and YAML loader for the job ingestion pipeline."""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "JOBHUNT_INDEED_GRAPHQL_API_KEY": ("indeed", "graphql_api_key"),
    "JOBHUNT_INDEED_PUBLISHER_ID": ("indeed", "publisher_id"),
    "JOBHUNT_DATABASE_PATH": ("database", "path"),
}


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/jobhunt.db"


class HttpConfig(BaseModel):
    """Outbound HTTP client settings shared by every provider."""

    timeout_seconds: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=4, ge=1, le=10)
    backoff_min_seconds: float = Field(default=1.0, ge=0)
    backoff_max_seconds: float = Field(default=16.0, ge=0)
    user_agent: str = "Mozilla/5.0 (X11; Linux x86_64) jobhunt/1.0"

    @model_validator(mode="after")
    def backoff_ordered(self) -> "HttpConfig":
        if self.backoff_max_seconds < self.backoff_min_seconds:
            msg = "backoff_max_seconds must be >= backoff_min_seconds"
            raise ValueError(msg)
        return self


class IndeedConfig(BaseModel):
    """Indeed provider settings.

    ``fetcher`` picks the search endpoint used for a run; the two are never
    mixed within one run.
    """

    fetcher: Literal["graphql", "publisher"] = "graphql"

    graphql_api_key: str | None = None
    graphql_url: str = "https://apis.indeed.com/graphql"
    locale: str = "en-GB"
    host_name: str = "uk.indeed.com"
    search_radius_unit: str = "MILES"
    search_limit: int = Field(default=50, ge=1, le=100)

    publisher_id: str | None = None
    publisher_url: str = "https://api.indeed.com"
    description_url: str = "https://www.indeed.com"
    fetch_salary: bool = True
    use_graphql_salary_and_descriptions: bool = True
    salary_failure_threshold: int = Field(default=10, ge=1)

    def can_use_graphql(self) -> bool:
        return bool(self.graphql_api_key)

    def can_use_publisher(self) -> bool:
        return bool(self.publisher_id)


class DuplicateCheckConfig(BaseModel):
    """Fuzzy duplicate-detection tuning. Similarities are 0-100 rapidfuzz scores."""

    enabled: bool = False
    title_similarity_threshold: float = Field(default=90.0, ge=0.0, le=100.0)
    description_similarity_threshold: float = Field(default=75.0, ge=0.0, le=100.0)
    identical_description_similarity_threshold: float = Field(default=95.0, ge=0.0, le=100.0)
    check_months: int | None = Field(default=6, ge=1)


class SalaryConfig(BaseModel):
    """Formatting for salaries synthesised from numeric ranges."""

    currency_symbol: str = "£"


class SearchConfig(BaseModel):
    """A saved search seeded into storage from the settings file."""

    provider: str = "indeed"
    query: str
    country: str = "gb"
    location: str | None = None
    distance: int | None = Field(default=None, ge=0)
    max_age: int | None = Field(default=None, ge=1)
    job_type: str | None = None
    employer_only: bool = False
    enabled: bool = True

    @field_validator("query")
    @classmethod
    def query_not_empty(cls, v: str) -> str:
        if not v.strip():
            msg = "query must not be empty"
            raise ValueError(msg)
        return v.strip()

    @field_validator("country")
    @classmethod
    def country_lower(cls, v: str) -> str:
        return v.strip().lower()


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    indeed: IndeedConfig = Field(default_factory=IndeedConfig)
    duplicates: DuplicateCheckConfig = Field(default_factory=DuplicateCheckConfig)
    salary: SalaryConfig = Field(default_factory=SalaryConfig)
    searches: list[SearchConfig] = Field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file, then apply environment overrides."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(apply_env_overrides(raw))


def apply_env_overrides(
    raw: dict[str, Any],
    environ: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Overlay secrets from the environment onto raw settings data."""
    env = os.environ if environ is None else environ
    for var, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            raw.setdefault(section, {})[key] = value
    return raw
