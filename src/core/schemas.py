"""Core data models for the ingestion pipeline.

Persisted rows (Search, SearchRun, Company, Job, Alert) are frozen snapshots
read back from SQLite. CanonicalJobResult is the transient, provider-agnostic
form passed between fetchers, enrichment and the company resolver; enrichment
fills its salary/description fields in place, so it is mutable.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AlertType:
    NEW_JOB = "NewJob"
    ERROR = "Error"


class Search(BaseModel):
    """A saved query configuration plus last-run bookkeeping."""

    model_config = ConfigDict(frozen=True)

    id: int
    provider: str
    query: str
    country: str
    location: str | None = None
    distance: int | None = None
    max_age: int | None = None
    job_type: str | None = None
    employer_only: bool = False
    enabled: bool = True
    last_run: datetime | None = None
    last_fetch_success: bool | None = None
    last_result_count: int | None = None

    @property
    def display_name(self) -> str:
        return f"{self.query} jobs in {self.location} on {self.provider}"


class SearchRun(BaseModel):
    """Immutable audit record of one orchestration run."""

    model_config = ConfigDict(frozen=True)

    id: int
    search_id: int
    time: datetime
    success: bool
    message: str | None = None
    new_jobs: int = 0
    new_companies: int = 0
    time_taken: int = 0


class Company(BaseModel):
    """Employer identity, including alternate names used for fuzzy identity."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    location: str = ""
    latitude: float | None = None
    longitude: float | None = None
    watched: bool = False
    blacklisted: bool = False
    recruiter: bool = False
    alternate_names: list[str] = Field(default_factory=list)


class Job(BaseModel):
    """A stored job posting."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    description: str = ""
    salary: str | None = None
    avg_yearly_salary: int | None = None
    remote: bool = False
    location: str = ""
    latitude: float | None = None
    longitude: float | None = None
    url: str | None = None
    company_id: int
    posted: datetime | None = None
    provider: str | None = None
    provider_id: str | None = None
    source_id: int | None = None
    duplicate_job_id: int | None = None
    checked_for_duplicate: bool = False
    archived: bool = False
    seen: bool = False
    saved: bool = False
    status: str = "Not Applied"


class Alert(BaseModel):
    """A durable notification."""

    model_config = ConfigDict(frozen=True)

    id: int
    type: str
    title: str
    message: str | None = None
    url: str | None = None
    read: bool = False
    created: datetime


class CanonicalJobResult(BaseModel):
    """One fetched job posting, independent of the provider that returned it.

    Carries everything enrichment and company resolution need, so neither has
    to query the provider's search endpoint again.
    """

    key: str
    title: str
    url: str
    html_description: str | None = None
    snippet: str | None = None
    remote: bool = False
    location: str = ""
    latitude: float | None = None
    longitude: float | None = None
    employer_name: str
    alternative_employer_name: str | None = None
    posted: datetime
    attributes: list[str] = Field(default_factory=list)
    formatted_salary: str | None = None
    avg_yearly_salary: int | None = None

    @property
    def needs_salary(self) -> bool:
        return self.formatted_salary is None and self.avg_yearly_salary is None

    @property
    def needs_description(self) -> bool:
        return not self.html_description


class StagedCompany(BaseModel):
    """A company created during a run but not yet written to storage."""

    name: str
    location: str = ""
    latitude: float | None = None
    longitude: float | None = None
    alternate_names: list[str] = Field(default_factory=list)


class JobDraft(BaseModel):
    """A job materialised from a canonical result, waiting to be inserted.

    Exactly one of ``company_id`` (existing company) or ``staged_company``
    (index into the run's staged company list) is set.
    """

    title: str
    description: str = ""
    salary: str | None = None
    avg_yearly_salary: int | None = None
    remote: bool = False
    location: str = ""
    latitude: float | None = None
    longitude: float | None = None
    url: str | None = None
    posted: datetime | None = None
    provider: str
    provider_id: str
    source_id: int | None = None
    archived: bool = False
    company_id: int | None = None
    staged_company: int | None = None
    category_ids: list[int] = Field(default_factory=list)
