"""Response models for Indeed's GraphQL and legacy publisher endpoints.

Everything the provider sends is validated here; a ValidationError means the
payload did not have the shape we depend on.
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.core.schemas import CanonicalJobResult
from src.pipeline.salary import Compensation, normalize_compensation

PROVIDER = "indeed"

# Indeed places remote jobs at these coordinates.
_REMOTE_COORDINATES = (25.0, -40.0)


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# GraphQL
# ---------------------------------------------------------------------------


class FormattedLocation(_Model):
    long: str = ""


class JobLocation(_Model):
    formatted: FormattedLocation = Field(default_factory=FormattedLocation)
    latitude: float | None = None
    longitude: float | None = None


class JobDescription(_Model):
    html: str | None = None


class JobAttribute(_Model):
    label: str


class Employer(_Model):
    name: str | None = None


class IndeedJob(_Model):
    key: str
    title: str
    description: JobDescription | None = None
    location: JobLocation = Field(default_factory=JobLocation)
    source_employer_name: str = Field(alias="sourceEmployerName")
    employer: Employer | None = None
    date_on_indeed: datetime = Field(alias="dateOnIndeed")
    attributes: list[JobAttribute] = Field(default_factory=list)
    compensation: Compensation | None = None

    @field_validator("date_on_indeed", mode="before")
    @classmethod
    def from_epoch_millis(cls, v: Any) -> Any:
        if isinstance(v, (int, float)):
            return datetime.fromtimestamp(v / 1000, tz=timezone.utc)
        return v

    def to_canonical(self, host_name: str, currency: str = "£") -> CanonicalJobResult:
        formatted_salary, avg_yearly = normalize_compensation(self.compensation, currency)
        location = self.location.formatted.long
        coords = (self.location.latitude, self.location.longitude)
        remote = location.lower() == "remote" or coords == _REMOTE_COORDINATES

        alternative = None
        if (
            self.employer is not None
            and self.employer.name
            and self.employer.name.lower() != self.source_employer_name.lower()
        ):
            alternative = self.employer.name

        return CanonicalJobResult(
            key=self.key,
            title=self.title,
            url=f"https://{host_name}/viewjob?jk={self.key}",
            html_description=self.description.html if self.description else None,
            remote=remote,
            location=location,
            latitude=None if remote else self.location.latitude,
            longitude=None if remote else self.location.longitude,
            employer_name=self.source_employer_name,
            alternative_employer_name=alternative,
            posted=self.date_on_indeed,
            attributes=[a.label for a in self.attributes],
            formatted_salary=formatted_salary,
            avg_yearly_salary=avg_yearly,
        )


class JobSearchResult(_Model):
    job: IndeedJob


class PageInfo(_Model):
    next_cursor: str | None = Field(default=None, alias="nextCursor")


class JobSearch(_Model):
    results: list[JobSearchResult] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo, alias="pageInfo")


class JobSearchData(_Model):
    job_search: JobSearch = Field(alias="jobSearch")


class JobDataResult(_Model):
    key: str
    compensation: Compensation | None = None
    description: JobDescription | None = None
    attributes: list[JobAttribute] = Field(default_factory=list)


class JobDataWrapper(_Model):
    job: JobDataResult


class JobDataResults(_Model):
    results: list[JobDataWrapper] = Field(default_factory=list)


class JobDataData(_Model):
    job_data: JobDataResults = Field(alias="jobData")


# ---------------------------------------------------------------------------
# Legacy publisher API
# ---------------------------------------------------------------------------


class PublisherJobResult(_Model):
    job_title: str = Field(alias="jobtitle")
    company: str
    formatted_location: str = Field(default="", alias="formattedLocation")
    date: datetime
    snippet: str = ""
    url: str
    latitude: float | None = None
    longitude: float | None = None
    job_key: str = Field(alias="jobkey")
    sponsored: bool = False

    @field_validator("date", mode="before")
    @classmethod
    def from_rfc1123(cls, v: Any) -> Any:
        if isinstance(v, str):
            parsed = parsedate_to_datetime(v)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        return v

    def to_canonical(self) -> CanonicalJobResult:
        # Rebuild the view URL on the advertising domain, without tracking parameters.
        parts = urlsplit(self.url)
        return CanonicalJobResult(
            key=self.job_key,
            title=self.job_title,
            url=f"{parts.scheme}://{parts.netloc}/viewjob?jk={self.job_key}",
            snippet=self.snippet or None,
            location=self.formatted_location,
            latitude=self.latitude,
            longitude=self.longitude,
            employer_name=self.company,
            posted=self.date,
        )


class PublisherSearchResponse(_Model):
    total_results: int = Field(default=0, alias="totalResults")
    results: list[PublisherJobResult] = Field(default_factory=list)
