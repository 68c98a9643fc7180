"""Tests for core schemas: Search, CanonicalJobResult, persisted snapshots."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from src.core.schemas import CanonicalJobResult, Company, JobDraft, Search


def _result(**overrides: object) -> CanonicalJobResult:
    defaults: dict[str, object] = {
        "key": "abc123",
        "title": "Python Developer",
        "url": "https://uk.indeed.com/viewjob?jk=abc123",
        "employer_name": "Acme Ltd",
        "posted": datetime(2024, 5, 1, tzinfo=timezone.utc),
    }
    defaults.update(overrides)
    return CanonicalJobResult(**defaults)  # type: ignore[arg-type]


class TestSearch:
    def test_display_name(self) -> None:
        s = Search(id=1, provider="indeed", query="python", country="gb", location="Leeds")
        assert s.display_name == "python jobs in Leeds on indeed"

    def test_frozen(self) -> None:
        s = Search(id=1, provider="indeed", query="python", country="gb")
        with pytest.raises(ValidationError):
            s.query = "java"  # type: ignore[misc]


class TestCanonicalJobResult:
    def test_needs_everything_by_default(self) -> None:
        r = _result()
        assert r.needs_salary is True
        assert r.needs_description is True
        assert r.attributes == []

    def test_salary_filled(self) -> None:
        r = _result(formatted_salary="£30,000 a year", avg_yearly_salary=30000)
        assert r.needs_salary is False

    def test_formatted_salary_alone_counts(self) -> None:
        assert _result(formatted_salary="Competitive").needs_salary is False

    def test_description_filled(self) -> None:
        assert _result(html_description="<p>Hi</p>").needs_description is False

    def test_snippet_does_not_count_as_description(self) -> None:
        assert _result(snippet="Short teaser").needs_description is True

    def test_mutable_for_enrichment(self) -> None:
        r = _result()
        r.html_description = "<p>Filled</p>"
        assert r.html_description == "<p>Filled</p>"


class TestCompany:
    def test_defaults(self) -> None:
        c = Company(id=1, name="Acme")
        assert c.watched is False
        assert c.blacklisted is False
        assert c.alternate_names == []


class TestJobDraft:
    def test_defaults(self) -> None:
        d = JobDraft(title="Dev", provider="indeed", provider_id="k1", company_id=3)
        assert d.archived is False
        assert d.staged_company is None
        assert d.category_ids == []
