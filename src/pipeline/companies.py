"""Company resolution: map a result's employer onto a stored or staged company.

Resolution order for each result:
  1. stored company whose name or alternate name matches the employer name,
     then the alternative employer name;
  2. company already staged earlier in this run under the same normalised name;
  3. a new staged company built from the result.

Staged companies are only written when the run persists its batch, so two
results from the same new employer share one company. Stored lookups are
cached per queried name, so a name is never tied to a company that was only
matched through the other name on the same result.
"""

import logging
import re
import sqlite3
from dataclasses import dataclass

from src.core.db import find_company_by_name
from src.core.schemas import CanonicalJobResult, StagedCompany

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    return _WHITESPACE.sub(" ", name).strip().casefold()


@dataclass(frozen=True)
class CompanyRef:
    """Either a stored company (``company_id``) or a staged one (``staged_index``)."""

    name: str
    company_id: int | None = None
    staged_index: int | None = None
    watched: bool = False
    blacklisted: bool = False

    @property
    def is_staged(self) -> bool:
        return self.staged_index is not None


class CompanyResolver:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._staged: list[StagedCompany] = []
        # Stored lookups keyed by the normalised name that was queried; misses
        # are cached as None.
        self._stored: dict[str, CompanyRef | None] = {}

    @property
    def staged_companies(self) -> list[StagedCompany]:
        return self._staged

    def resolve(self, result: CanonicalJobResult) -> CompanyRef:
        names = [result.employer_name]
        if result.alternative_employer_name:
            names.append(result.alternative_employer_name)

        for name in names:
            ref = self._find_stored(name)
            if ref is not None:
                return ref

        for name in names:
            ref = self._find_staged(normalize_name(name))
            if ref is not None:
                return ref

        return self._stage(result)

    def _find_stored(self, name: str) -> CompanyRef | None:
        key = normalize_name(name)
        if key in self._stored:
            return self._stored[key]

        ref: CompanyRef | None = None
        company = find_company_by_name(self._conn, name.strip())
        if company is not None:
            logger.debug("Matched '%s' to stored company %d", name, company.id)
            ref = CompanyRef(
                name=company.name,
                company_id=company.id,
                watched=company.watched,
                blacklisted=company.blacklisted,
            )
        self._stored[key] = ref
        return ref

    def _find_staged(self, key: str) -> CompanyRef | None:
        for index, staged in enumerate(self._staged):
            staged_keys = {normalize_name(staged.name)}
            staged_keys.update(normalize_name(n) for n in staged.alternate_names)
            if key in staged_keys:
                return CompanyRef(name=staged.name, staged_index=index)
        return None

    def _stage(self, result: CanonicalJobResult) -> CompanyRef:
        alternates = []
        if result.alternative_employer_name:
            alternates.append(result.alternative_employer_name.strip())
        staged = StagedCompany(
            name=result.employer_name.strip(),
            location=result.location,
            latitude=result.latitude,
            longitude=result.longitude,
            alternate_names=alternates,
        )
        self._staged.append(staged)
        logger.debug("Staged new company '%s'", staged.name)
        return CompanyRef(name=staged.name, staged_index=len(self._staged) - 1)
