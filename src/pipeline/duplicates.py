"""Fuzzy duplicate detection across stored jobs.

A job duplicates another stored posting within the recency window when
titles are similar (``partial_ratio``) AND descriptions are similar
(``ratio``). Failing that, a near-identical description alone is enough.
Within each pass the most recently posted candidate wins.

Checking is idempotent: every examined job is marked checked and never
examined again.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Iterable

from rapidfuzz import fuzz
from rapidfuzz.utils import default_process

from src.core.config import DuplicateCheckConfig
from src.core.db import (
    find_jobs_in_window,
    find_unchecked_job_ids,
    get_job,
    mark_checked_for_duplicate,
    mark_duplicate,
)
from src.platforms.base import is_cancelled

logger = logging.getLogger(__name__)


def title_similarity(a: str, b: str) -> float:
    return fuzz.partial_ratio(a, b, processor=default_process)


def description_similarity(a: str, b: str) -> float:
    return fuzz.ratio(a, b, processor=default_process)


class DuplicateDetector:
    def __init__(self, conn: sqlite3.Connection, config: DuplicateCheckConfig) -> None:
        self._conn = conn
        self._config = config

    def find_duplicate(self, job_id: int) -> int | None:
        """Return the id of the newest job this one duplicates, if any."""
        job = get_job(self._conn, job_id)
        if job is None:
            return None

        cfg = self._config
        candidates = find_jobs_in_window(self._conn, job.id, job.posted, cfg.check_months)
        scores = [
            (row["id"], description_similarity(job.description, row["description"]), row["title"])
            for row in candidates
        ]

        for candidate_id, desc_score, title in scores:
            if (
                desc_score >= cfg.description_similarity_threshold
                and title_similarity(job.title, title) >= cfg.title_similarity_threshold
            ):
                return candidate_id  # type: ignore[no-any-return]

        for candidate_id, desc_score, _ in scores:
            if desc_score >= cfg.identical_description_similarity_threshold:
                return candidate_id  # type: ignore[no-any-return]
        return None

    def check_jobs(
        self,
        job_ids: Iterable[int],
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Check each unchecked job once. Returns how many duplicates were linked.

        Stops early on cancellation; jobs not reached stay unchecked.
        """
        found = 0
        for job_id in job_ids:
            if is_cancelled(cancel):
                logger.info("Duplicate check cancelled")
                break

            job = get_job(self._conn, job_id)
            if job is None or job.checked_for_duplicate:
                continue

            duplicate_of = self.find_duplicate(job_id)
            if duplicate_of is not None:
                mark_duplicate(self._conn, job_id, duplicate_of)
                found += 1
                logger.info("Job %d is a duplicate of job %d", job_id, duplicate_of)
            mark_checked_for_duplicate(self._conn, job_id)

        return found

    def check_unchecked(self, cancel: asyncio.Event | None = None) -> int:
        return self.check_jobs(find_unchecked_job_ids(self._conn), cancel)
