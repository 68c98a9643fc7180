"""SQLite persistence for searches, runs, companies, jobs, categories and alerts."""

import calendar
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from src.core.schemas import (
    Alert,
    Company,
    Job,
    JobDraft,
    Search,
    SearchRun,
    StagedCompany,
)

logger = logging.getLogger(__name__)

_SEARCHES_TABLE = """
CREATE TABLE IF NOT EXISTS searches (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    provider            TEXT    NOT NULL,
    query               TEXT    NOT NULL,
    country             TEXT    NOT NULL,
    location            TEXT,
    distance            INTEGER,
    max_age             INTEGER,
    job_type            TEXT,
    employer_only       INTEGER NOT NULL DEFAULT 0,
    enabled             INTEGER NOT NULL DEFAULT 1,
    last_run            TEXT,
    last_fetch_success  INTEGER,
    last_result_count   INTEGER
);
"""

_SEARCH_RUNS_TABLE = """
CREATE TABLE IF NOT EXISTS search_runs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    search_id       INTEGER NOT NULL REFERENCES searches(id),
    time            TEXT    NOT NULL,
    success         INTEGER NOT NULL,
    message         TEXT,
    new_jobs        INTEGER NOT NULL DEFAULT 0,
    new_companies   INTEGER NOT NULL DEFAULT 0,
    time_taken      INTEGER NOT NULL DEFAULT 0
);
"""

_COMPANIES_TABLE = """
CREATE TABLE IF NOT EXISTS companies (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT    NOT NULL,
    location    TEXT    NOT NULL DEFAULT '',
    latitude    REAL,
    longitude   REAL,
    watched     INTEGER NOT NULL DEFAULT 0,
    blacklisted INTEGER NOT NULL DEFAULT 0,
    recruiter   INTEGER NOT NULL DEFAULT 0
);
"""

_COMPANY_NAMES_TABLE = """
CREATE TABLE IF NOT EXISTS company_names (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id  INTEGER NOT NULL REFERENCES companies(id),
    name        TEXT    NOT NULL
);
"""

_CATEGORIES_TABLE = """
CREATE TABLE IF NOT EXISTS categories (
    id      INTEGER PRIMARY KEY AUTOINCREMENT,
    name    TEXT NOT NULL
);
"""

_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS jobs (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    title                   TEXT    NOT NULL,
    description             TEXT    NOT NULL DEFAULT '',
    salary                  TEXT,
    avg_yearly_salary       INTEGER,
    remote                  INTEGER NOT NULL DEFAULT 0,
    location                TEXT    NOT NULL DEFAULT '',
    latitude                REAL,
    longitude               REAL,
    url                     TEXT,
    company_id              INTEGER NOT NULL REFERENCES companies(id),
    posted                  TEXT,
    provider                TEXT,
    provider_id             TEXT,
    source_id               INTEGER REFERENCES searches(id),
    duplicate_job_id        INTEGER REFERENCES jobs(id),
    checked_for_duplicate   INTEGER NOT NULL DEFAULT 0,
    archived                INTEGER NOT NULL DEFAULT 0,
    seen                    INTEGER NOT NULL DEFAULT 0,
    saved                   INTEGER NOT NULL DEFAULT 0,
    status                  TEXT    NOT NULL DEFAULT 'Not Applied',
    UNIQUE(provider, provider_id)
);
"""

_JOB_CATEGORIES_TABLE = """
CREATE TABLE IF NOT EXISTS job_categories (
    job_id      INTEGER NOT NULL REFERENCES jobs(id),
    category_id INTEGER NOT NULL REFERENCES categories(id),
    PRIMARY KEY (job_id, category_id)
);
"""

_ALERTS_TABLE = """
CREATE TABLE IF NOT EXISTS alerts (
    id      INTEGER PRIMARY KEY AUTOINCREMENT,
    type    TEXT    NOT NULL,
    title   TEXT    NOT NULL,
    message TEXT,
    url     TEXT,
    read    INTEGER NOT NULL DEFAULT 0,
    created TEXT    NOT NULL
);
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS ix_companies_name ON companies(name)",
    "CREATE INDEX IF NOT EXISTS ix_company_names_name ON company_names(name)",
    "CREATE INDEX IF NOT EXISTS ix_jobs_posted ON jobs(posted)",
    "CREATE INDEX IF NOT EXISTS ix_jobs_unchecked ON jobs(checked_for_duplicate)",
)


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    for ddl in (
        _SEARCHES_TABLE,
        _SEARCH_RUNS_TABLE,
        _COMPANIES_TABLE,
        _COMPANY_NAMES_TABLE,
        _CATEGORIES_TABLE,
        _JOBS_TABLE,
        _JOB_CATEGORIES_TABLE,
        _ALERTS_TABLE,
        *_INDEXES,
    ):
        conn.execute(ddl)
    conn.commit()
    return conn


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime | None) -> str | None:
    """Serialise a datetime as a UTC ISO string so text comparison orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def shift_months(value: datetime, months: int) -> datetime:
    """Move a datetime by whole calendar months, clamping the day."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


# ---------------------------------------------------------------------------
# Searches and runs
# ---------------------------------------------------------------------------


def _search_from_row(row: sqlite3.Row) -> Search:
    return Search(
        id=row["id"],
        provider=row["provider"],
        query=row["query"],
        country=row["country"],
        location=row["location"],
        distance=row["distance"],
        max_age=row["max_age"],
        job_type=row["job_type"],
        employer_only=bool(row["employer_only"]),
        enabled=bool(row["enabled"]),
        last_run=_dt(row["last_run"]),
        last_fetch_success=(
            None if row["last_fetch_success"] is None else bool(row["last_fetch_success"])
        ),
        last_result_count=row["last_result_count"],
    )


def insert_search(
    conn: sqlite3.Connection,
    provider: str,
    query: str,
    country: str,
    *,
    location: str | None = None,
    distance: int | None = None,
    max_age: int | None = None,
    job_type: str | None = None,
    employer_only: bool = False,
    enabled: bool = True,
) -> int:
    """Create a saved search. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO searches
            (provider, query, country, location, distance, max_age, job_type,
             employer_only, enabled)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            provider,
            query,
            country,
            location,
            distance,
            max_age,
            job_type,
            int(employer_only),
            int(enabled),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def find_search_id(
    conn: sqlite3.Connection,
    provider: str,
    query: str,
    country: str,
    location: str | None,
) -> int | None:
    row = conn.execute(
        """
        SELECT id FROM searches
        WHERE provider = ? AND query = ? AND country = ? AND location IS ?
        LIMIT 1
        """,
        (provider, query, country, location),
    ).fetchone()
    return None if row is None else row["id"]


def get_search(conn: sqlite3.Connection, search_id: int) -> Search | None:
    row = conn.execute("SELECT * FROM searches WHERE id = ?", (search_id,)).fetchone()
    return None if row is None else _search_from_row(row)


def find_enabled_searches(conn: sqlite3.Connection, provider: str) -> list[Search]:
    """Return enabled searches for a provider in creation order."""
    rows = conn.execute(
        "SELECT * FROM searches WHERE provider = ? AND enabled = 1 ORDER BY id",
        (provider,),
    ).fetchall()
    return [_search_from_row(r) for r in rows]


def insert_search_run(
    conn: sqlite3.Connection,
    search_id: int,
    success: bool,
    message: str | None,
    new_jobs: int,
    new_companies: int,
    time_taken: int,
) -> int:
    """Record a completed run and update the Search's last-run bookkeeping.

    Returns the run's row ID.
    """
    now = _ts(utcnow())
    cursor = conn.execute(
        """
        INSERT INTO search_runs
            (search_id, time, success, message, new_jobs, new_companies, time_taken)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (search_id, now, int(success), message, new_jobs, new_companies, time_taken),
    )
    conn.execute(
        """
        UPDATE searches
        SET last_run = ?, last_fetch_success = ?, last_result_count = ?
        WHERE id = ?
        """,
        (now, int(success), new_jobs, search_id),
    )
    conn.commit()
    return cursor.lastrowid or 0


def list_search_runs(conn: sqlite3.Connection, search_id: int) -> list[SearchRun]:
    rows = conn.execute(
        "SELECT * FROM search_runs WHERE search_id = ? ORDER BY id",
        (search_id,),
    ).fetchall()
    return [
        SearchRun(
            id=r["id"],
            search_id=r["search_id"],
            time=_dt(r["time"]),
            success=bool(r["success"]),
            message=r["message"],
            new_jobs=r["new_jobs"],
            new_companies=r["new_companies"],
            time_taken=r["time_taken"],
        )
        for r in rows
    ]


# ---------------------------------------------------------------------------
# Companies
# ---------------------------------------------------------------------------


def _company_from_row(conn: sqlite3.Connection, row: sqlite3.Row) -> Company:
    names = conn.execute(
        "SELECT name FROM company_names WHERE company_id = ? ORDER BY id",
        (row["id"],),
    ).fetchall()
    return Company(
        id=row["id"],
        name=row["name"],
        location=row["location"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        watched=bool(row["watched"]),
        blacklisted=bool(row["blacklisted"]),
        recruiter=bool(row["recruiter"]),
        alternate_names=[n["name"] for n in names],
    )


def find_company_by_name(conn: sqlite3.Connection, name: str) -> Company | None:
    """Find a company whose primary or alternate name equals ``name``, ignoring case."""
    row = conn.execute(
        """
        SELECT * FROM companies
        WHERE name = ? COLLATE NOCASE
           OR id IN (
               SELECT company_id FROM company_names WHERE name = ? COLLATE NOCASE
           )
        ORDER BY id
        LIMIT 1
        """,
        (name, name),
    ).fetchone()
    return None if row is None else _company_from_row(conn, row)


def _insert_company_row(conn: sqlite3.Connection, company: StagedCompany) -> int:
    cursor = conn.execute(
        """
        INSERT INTO companies (name, location, latitude, longitude)
        VALUES (?, ?, ?, ?)
        """,
        (company.name, company.location, company.latitude, company.longitude),
    )
    company_id = cursor.lastrowid or 0
    for alt in company.alternate_names:
        conn.execute(
            "INSERT INTO company_names (company_id, name) VALUES (?, ?)",
            (company_id, alt),
        )
    return company_id


def insert_company(
    conn: sqlite3.Connection,
    name: str,
    *,
    location: str = "",
    latitude: float | None = None,
    longitude: float | None = None,
    watched: bool = False,
    blacklisted: bool = False,
    recruiter: bool = False,
    alternate_names: list[str] | None = None,
) -> int:
    """Create a company explicitly (outside an ingestion batch). Returns the row ID."""
    company_id = _insert_company_row(
        conn,
        StagedCompany(
            name=name,
            location=location,
            latitude=latitude,
            longitude=longitude,
            alternate_names=alternate_names or [],
        ),
    )
    conn.execute(
        "UPDATE companies SET watched = ?, blacklisted = ?, recruiter = ? WHERE id = ?",
        (int(watched), int(blacklisted), int(recruiter), company_id),
    )
    conn.commit()
    return company_id


def count_companies(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM companies").fetchone()[0]  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def _job_from_row(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        salary=row["salary"],
        avg_yearly_salary=row["avg_yearly_salary"],
        remote=bool(row["remote"]),
        location=row["location"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        url=row["url"],
        company_id=row["company_id"],
        posted=_dt(row["posted"]),
        provider=row["provider"],
        provider_id=row["provider_id"],
        source_id=row["source_id"],
        duplicate_job_id=row["duplicate_job_id"],
        checked_for_duplicate=bool(row["checked_for_duplicate"]),
        archived=bool(row["archived"]),
        seen=bool(row["seen"]),
        saved=bool(row["saved"]),
        status=row["status"],
    )


def any_job_with_provider_id(conn: sqlite3.Connection, provider: str, provider_id: str) -> bool:
    """Check whether a job with this (provider, provider_id) idempotency key exists."""
    row = conn.execute(
        "SELECT 1 FROM jobs WHERE provider = ? AND provider_id = ? LIMIT 1",
        (provider, provider_id),
    ).fetchone()
    return row is not None


def get_job(conn: sqlite3.Connection, job_id: int) -> Job | None:
    row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
    return None if row is None else _job_from_row(row)


def list_jobs(conn: sqlite3.Connection) -> list[Job]:
    rows = conn.execute("SELECT * FROM jobs ORDER BY id").fetchall()
    return [_job_from_row(r) for r in rows]


def _insert_job_row(conn: sqlite3.Connection, draft: JobDraft, company_id: int) -> int:
    cursor = conn.execute(
        """
        INSERT INTO jobs
            (title, description, salary, avg_yearly_salary, remote, location,
             latitude, longitude, url, company_id, posted, provider, provider_id,
             source_id, archived)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            draft.title,
            draft.description,
            draft.salary,
            draft.avg_yearly_salary,
            int(draft.remote),
            draft.location,
            draft.latitude,
            draft.longitude,
            draft.url,
            company_id,
            _ts(draft.posted),
            draft.provider,
            draft.provider_id,
            draft.source_id,
            int(draft.archived),
        ),
    )
    job_id = cursor.lastrowid or 0
    for category_id in draft.category_ids:
        conn.execute(
            "INSERT OR IGNORE INTO job_categories (job_id, category_id) VALUES (?, ?)",
            (job_id, category_id),
        )
    return job_id


@dataclass
class BatchResult:
    """Outcome of persisting one ingestion batch.

    ``job_ids`` is aligned with the drafts passed in; a ``None`` entry is a
    draft that lost a (provider, provider_id) race to another writer.
    """

    job_ids: list[int | None] = field(default_factory=list)
    company_ids: list[int | None] = field(default_factory=list)
    conflicts: int = 0

    @property
    def new_jobs(self) -> int:
        return sum(1 for j in self.job_ids if j is not None)

    @property
    def new_companies(self) -> int:
        return sum(1 for c in self.company_ids if c is not None)


def persist_batch(
    conn: sqlite3.Connection,
    staged_companies: list[StagedCompany],
    drafts: list[JobDraft],
) -> BatchResult:
    """Write staged companies and job drafts as one unit of work.

    Staged companies are inserted lazily, just before their first job, so a
    company whose every job conflicts is never written. Each job runs under a
    savepoint: a uniqueness conflict on (provider, provider_id) rolls back that
    job (and a company created for it) and is counted, not raised.
    """
    result = BatchResult(company_ids=[None] * len(staged_companies))

    conn.execute("BEGIN")
    try:
        for draft in drafts:
            conn.execute("SAVEPOINT persist_job")
            created_company: int | None = None
            try:
                if draft.company_id is not None:
                    company_id = draft.company_id
                elif draft.staged_company is not None:
                    existing = result.company_ids[draft.staged_company]
                    if existing is None:
                        existing = _insert_company_row(
                            conn, staged_companies[draft.staged_company],
                        )
                        created_company = existing
                    company_id = existing
                else:
                    msg = f"Job draft {draft.provider_id} has no company"
                    raise ValueError(msg)
                job_id = _insert_job_row(conn, draft, company_id)
            except sqlite3.IntegrityError:
                conn.execute("ROLLBACK TO persist_job")
                conn.execute("RELEASE persist_job")
                result.job_ids.append(None)
                result.conflicts += 1
                logger.debug(
                    "Job %s/%s already stored by another writer - skipping",
                    draft.provider, draft.provider_id,
                )
                continue

            conn.execute("RELEASE persist_job")
            if created_company is not None and draft.staged_company is not None:
                result.company_ids[draft.staged_company] = created_company
            result.job_ids.append(job_id)
        conn.commit()
    except Exception:
        conn.rollback()
        raise

    return result


def find_jobs_in_window(
    conn: sqlite3.Connection,
    exclude_id: int,
    posted: datetime | None,
    months: int | None,
) -> list[sqlite3.Row]:
    """Return duplicate candidates: every other job, newest first.

    When both ``posted`` and ``months`` are given, candidates are limited to
    jobs posted within ``months`` either side of ``posted`` (undated jobs are
    always included).
    """
    if posted is not None and months is not None:
        lower = _ts(shift_months(posted, -months))
        upper = _ts(shift_months(posted, months))
        return conn.execute(
            """
            SELECT id, title, description, posted FROM jobs
            WHERE id != ? AND (posted IS NULL OR (posted > ? AND posted < ?))
            ORDER BY posted DESC, id DESC
            """,
            (exclude_id, lower, upper),
        ).fetchall()
    return conn.execute(
        """
        SELECT id, title, description, posted FROM jobs
        WHERE id != ?
        ORDER BY posted DESC, id DESC
        """,
        (exclude_id,),
    ).fetchall()


def find_unchecked_job_ids(conn: sqlite3.Connection) -> list[int]:
    rows = conn.execute(
        "SELECT id FROM jobs WHERE checked_for_duplicate = 0 ORDER BY id",
    ).fetchall()
    return [r["id"] for r in rows]


def copy_job_categories(conn: sqlite3.Connection, source_id: int, target_id: int) -> None:
    """Give ``target_id`` every category ``source_id`` has. Does not commit."""
    conn.execute(
        """
        INSERT OR IGNORE INTO job_categories (job_id, category_id)
        SELECT ?, category_id FROM job_categories WHERE job_id = ?
        """,
        (target_id, source_id),
    )


def mark_duplicate(conn: sqlite3.Connection, job_id: int, duplicate_of: int) -> None:
    """Link a job to the job it duplicates and copy that job's categories."""
    conn.execute(
        "UPDATE jobs SET duplicate_job_id = ? WHERE id = ?",
        (duplicate_of, job_id),
    )
    copy_job_categories(conn, duplicate_of, job_id)
    conn.commit()


def mark_checked_for_duplicate(conn: sqlite3.Connection, job_id: int) -> None:
    conn.execute("UPDATE jobs SET checked_for_duplicate = 1 WHERE id = ?", (job_id,))
    conn.commit()


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def insert_category(conn: sqlite3.Connection, name: str) -> int:
    cursor = conn.execute("INSERT INTO categories (name) VALUES (?)", (name,))
    conn.commit()
    return cursor.lastrowid or 0


def get_category_ids_by_name(conn: sqlite3.Connection) -> dict[str, int]:
    """Map lower-cased category names to ids (first category wins on clashes)."""
    mapping: dict[str, int] = {}
    for row in conn.execute("SELECT id, name FROM categories ORDER BY id").fetchall():
        mapping.setdefault(row["name"].lower(), row["id"])
    return mapping


def get_job_category_ids(conn: sqlite3.Connection, job_id: int) -> list[int]:
    rows = conn.execute(
        "SELECT category_id FROM job_categories WHERE job_id = ? ORDER BY category_id",
        (job_id,),
    ).fetchall()
    return [r["category_id"] for r in rows]


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


def insert_alert(
    conn: sqlite3.Connection,
    type_: str,
    title: str,
    message: str | None = None,
    url: str | None = None,
) -> int:
    cursor = conn.execute(
        "INSERT INTO alerts (type, title, message, url, created) VALUES (?, ?, ?, ?, ?)",
        (type_, title, message, url, _ts(utcnow())),
    )
    conn.commit()
    return cursor.lastrowid or 0


def list_alerts(conn: sqlite3.Connection, *, unread_only: bool = False) -> list[Alert]:
    query = "SELECT * FROM alerts"
    if unread_only:
        query += " WHERE read = 0"
    rows = conn.execute(query + " ORDER BY id").fetchall()
    return [
        Alert(
            id=r["id"],
            type=r["type"],
            title=r["title"],
            message=r["message"],
            url=r["url"],
            read=bool(r["read"]),
            created=_dt(r["created"]),
        )
        for r in rows
    ]
