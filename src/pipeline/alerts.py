"""Durable notifications for new jobs from watched companies and run errors."""

import logging
import sqlite3

from src.core.db import insert_alert
from src.core.schemas import AlertType

logger = logging.getLogger(__name__)


class AlertEmitter:
    """Writes alerts to storage; each alert is committed on its own."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def create(
        self,
        type_: str,
        title: str,
        message: str | None = None,
        url: str | None = None,
    ) -> int:
        alert_id = insert_alert(self._conn, type_, title, message, url)
        logger.info("Alert %d [%s]: %s", alert_id, type_, title)
        return alert_id

    def error(self, title: str, message: str | None = None) -> int:
        return self.create(AlertType.ERROR, title, message)

    def new_job(self, company_name: str, job_id: int, job_title: str) -> int:
        return self.create(
            AlertType.NEW_JOB,
            f"New job posted by {company_name}",
            f"'{job_title}'",
            f"/job/{job_id}#jobs",
        )
