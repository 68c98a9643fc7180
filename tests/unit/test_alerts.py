"""Tests for AlertEmitter."""

import sqlite3

import pytest

from src.core.db import init_db, list_alerts
from src.core.schemas import AlertType
from src.pipeline.alerts import AlertEmitter


@pytest.fixture
def db(tmp_path: pytest.TempPathFactory) -> sqlite3.Connection:  # type: ignore[type-arg]
    return init_db(tmp_path / "test.db")


class TestAlertEmitter:
    def test_new_job(self, db: sqlite3.Connection) -> None:
        AlertEmitter(db).new_job("Acme Ltd", 42, "Python Developer")
        (alert,) = list_alerts(db)
        assert alert.type == AlertType.NEW_JOB
        assert alert.title == "New job posted by Acme Ltd"
        assert alert.message == "'Python Developer'"
        assert alert.url == "/job/42#jobs"

    def test_error(self, db: sqlite3.Connection) -> None:
        AlertEmitter(db).error("Search Error (python jobs in Leeds on indeed)", "HTTP 500")
        (alert,) = list_alerts(db)
        assert alert.type == AlertType.ERROR
        assert alert.message == "HTTP 500"
        assert alert.url is None

    def test_create_returns_id(self, db: sqlite3.Connection) -> None:
        emitter = AlertEmitter(db)
        first = emitter.create("Error", "a")
        second = emitter.create("Error", "b")
        assert second > first
