"""Tests for the loguru line format and noise filter."""

from types import SimpleNamespace

import pytest
from loguru import logger

from cohort_reports.core.logging import _format_record, _quiet_filter, get_logger


@pytest.fixture
def lines():
    captured: list[str] = []
    handler_id = logger.add(captured.append, format=_format_record, filter=_quiet_filter)
    yield captured
    logger.remove(handler_id)


def _record(name: str, message: str, level: int = 20) -> dict:
    return {"name": name, "message": message, "level": SimpleNamespace(no=level)}


class TestFormat:
    def test_course_and_recipient_lead_the_message(self, lines):
        """Should put the course and recipient ahead of the event name."""
        get_logger("cohort_reports.services.digest_dispatch").bind(
            user_id=7, course_id=42, recent=3
        ).info("digest_sent")

        [line] = lines
        assert "| cohort_reports.services.digest_dispatch | " in line
        assert "[course_id=42 user_id=7] digest_sent | recent=3" in line

    def test_plain_line_without_context(self, lines):
        get_logger("cohort_reports.main").info("started")

        [line] = lines
        assert line.rstrip().endswith("| cohort_reports.main | started")


class TestQuietFilter:
    def test_drops_sql_echo(self):
        assert not _quiet_filter(_record("sqlalchemy.engine.Engine", "SELECT 1"))

    def test_drops_health_probe_access_lines(self):
        assert not _quiet_filter(_record("uvicorn.protocols.http", 'GET /health HTTP/1.1" 200'))

    def test_keeps_warnings_from_quiet_sources(self):
        assert _quiet_filter(_record("sqlalchemy.engine.Engine", "pool timeout", level=30))

    def test_keeps_digest_lines(self):
        assert _quiet_filter(_record("cohort_reports.jobs.digest", "digest_run_complete"))
