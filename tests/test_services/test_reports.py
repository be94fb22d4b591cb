"""Tests for the recent-enrollment and not-completed report queries."""

from unittest.mock import AsyncMock

import pytest
from conftest import COURSE_ID, NOW, days_ago

from cohort_reports.core.datetime_utils import recent_cutoff, year_cutoff
from cohort_reports.services.reports import (
    NOT_COMPLETE,
    fetch_not_completed,
    fetch_recent_enrollments,
)

pytestmark = pytest.mark.asyncio


class TestFetchRecentEnrollments:
    """Tests for fetch_recent_enrollments."""

    async def test_rows_newest_first(self, db_session, world):
        """Should return recent enrollments in scope, newest first."""
        rows = await fetch_recent_enrollments(
            db_session, COURSE_ID, [5, 9], recent_cutoff(40, NOW), now=NOW
        )

        assert [r.lastname for r in rows] == ["Fresh", "Done"]
        assert [r.days_since for r in rows] == [5, 10]
        assert rows[0].cohort_name == "Alpha"

    async def test_completion_status(self, db_session, world):
        """Should show Not Complete only when there is no completion time."""
        rows = await fetch_recent_enrollments(
            db_session, COURSE_ID, [5], recent_cutoff(40, NOW), now=NOW
        )
        by_name = {r.lastname: r for r in rows}

        assert by_name["Fresh"].completed_date == NOT_COMPLETE
        assert not by_name["Fresh"].is_complete
        assert by_name["Done"].is_complete
        assert by_name["Done"].completed_date == "2025-10-08 08:53:20"

    async def test_empty_cohort_list_returns_nothing(self):
        """Should short-circuit on an empty scope without querying."""
        db = AsyncMock()

        assert await fetch_recent_enrollments(db, COURSE_ID, [], 0, now=NOW) == []
        db.execute.assert_not_awaited()

    async def test_other_course_excluded(self, db_session, world, enrol):
        """Should ignore enrollments in other courses."""
        await enrol(world.learners["older"], days_ago(2), course_id=77)

        rows = await fetch_recent_enrollments(
            db_session, COURSE_ID, [9], recent_cutoff(40, NOW), now=NOW
        )
        assert rows == []

    async def test_each_enrollment_is_a_row(self, db_session, world, enrol):
        """Should list a learner once per enrollment in the window."""
        await enrol(world.learners["fresh"], days_ago(20))

        rows = await fetch_recent_enrollments(
            db_session, COURSE_ID, [5], recent_cutoff(40, NOW), now=NOW
        )
        assert [r.lastname for r in rows] == ["Fresh", "Done", "Fresh"]

    async def test_window_is_exclusive(self, db_session, world):
        """Should exclude an enrollment exactly at the cutoff."""
        rows = await fetch_recent_enrollments(
            db_session, COURSE_ID, [5], recent_cutoff(10, NOW), now=NOW
        )
        assert [r.lastname for r in rows] == ["Fresh"]


class TestFetchNotCompleted:
    """Tests for fetch_not_completed."""

    async def test_excludes_completed_and_old(self, db_session, world):
        """Should list in-progress learners whose latest enrollment is in the lookback."""
        rows = await fetch_not_completed(
            db_session, COURSE_ID, [5, 9], year_cutoff(1, NOW), now=NOW
        )

        assert [r.lastname for r in rows] == ["Fresh", "Older"]
        assert [r.days_since for r in rows] == [5, 100]

    async def test_without_lookback(self, db_session, world):
        """Should include old enrollments when no cutoff is given."""
        rows = await fetch_not_completed(db_session, COURSE_ID, [9], None, now=NOW)

        assert [r.lastname for r in rows] == ["Older", "Stale"]
        assert rows[1].days_since == 800

    async def test_latest_enrollment_wins(self, db_session, world, enrol):
        """Should group by learner and cohort using the latest enrollment."""
        await enrol(world.learners["stale"], days_ago(30))

        rows = await fetch_not_completed(
            db_session, COURSE_ID, [9], year_cutoff(1, NOW), now=NOW
        )

        assert [r.lastname for r in rows] == ["Stale", "Older"]
        assert rows[0].latest_enroll_ts == days_ago(30)

    async def test_empty_cohort_list_returns_nothing(self):
        db = AsyncMock()

        assert await fetch_not_completed(db, COURSE_ID, [], None, now=NOW) == []
        db.execute.assert_not_awaited()
        db.scalars.assert_not_awaited()
