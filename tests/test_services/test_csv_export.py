"""Tests for CSV rendering."""

from cohort_reports.services.csv_export import (
    build_digest_csv,
    build_not_completed_csv,
    build_recent_csv,
    csv_escape,
    years_label,
)
from cohort_reports.services.reports import NotCompletedRow, RecentEnrollmentRow


def _recent(**overrides) -> RecentEnrollmentRow:
    data = dict(
        user_id=1,
        firstname="Ada",
        lastname="Lovelace",
        email="ada@example.edu",
        cohort_id=5,
        cohort_name="Alpha",
        enroll_ts=1_760_000_000,
        enrollment_date="2025-10-09 08:53:20",
        completed_date="Not Complete",
        days_since=0,
    )
    data.update(overrides)
    return RecentEnrollmentRow(**data)


def _incomplete(**overrides) -> NotCompletedRow:
    data = dict(
        user_id=1,
        firstname="Ada",
        lastname="Lovelace",
        email="ada@example.edu",
        cohort_id=5,
        cohort_name="Alpha",
        latest_enroll_ts=1_760_000_000,
        enrollment_date="2025-10-09 08:53:20",
        days_since=3,
    )
    data.update(overrides)
    return NotCompletedRow(**data)


class TestCsvEscape:
    """Tests for csv_escape."""

    def test_plain_value_unquoted(self):
        """Should leave simple values alone."""
        assert csv_escape("Alpha") == "Alpha"
        assert csv_escape(12) == "12"
        assert csv_escape(None) == ""

    def test_formula_prefix_quoted(self):
        """Should quote values starting with a formula character."""
        assert csv_escape("=SUM(A1:A9)") == '"=SUM(A1:A9)"'
        assert csv_escape("+1") == '"+1"'
        assert csv_escape("-5") == '"-5"'
        assert csv_escape("@cmd") == '"@cmd"'

    def test_special_characters_quoted(self):
        """Should quote values with commas, quotes or line breaks."""
        assert csv_escape("a,b") == '"a,b"'
        assert csv_escape('say "hi"') == '"say ""hi"""'
        assert csv_escape("line\nbreak") == '"line\nbreak"'
        assert csv_escape("cr\rhere") == '"cr\rhere"'


class TestBuildCsv:
    """Tests for report CSV builders."""

    def test_recent_csv_header_and_rows(self):
        """Should emit header then one CRLF-terminated line per row."""
        csv = build_recent_csv([_recent(), _recent(lastname="O'Neil, Jr")])

        lines = csv.split("\r\n")
        assert lines[0] == "Cohort,Last,First,Email,Enroll Date,Days Since,Completed"
        assert lines[1] == "Alpha,Lovelace,Ada,ada@example.edu,2025-10-09 08:53:20,0,Not Complete"
        assert lines[2].startswith('Alpha,"O\'Neil, Jr",Ada')
        assert csv.endswith("\r\n")

    def test_empty_report_is_header_only(self):
        """Should still emit the header line."""
        assert build_not_completed_csv([]) == (
            "Cohort,Last,First,Email,Latest Enroll,Days Since\r\n"
        )

    def test_not_completed_unknown_days_blank(self):
        """Should leave days since blank when enrollment time is unknown."""
        csv = build_not_completed_csv(
            [_incomplete(latest_enroll_ts=None, enrollment_date="Unknown", days_since=None)]
        )
        assert csv.split("\r\n")[1] == "Alpha,Lovelace,Ada,ada@example.edu,Unknown,"


class TestDigestCsv:
    """Tests for the combined digest attachment."""

    def test_sections_in_order(self):
        """Should put both sections under their header lines."""
        csv = build_digest_csv([_recent()], [_incomplete()], since_days=40, years_back=1)

        assert csv.startswith("---- Recent Enrollments (last 40 days) ----\r\nCohort,Last")
        assert "\r\n\r\n---- Not Completed (latest enrollment within 1 year) ----\r\n" in csv
        assert csv.index("Recent Enrollments") < csv.index("Not Completed")

    def test_years_label_plural(self):
        assert years_label(1) == "1 year"
        assert years_label(3) == "3 years"
