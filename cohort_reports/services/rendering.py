"""HTML and text rendering for report pages and emails."""

from datetime import datetime
from pathlib import Path
from typing import TypeVar

from jinja2 import Environment, FileSystemLoader

from cohort_reports.core.datetime_utils import human_date
from cohort_reports.services.csv_export import years_label
from cohort_reports.services.reports import NotCompletedRow, RecentEnrollmentRow

# Initialize Jinja2 environment for page and email templates
template_dir = Path(__file__).parent.parent / "templates"
jinja_env = Environment(loader=FileSystemLoader(template_dir), autoescape=True)
jinja_env.filters["years_label"] = years_label

REPORT_RECENT = "recent"
REPORT_INCOMPLETE = "incomplete"
REPORT_TYPES = (REPORT_RECENT, REPORT_INCOMPLETE)

RowT = TypeVar("RowT", RecentEnrollmentRow, NotCompletedRow)


def filter_rows(rows: list[RowT], q: str) -> list[RowT]:
    """Case-insensitive substring search over the displayed text columns."""
    needle = q.strip().lower()
    if not needle:
        return rows

    def haystack(row: RecentEnrollmentRow | NotCompletedRow) -> str:
        parts = [row.cohort_name, row.lastname, row.firstname, row.email, row.enrollment_date]
        if isinstance(row, RecentEnrollmentRow):
            parts.append(row.completed_date)
        return " ".join(parts).lower()

    return [row for row in rows if needle in haystack(row)]


def report_long_name(report: str, since_days: int) -> str:
    if report == REPORT_RECENT:
        return f"Recent Enrollments (Last {since_days} Days)"
    return "Not Completed"


def report_subject(report: str, since_days: int, today: datetime) -> str:
    """Subject for an on-demand report email, e.g. `Not Completed - October 6 2025`."""
    return f"{report_long_name(report, since_days)} - {today:%B} {today.day} {today.year}"


def digest_subject(course_id: int, today: datetime, all_cohorts: bool = False) -> str:
    scope = " (All Cohorts)" if all_cohorts else ""
    return f"Cohort Digest{scope} – Course {course_id} – {human_date(today)}"


def report_attachment_name(report: str, course_id: int, today: datetime) -> str:
    stem = "Recent_Enrollments" if report == REPORT_RECENT else "Not_Completed"
    return f"{stem}_course{course_id}_{today:%Y-%m-%d}.csv"


def digest_attachment_name(
    course_id: int, recipient_id: int, today: datetime, all_cohorts: bool = False
) -> str:
    if all_cohorts:
        return f"CohortDigest_ALLCOHORTS_course{course_id}_user{recipient_id}_{today:%Y-%m-%d}.csv"
    return f"CohortDigest_course{course_id}_manager{recipient_id}_{today:%Y-%m-%d}.csv"


def render_digest_html(
    recipient_name: str,
    course_id: int,
    since_days: int,
    years_back: int,
    recent_rows: list[RecentEnrollmentRow],
    incomplete_rows: list[NotCompletedRow],
    today: datetime,
    all_cohorts: bool = False,
) -> str:
    template = jinja_env.get_template("emails/cohort_digest.html")
    return template.render(
        recipient_name=recipient_name,
        course_id=course_id,
        since_days=since_days,
        years_back=years_back,
        recent_rows=recent_rows,
        incomplete_rows=incomplete_rows,
        today=human_date(today),
        scope="All cohorts (site context)" if all_cohorts else "Your managed cohorts",
    )


def render_digest_text(
    recipient_name: str,
    course_id: int,
    since_days: int,
    years_back: int,
    recent_count: int,
    incomplete_count: int,
    today: datetime,
    all_cohorts: bool = False,
) -> str:
    scope = " (All cohorts, site context)" if all_cohorts else ""
    return (
        f"Cohort Digest{scope} for {recipient_name} (Course {course_id})\n"
        f"Generated: {human_date(today)}\n\n"
        f"Recent enrollments (last {since_days} days): {recent_count} row(s)\n"
        f"Not completed (latest enrollment within last {years_label(years_back)}): "
        f"{incomplete_count} row(s)\n\n"
        "Open the HTML version for the full tables."
    )


def render_report_email(
    report: str, since_days: int, course_id: int, cohort_label: str, row_count: int
) -> tuple[str, str]:
    """Plain-text and HTML bodies for an on-demand report email."""
    name = report_long_name(report, since_days)
    text = (
        f"Report: {name}\nCourse ID: {course_id}\nCohorts: {cohort_label}\n"
        f"Rows: {row_count}\n\nA CSV copy is attached."
    )
    html = jinja_env.get_template("emails/report_csv.html").render(
        report_name=name,
        course_id=course_id,
        cohort_label=cohort_label,
        row_count=row_count,
    )
    return text, html


def render_setup_page(since_days: int) -> str:
    return jinja_env.get_template("pages/setup.html").render(since_days=since_days)


def render_report_page(**context) -> str:
    return jinja_env.get_template("pages/report.html").render(**context)
