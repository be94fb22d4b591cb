"""CSV rendering for report rows.

Values are quoted only when needed, except that anything starting with a
spreadsheet formula character is always quoted.
"""

from collections.abc import Iterable

from cohort_reports.services.reports import NotCompletedRow, RecentEnrollmentRow

LINE_END = "\r\n"
FORMULA_PREFIXES = ("=", "+", "-", "@")

RECENT_HEADERS = ["Cohort", "Last", "First", "Email", "Enroll Date", "Days Since", "Completed"]
NOT_COMPLETED_HEADERS = ["Cohort", "Last", "First", "Email", "Latest Enroll", "Days Since"]


def csv_escape(value: object) -> str:
    """Escape one CSV field.

    Quotes the field when it contains a quote, comma, CR or LF, or when it
    starts with =, +, - or @. Embedded quotes are doubled.
    """
    text = "" if value is None else str(value)
    needs_quotes = any(ch in text for ch in ('"', ",", "\n", "\r")) or text.startswith(
        FORMULA_PREFIXES
    )
    text = text.replace('"', '""')
    return f'"{text}"' if needs_quotes else text


def _line(values: Iterable[object]) -> str:
    return ",".join(csv_escape(v) for v in values) + LINE_END


def build_recent_csv(rows: list[RecentEnrollmentRow]) -> str:
    out = [_line(RECENT_HEADERS)]
    for r in rows:
        out.append(
            _line(
                [
                    r.cohort_name,
                    r.lastname,
                    r.firstname,
                    r.email,
                    r.enrollment_date,
                    r.days_since,
                    r.completed_date,
                ]
            )
        )
    return "".join(out)


def build_not_completed_csv(rows: list[NotCompletedRow]) -> str:
    out = [_line(NOT_COMPLETED_HEADERS)]
    for r in rows:
        out.append(
            _line(
                [
                    r.cohort_name,
                    r.lastname,
                    r.firstname,
                    r.email,
                    r.enrollment_date,
                    "" if r.days_since is None else r.days_since,
                ]
            )
        )
    return "".join(out)


def years_label(years_back: int) -> str:
    return f"{years_back} year{'s' if years_back > 1 else ''}"


def build_digest_csv(
    recent_rows: list[RecentEnrollmentRow],
    incomplete_rows: list[NotCompletedRow],
    since_days: int,
    years_back: int,
) -> str:
    """Both report sections in one file, each under a plain-text header line."""
    return (
        f"---- Recent Enrollments (last {since_days} days) ----{LINE_END}"
        f"{build_recent_csv(recent_rows)}{LINE_END}"
        f"---- Not Completed (latest enrollment within {years_label(years_back)}) ----{LINE_END}"
        f"{build_not_completed_csv(incomplete_rows)}"
    )
