"""Report queries over the host enrolment and completion tables.

Both queries take the cohort id list resolved by the scope resolver and
bind it as an expanding IN parameter. An empty list returns no rows
without touching the database.
"""

from dataclasses import dataclass

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_reports.config import get_settings
from cohort_reports.core.datetime_utils import days_since, format_timestamp, unix_now
from cohort_reports.core.logging import get_logger
from cohort_reports.models.host import (
    Cohort,
    CohortMember,
    CourseCompletion,
    Enrol,
    HostUser,
    UserEnrolment,
)

logger = get_logger(__name__)

NOT_COMPLETE = "Not Complete"
UNKNOWN_DATE = "Unknown"


@dataclass
class RecentEnrollmentRow:
    user_id: int
    firstname: str
    lastname: str
    email: str
    cohort_id: int
    cohort_name: str
    enroll_ts: int
    enrollment_date: str
    completed_date: str
    days_since: int

    @property
    def is_complete(self) -> bool:
        return self.completed_date != NOT_COMPLETE


@dataclass
class NotCompletedRow:
    user_id: int
    firstname: str
    lastname: str
    email: str
    cohort_id: int
    cohort_name: str
    latest_enroll_ts: int | None
    enrollment_date: str
    days_since: int | None


async def fetch_recent_enrollments(
    db: AsyncSession,
    course_id: int,
    cohort_ids: list[int],
    since_ts: int,
    now: int | None = None,
) -> list[RecentEnrollmentRow]:
    """Enrollments in a course created after `since_ts`, newest first.

    Every matching enrollment is returned, so a learner enrolled twice in
    the window appears twice. Completion is attached per user and course;
    no completion time means "Not Complete".

    Args:
        db: Database session
        course_id: Course to report on
        cohort_ids: Cohorts in scope
        since_ts: Exclusive lower bound on enrollment time (unix seconds)
        now: Reference time for days_since (defaults to current time)

    Returns:
        List of RecentEnrollmentRow ordered by enrollment time descending
    """
    if not cohort_ids:
        return []

    tz_name = get_settings().report_timezone
    stmt = (
        select(
            HostUser.id.label("userid"),
            HostUser.firstname,
            HostUser.lastname,
            HostUser.email,
            Cohort.id.label("cohortid"),
            Cohort.name.label("cohortname"),
            UserEnrolment.timecreated.label("enroll_ts"),
            CourseCompletion.timecompleted,
        )
        .select_from(HostUser)
        .join(CohortMember, CohortMember.userid == HostUser.id)
        .join(Cohort, Cohort.id == CohortMember.cohortid)
        .join(UserEnrolment, UserEnrolment.userid == HostUser.id)
        .join(Enrol, and_(Enrol.id == UserEnrolment.enrolid, Enrol.courseid == course_id))
        .outerjoin(
            CourseCompletion,
            and_(CourseCompletion.userid == HostUser.id, CourseCompletion.course == Enrol.courseid),
        )
        .where(CohortMember.cohortid.in_(cohort_ids), UserEnrolment.timecreated > since_ts)
        .order_by(UserEnrolment.timecreated.desc())
    )
    result = await db.execute(stmt)

    now = unix_now() if now is None else now
    rows = [
        RecentEnrollmentRow(
            user_id=r.userid,
            firstname=r.firstname,
            lastname=r.lastname,
            email=r.email,
            cohort_id=r.cohortid,
            cohort_name=r.cohortname,
            enroll_ts=int(r.enroll_ts),
            enrollment_date=format_timestamp(int(r.enroll_ts), tz_name),
            completed_date=(
                NOT_COMPLETE
                if r.timecompleted is None
                else format_timestamp(int(r.timecompleted), tz_name)
            ),
            days_since=days_since(int(r.enroll_ts), now),
        )
        for r in result
    ]

    logger.bind(course_id=course_id, cohorts=len(cohort_ids), rows=len(rows)).debug(
        "recent_enrollments_fetched"
    )
    return rows


async def fetch_not_completed(
    db: AsyncSession,
    course_id: int,
    cohort_ids: list[int],
    year_cutoff_ts: int | None,
    now: int | None = None,
) -> list[NotCompletedRow]:
    """Learners enrolled in a course with no completion, latest enrollment first.

    Rows are grouped per user and cohort with the latest enrollment time.
    When `year_cutoff_ts` is given, learners whose latest enrollment is
    older than it are left out; pass None to disable the lookback window.

    Args:
        db: Database session
        course_id: Course to report on
        cohort_ids: Cohorts in scope
        year_cutoff_ts: Inclusive lower bound on the latest enrollment, or None
        now: Reference time for days_since (defaults to current time)

    Returns:
        List of NotCompletedRow ordered by latest enrollment descending
    """
    if not cohort_ids:
        return []

    tz_name = get_settings().report_timezone
    latest = func.max(UserEnrolment.timecreated)
    stmt = (
        select(
            HostUser.id.label("userid"),
            HostUser.firstname,
            HostUser.lastname,
            HostUser.email,
            Cohort.id.label("cohortid"),
            Cohort.name.label("cohortname"),
            latest.label("latest_enroll_ts"),
        )
        .select_from(CohortMember)
        .join(Cohort, Cohort.id == CohortMember.cohortid)
        .join(HostUser, HostUser.id == CohortMember.userid)
        .outerjoin(
            CourseCompletion,
            and_(CourseCompletion.userid == HostUser.id, CourseCompletion.course == course_id),
        )
        .join(UserEnrolment, UserEnrolment.userid == HostUser.id)
        .join(Enrol, and_(Enrol.id == UserEnrolment.enrolid, Enrol.courseid == course_id))
        .where(CohortMember.cohortid.in_(cohort_ids), CourseCompletion.timecompleted.is_(None))
        .group_by(
            HostUser.id,
            HostUser.firstname,
            HostUser.lastname,
            HostUser.email,
            Cohort.id,
            Cohort.name,
        )
        .order_by(latest.desc())
    )
    if year_cutoff_ts is not None:
        stmt = stmt.having(latest >= year_cutoff_ts)

    result = await db.execute(stmt)

    now = unix_now() if now is None else now
    rows = []
    for r in result:
        ts = int(r.latest_enroll_ts) if r.latest_enroll_ts else None
        rows.append(
            NotCompletedRow(
                user_id=r.userid,
                firstname=r.firstname,
                lastname=r.lastname,
                email=r.email,
                cohort_id=r.cohortid,
                cohort_name=r.cohortname,
                latest_enroll_ts=ts,
                enrollment_date=format_timestamp(ts, tz_name) if ts else UNKNOWN_DATE,
                days_since=days_since(ts, now) if ts else None,
            )
        )

    logger.bind(
        course_id=course_id,
        cohorts=len(cohort_ids),
        lookback=year_cutoff_ts is not None,
        rows=len(rows),
    ).debug("not_completed_fetched")
    return rows
