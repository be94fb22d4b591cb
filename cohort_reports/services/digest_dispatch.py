"""Cohort digest dispatch.

Sends each recipient one email with both reports and a combined CSV, and
appends one audit row per attempted recipient to the digest log.

Two modes:
- per-manager (default): one email per cohort manager, scoped to their cohorts,
  optionally limited to a single manager
- site-context: one all-cohorts email to a user who is a site admin or holds
  the site manager role at system context

Known limitation: the throttle reads the log and later writes it without
locking, so two runs started together can both send within the interval.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_reports.config import get_settings
from cohort_reports.core.datetime_utils import (
    elapsed_days,
    from_unix,
    recent_cutoff,
    unix_now,
    unix_to_naive_utc,
    year_cutoff,
)
from cohort_reports.core.logging import get_logger
from cohort_reports.models.digest_log import (
    STATUS_DRYRUN,
    STATUS_FAIL,
    STATUS_SENT,
    CohortDigestLog,
)
from cohort_reports.models.host import HostUser, ManagerEmail
from cohort_reports.services.csv_export import build_digest_csv
from cohort_reports.services.email_service import Sender, send_report_email, write_attachment
from cohort_reports.services.rendering import (
    digest_attachment_name,
    digest_subject,
    render_digest_html,
    render_digest_text,
)
from cohort_reports.services.reports import fetch_not_completed, fetch_recent_enrollments
from cohort_reports.services.scope import (
    fetch_all_cohorts,
    fetch_manager_cohorts,
    is_site_context_manager,
)

logger = get_logger(__name__)

ALL_COHORTS_SUMMARY = "ALL_COHORTS (site-context)"

MailTransport = Callable[..., Awaitable[bool]]


class DigestError(Exception):
    """Base class for errors that abort a digest run before dispatch."""


class DigestConfigurationError(DigestError):
    """Invalid or conflicting run options."""


class DigestPermissionError(DigestError):
    """The site-context recipient lacks the required role."""


class SenderNotFoundError(DigestError):
    """The configured no-reply sender does not exist."""


@dataclass
class DigestOptions:
    course_id: int
    since_days: int = 40
    years_back: int = 1
    manager_userid: int | None = None
    site_context_manager_userid: int | None = None
    roleid_manager: int = 10
    roleid_site_manager: int = 1
    min_interval_days: int = 0
    dry_run: bool = False
    track_legacy_last_sent: bool = False

    def __post_init__(self) -> None:
        self.since_days = max(1, self.since_days)
        self.years_back = max(1, self.years_back)
        self.min_interval_days = max(0, self.min_interval_days)

    @property
    def site_context(self) -> bool:
        return self.site_context_manager_userid is not None


@dataclass
class Recipient:
    user_id: int
    name: str
    email: str
    cohorts: dict[int, str] = field(default_factory=dict)
    all_cohorts: bool = False

    @property
    def cohorts_summary(self) -> str:
        if self.all_cohorts:
            return ALL_COHORTS_SUMMARY
        return ", ".join(f"{cid}: {name}" for cid, name in self.cohorts.items())


@dataclass
class DispatchSummary:
    sent: int = 0
    failed: int = 0
    dry_run: int = 0
    skipped_no_cohorts: int = 0
    skipped_throttle: int = 0

    @property
    def attempted(self) -> int:
        return self.sent + self.failed + self.dry_run


def validate_options(options: DigestOptions) -> None:
    """Reject bad option combinations before any data access."""
    if options.course_id <= 0:
        raise DigestConfigurationError("--courseid must be a positive integer")
    if options.manager_userid is not None and options.site_context:
        raise DigestConfigurationError(
            "--manager-userid and --site-context-manager-userid are mutually exclusive"
        )


async def resolve_sender(db: AsyncSession, user_id: int) -> Sender:
    """Load the no-reply sender from the host user table."""
    user = await db.get(HostUser, user_id)
    if user is None:
        raise SenderNotFoundError(f"Could not load noreply user id {user_id}")

    email = user.email or f"noreply@{get_settings().email_domain}"
    return Sender(user_id=user.id, name=user.fullname, email=email)


async def last_successful_send(db: AsyncSession, user_id: int, course_id: int):
    """Timestamp of the latest SENT log row for a recipient and course, or None."""
    result = await db.execute(
        select(func.max(CohortDigestLog.sent_at)).where(
            CohortDigestLog.manager_userid == user_id,
            CohortDigestLog.courseid == course_id,
            CohortDigestLog.sent_ok.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def check_throttle(
    db: AsyncSession,
    recipient: Recipient,
    options: DigestOptions,
    now: int,
) -> int | None:
    """Days since the last successful send if the recipient is throttled, else None."""
    if options.min_interval_days <= 0:
        return None

    last_sent = await last_successful_send(db, recipient.user_id, options.course_id)
    if last_sent is None:
        return None

    days = elapsed_days(last_sent, unix_to_naive_utc(now))
    if days < options.min_interval_days:
        return days
    return None


async def resolve_recipients(
    db: AsyncSession,
    options: DigestOptions,
    admin_ids: list[int],
) -> list[Recipient]:
    """Work out who gets a digest for this run.

    Raises:
        DigestPermissionError: site-context recipient is neither admin nor site manager
        DigestConfigurationError: site-context recipient does not exist
    """
    if options.site_context:
        uid = options.site_context_manager_userid
        if not await is_site_context_manager(db, uid, options.roleid_site_manager, admin_ids):
            raise DigestPermissionError(
                f"User {uid} is not site admin and does not hold "
                f"roleid={options.roleid_site_manager} at system context"
            )
        user = await db.get(HostUser, uid)
        if user is None:
            raise DigestConfigurationError(f"User {uid} does not exist")

        cohorts = await fetch_all_cohorts(db)
        if not cohorts:
            logger.bind(user_id=uid).info("no_cohorts_in_system")
        return [
            Recipient(
                user_id=user.id,
                name=user.fullname,
                email=user.email,
                cohorts=cohorts,
                all_cohorts=True,
            )
        ]

    managers = await fetch_manager_cohorts(db, options.roleid_manager, options.manager_userid)
    if not managers:
        logger.bind(
            roleid=options.roleid_manager,
            manager_userid=options.manager_userid,
        ).info("no_cohort_managers_found")

    return [
        Recipient(user_id=m.user_id, name=m.name, email=m.email, cohorts=dict(m.cohorts))
        for m in managers.values()
    ]


async def _touch_legacy_tracker(db: AsyncSession, user_id: int, now: int) -> None:
    """Best-effort update of the legacy last-sent table."""
    sent_at = unix_to_naive_utc(now)
    try:
        await db.merge(
            ManagerEmail(userid=user_id, recent_lastsentdate=sent_at, all_lastsentdate=sent_at)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.bind(user_id=user_id, error=str(e)).warning("legacy_tracker_update_failed")


async def record_attempt(
    db: AsyncSession,
    recipient: Recipient,
    options: DigestOptions,
    *,
    recent_count: int,
    incomplete_count: int,
    subject: str,
    sent_ok: bool,
    status_label: str,
    error_text: str | None,
    now: int,
) -> CohortDigestLog:
    """Append one audit row and commit it immediately."""
    entry = CohortDigestLog(
        manager_userid=recipient.user_id,
        manager_email=recipient.email or "",
        courseid=options.course_id,
        since_days=options.since_days,
        years_back=options.years_back,
        recent_count=recent_count,
        incomplete_count=incomplete_count,
        cohorts_csv=recipient.cohorts_summary,
        subject=subject,
        sent_ok=sent_ok,
        status_label=status_label,
        error_text=error_text,
        sent_at=unix_to_naive_utc(now),
    )
    db.add(entry)
    await db.commit()
    return entry


async def dispatch_to_recipient(
    db: AsyncSession,
    recipient: Recipient,
    options: DigestOptions,
    sender: Sender,
    transport: MailTransport,
    now: int,
) -> CohortDigestLog:
    """Build, send (unless dry run) and log one recipient's digest."""
    settings = get_settings()
    today = from_unix(now, settings.report_timezone)
    cohort_ids = list(recipient.cohorts)

    recent_rows = await fetch_recent_enrollments(
        db, options.course_id, cohort_ids, recent_cutoff(options.since_days, now), now=now
    )
    incomplete_rows = await fetch_not_completed(
        db, options.course_id, cohort_ids, year_cutoff(options.years_back, now), now=now
    )

    html = render_digest_html(
        recipient.name,
        options.course_id,
        options.since_days,
        options.years_back,
        recent_rows,
        incomplete_rows,
        today,
        all_cohorts=recipient.all_cohorts,
    )
    text = render_digest_text(
        recipient.name,
        options.course_id,
        options.since_days,
        options.years_back,
        len(recent_rows),
        len(incomplete_rows),
        today,
        all_cohorts=recipient.all_cohorts,
    )
    subject = digest_subject(options.course_id, today, all_cohorts=recipient.all_cohorts)

    attachment_name = digest_attachment_name(
        options.course_id, recipient.user_id, today, all_cohorts=recipient.all_cohorts
    )
    csv_text = build_digest_csv(
        recent_rows, incomplete_rows, options.since_days, options.years_back
    )

    log = logger.bind(
        user_id=recipient.user_id,
        email=recipient.email,
        course_id=options.course_id,
        recent=len(recent_rows),
        incomplete=len(incomplete_rows),
    )

    sent_ok = False
    error_text = None
    delivered: bool | None = None
    try:
        attachment_path = write_attachment(attachment_name, csv_text)
        if not options.dry_run:
            delivered = await transport(
                recipient_email=recipient.email,
                recipient_name=recipient.name,
                sender=sender,
                subject=subject,
                text=text,
                html=html,
                attachment_path=attachment_path,
                attachment_name=attachment_name,
            )
    except Exception as e:
        status_label = STATUS_FAIL
        error_text = str(e) or e.__class__.__name__
        log.bind(error=error_text).error("digest_send_failed")
    else:
        if options.dry_run:
            status_label = STATUS_DRYRUN
            log.info("digest_dry_run")
        elif delivered:
            sent_ok = True
            status_label = STATUS_SENT
            log.info("digest_sent")
            if options.track_legacy_last_sent:
                await _touch_legacy_tracker(db, recipient.user_id, now)
        else:
            status_label = STATUS_FAIL
            error_text = "email transport returned false"
            log.error("digest_send_rejected")

    return await record_attempt(
        db,
        recipient,
        options,
        recent_count=len(recent_rows),
        incomplete_count=len(incomplete_rows),
        subject=subject,
        sent_ok=sent_ok,
        status_label=status_label,
        error_text=error_text,
        now=now,
    )


async def run_digest(
    db: AsyncSession,
    options: DigestOptions,
    sender: Sender,
    transport: MailTransport = send_report_email,
    admin_ids: list[int] | None = None,
    now: int | None = None,
) -> DispatchSummary:
    """Run one digest batch.

    Recipients are processed one at a time. A delivery failure is logged
    and recorded as FAIL without stopping the batch; configuration and
    permission problems raise before anything is sent.

    Args:
        db: Database session
        options: Run options
        sender: No-reply sender identity
        transport: Mail transport returning True on success
        admin_ids: Site admin user ids (defaults to settings)
        now: Reference unix time (defaults to current time)

    Returns:
        DispatchSummary with per-outcome counts
    """
    validate_options(options)
    now = unix_now() if now is None else now
    if admin_ids is None:
        admin_ids = get_settings().site_admin_ids

    recipients = await resolve_recipients(db, options, admin_ids)
    summary = DispatchSummary()

    for recipient in recipients:
        throttled_days = await check_throttle(db, recipient, options, now)
        if throttled_days is not None:
            summary.skipped_throttle += 1
            logger.bind(
                user_id=recipient.user_id,
                days_since_last=throttled_days,
                min_interval_days=options.min_interval_days,
            ).info("digest_skipped_throttled")
            continue

        if not recipient.cohorts:
            summary.skipped_no_cohorts += 1
            logger.bind(user_id=recipient.user_id, name=recipient.name).warning(
                "digest_skipped_no_cohorts"
            )
            continue

        entry = await dispatch_to_recipient(db, recipient, options, sender, transport, now)
        if entry.status_label == STATUS_SENT:
            summary.sent += 1
        elif entry.status_label == STATUS_DRYRUN:
            summary.dry_run += 1
        else:
            summary.failed += 1

    logger.bind(
        course_id=options.course_id,
        sent=summary.sent,
        failed=summary.failed,
        dry_run=summary.dry_run,
        skipped_no_cohorts=summary.skipped_no_cohorts,
        skipped_throttle=summary.skipped_throttle,
    ).info("digest_run_complete")

    return summary
