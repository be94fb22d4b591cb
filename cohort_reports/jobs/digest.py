"""
Cohort digest job.

Emails each cohort manager (or one site-context manager) a digest of recent
enrollments and not-completed learners for a course, with a combined CSV.

Run with: cohort-digest digest --courseid 42
"""

from cohort_reports.config import get_config, get_settings
from cohort_reports.core.database import AsyncSessionLocal, engine, ensure_digest_log_table
from cohort_reports.core.logging import get_logger
from cohort_reports.services.digest_dispatch import (
    DigestOptions,
    DispatchSummary,
    MailTransport,
    resolve_sender,
    run_digest,
    validate_options,
)
from cohort_reports.services.email_service import send_report_email

logger = get_logger(__name__)


async def main(
    options: DigestOptions,
    noreply_userid: int | None = None,
    transport: MailTransport = send_report_email,
) -> DispatchSummary:
    """Run the digest job.

    Raises DigestError subclasses for bad options, permission failures and a
    missing sender; the CLI turns those into exit codes.
    """
    settings = get_settings()
    validate_options(options)

    if noreply_userid is None:
        noreply_userid = settings.noreply_userid
    if get_config().digest.track_legacy_last_sent:
        options.track_legacy_last_sent = True

    logger.bind(
        course_id=options.course_id,
        since_days=options.since_days,
        years_back=options.years_back,
        site_context=options.site_context,
        dry_run=options.dry_run,
    ).info("digest_job_started")

    await ensure_digest_log_table(engine)

    async with AsyncSessionLocal() as db:
        sender = await resolve_sender(db, noreply_userid)
        summary = await run_digest(
            db,
            options,
            sender,
            transport=transport,
            admin_ids=settings.site_admin_ids,
        )

    logger.bind(
        course_id=options.course_id,
        attempted=summary.attempted,
        skipped=summary.skipped_no_cohorts + summary.skipped_throttle,
    ).info("digest_job_completed")

    return summary
