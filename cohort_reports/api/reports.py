"""Interactive cohort report pages.

The host platform puts these routes behind its own login and forwards the
signed-in user id in a header. Query parameters are parsed leniently: a
malformed or out-of-range value falls back to its default instead of
failing the request.
"""

from dataclasses import dataclass
from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_reports.config import AppConfig, Settings
from cohort_reports.core.datetime_utils import from_unix, recent_cutoff, unix_now, year_cutoff
from cohort_reports.core.logging import get_logger
from cohort_reports.dependencies import AppSettings, Config, CurrentViewer, DBSession
from cohort_reports.services.csv_export import build_not_completed_csv, build_recent_csv
from cohort_reports.services.digest_dispatch import MailTransport, SenderNotFoundError, resolve_sender
from cohort_reports.services.email_service import send_report_email, write_attachment
from cohort_reports.services.rendering import (
    REPORT_RECENT,
    REPORT_TYPES,
    filter_rows,
    render_report_email,
    render_report_page,
    render_setup_page,
    report_attachment_name,
    report_subject,
)
from cohort_reports.services.reports import (
    NotCompletedRow,
    RecentEnrollmentRow,
    fetch_not_completed,
    fetch_recent_enrollments,
)
from cohort_reports.services.scope import ReportScope, Viewer, resolve_scope

logger = get_logger(__name__)

router = APIRouter()


def _int_param(raw: str | None, default: int | None = None, minimum: int | None = None):
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    if minimum is not None and value < minimum:
        return default
    return value


@dataclass
class ReportParams:
    course_id: int
    report: str
    cohort_id: int | None
    since_days: int
    years_back: int
    manager_userid: int | None
    q: str

    @property
    def query_string(self) -> str:
        params: dict[str, object] = {
            "courseid": self.course_id,
            "report": self.report,
            "since_days": self.since_days,
            "years_back": self.years_back,
        }
        if self.cohort_id:
            params["cohortid"] = self.cohort_id
        if self.manager_userid:
            params["manager_userid"] = self.manager_userid
        if self.q:
            params["q"] = self.q
        return urlencode(params)


def get_report_params(request: Request, config: Config) -> ReportParams:
    """Parse report query parameters, falling back to defaults on bad input."""
    query = request.query_params
    report = (query.get("report") or REPORT_RECENT).strip().lower()
    return ReportParams(
        course_id=_int_param(query.get("courseid"), 0),
        report=report if report in REPORT_TYPES else REPORT_RECENT,
        cohort_id=_int_param(query.get("cohortid")) or None,
        since_days=_int_param(query.get("since_days"), config.reports.web_since_days, 1),
        years_back=_int_param(query.get("years_back"), config.reports.years_back, 1),
        manager_userid=_int_param(query.get("manager_userid")) or None,
        q=(query.get("q") or "").strip(),
    )


def get_mail_transport() -> MailTransport:
    """Mail transport for on-demand report emails."""
    return send_report_email


Params = Annotated[ReportParams, Depends(get_report_params)]
Transport = Annotated[MailTransport, Depends(get_mail_transport)]


@dataclass
class LoadedReport:
    scope: ReportScope
    recent_rows: list[RecentEnrollmentRow]
    incomplete_rows: list[NotCompletedRow]
    lookback_applied: bool


async def _load_report(
    db: AsyncSession,
    viewer: Viewer,
    params: ReportParams,
    settings: Settings,
    config: AppConfig,
    now: int,
) -> LoadedReport:
    scope = await resolve_scope(
        db,
        viewer,
        roleid=settings.roleid_cohort_manager,
        manager_userid=params.manager_userid,
        cohort_id=params.cohort_id,
    )
    lookback = config.reports.web_incomplete_lookback

    recent_rows = await fetch_recent_enrollments(
        db, params.course_id, scope.cohort_ids, recent_cutoff(params.since_days, now), now=now
    )
    incomplete_rows = await fetch_not_completed(
        db,
        params.course_id,
        scope.cohort_ids,
        year_cutoff(params.years_back, now) if lookback else None,
        now=now,
    )
    return LoadedReport(
        scope=scope,
        recent_rows=recent_rows,
        incomplete_rows=incomplete_rows,
        lookback_applied=lookback,
    )


def _render_page(
    request: Request,
    viewer: Viewer,
    params: ReportParams,
    loaded: LoadedReport,
    email_status: str | None = None,
) -> HTMLResponse:
    return HTMLResponse(
        render_report_page(
            viewer=viewer,
            course_id=params.course_id,
            email_status=email_status,
            base_path=request.url_for("report_page").path,
            report=params.report,
            scope=loaded.scope,
            since_days=params.since_days,
            years_back=params.years_back,
            q=params.q,
            recent_rows=filter_rows(loaded.recent_rows, params.q),
            incomplete_rows=filter_rows(loaded.incomplete_rows, params.q),
            lookback_applied=loaded.lookback_applied,
            query_string=params.query_string,
        )
    )


def _report_csv(params: ReportParams, loaded: LoadedReport) -> tuple[str, int]:
    if params.report == REPORT_RECENT:
        return build_recent_csv(loaded.recent_rows), len(loaded.recent_rows)
    return build_not_completed_csv(loaded.incomplete_rows), len(loaded.incomplete_rows)


@router.get("", response_class=HTMLResponse, name="report_page")
async def report_page(
    request: Request,
    viewer: CurrentViewer,
    params: Params,
    db: DBSession,
    settings: AppSettings,
    config: Config,
) -> HTMLResponse:
    """Show both reports for a course, or the setup form when no course is given."""
    if params.course_id <= 0:
        return HTMLResponse(render_setup_page(params.since_days))

    loaded = await _load_report(db, viewer, params, settings, config, unix_now())
    return _render_page(request, viewer, params, loaded)


@router.post("/send", response_class=HTMLResponse)
async def send_report(
    request: Request,
    viewer: CurrentViewer,
    params: Params,
    db: DBSession,
    settings: AppSettings,
    config: Config,
    transport: Transport,
) -> HTMLResponse:
    """
    Email the selected report's CSV to the viewer.

    The page is re-rendered with a success or failure banner; delivery
    problems never turn into an error response.
    """
    if params.course_id <= 0:
        return HTMLResponse(render_setup_page(params.since_days))

    now = unix_now()
    loaded = await _load_report(db, viewer, params, settings, config, now)
    today = from_unix(now, settings.report_timezone)

    csv_text, row_count = _report_csv(params, loaded)
    attachment_name = report_attachment_name(params.report, params.course_id, today)
    text, html = render_report_email(
        params.report, params.since_days, params.course_id, loaded.scope.cohort_label, row_count
    )

    log = logger.bind(viewer_id=viewer.id, course_id=params.course_id, report=params.report)

    delivered = False
    if not viewer.email:
        log.warning("report_email_no_recipient_address")
    else:
        try:
            sender = await resolve_sender(db, settings.noreply_userid)
            delivered = await transport(
                recipient_email=viewer.email,
                recipient_name=viewer.fullname,
                sender=sender,
                subject=report_subject(params.report, params.since_days, today),
                text=text,
                html=html,
                attachment_path=write_attachment(attachment_name, csv_text),
                attachment_name=attachment_name,
            )
        except SenderNotFoundError as e:
            log.bind(error=str(e)).error("report_email_sender_missing")
        except Exception as e:
            log.bind(error=str(e)).error("report_email_failed")

    if delivered:
        log.bind(rows=row_count).info("report_email_sent")

    return _render_page(
        request, viewer, params, loaded, email_status="success" if delivered else "fail"
    )


@router.get("/export.csv")
async def export_csv(
    viewer: CurrentViewer,
    params: Params,
    db: DBSession,
    settings: AppSettings,
    config: Config,
) -> Response:
    """Download the selected report as CSV."""
    if params.course_id <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="courseid is required")

    now = unix_now()
    loaded = await _load_report(db, viewer, params, settings, config, now)
    csv_text, _ = _report_csv(params, loaded)
    filename = report_attachment_name(
        params.report, params.course_id, from_unix(now, settings.report_timezone)
    )
    return Response(
        content=csv_text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
