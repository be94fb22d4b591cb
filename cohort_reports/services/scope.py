"""Report scope resolution.

Maps a viewer to the cohorts they may report on. A cohort manager is a
user holding the cohort-manager role who is also a member of the cohort;
membership is the authorization signal, there is no separate ACL.
"""

from dataclasses import dataclass, field

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_reports.core.logging import get_logger
from cohort_reports.models.host import (
    CONTEXT_SYSTEM,
    Cohort,
    CohortMember,
    Context,
    HostUser,
    RoleAssignment,
)

logger = get_logger(__name__)


@dataclass
class Viewer:
    """The person looking at a report, as supplied by the host platform."""

    id: int
    fullname: str = ""
    email: str = ""
    is_admin: bool = False


@dataclass
class ManagerEntry:
    user_id: int
    name: str
    email: str
    cohorts: dict[int, str] = field(default_factory=dict)


@dataclass
class ReportScope:
    """Resolved cohort visibility for one report request.

    visible_cohorts: every cohort the viewer may pick from
    managers: manager index for admin drill-down (empty for non-admins)
    cohort_id: the requested cohort if it is visible, else None
    manager_userid: the requested manager if honoured, else None
    """

    visible_cohorts: dict[int, str] = field(default_factory=dict)
    managers: dict[int, ManagerEntry] = field(default_factory=dict)
    cohort_id: int | None = None
    manager_userid: int | None = None

    @property
    def cohort_ids(self) -> list[int]:
        """Cohort ids the report queries run against."""
        if self.cohort_id is not None:
            return [self.cohort_id]
        return list(self.visible_cohorts)

    @property
    def cohort_label(self) -> str:
        if self.cohort_id is not None:
            return self.visible_cohorts.get(self.cohort_id, "Selected cohort")
        return "All visible cohorts"


def _manager_pairs_query(roleid: int):
    """(manager, cohort) pairs: role holder at system or cohort context who is a member."""
    return (
        select(
            HostUser.id.label("userid"),
            HostUser.firstname,
            HostUser.lastname,
            HostUser.email,
            Cohort.id.label("cohortid"),
            Cohort.name.label("cohortname"),
        )
        .distinct()
        .select_from(HostUser)
        .join(
            RoleAssignment,
            and_(RoleAssignment.userid == HostUser.id, RoleAssignment.roleid == roleid),
        )
        .join(CohortMember, CohortMember.userid == HostUser.id)
        .join(Cohort, Cohort.id == CohortMember.cohortid)
        .join(
            Context,
            and_(
                Context.id == RoleAssignment.contextid,
                or_(Context.contextlevel == CONTEXT_SYSTEM, Context.id == Cohort.contextid),
            ),
        )
    )


async def fetch_manager_cohorts(
    db: AsyncSession,
    roleid: int,
    manager_userid: int | None = None,
) -> dict[int, ManagerEntry]:
    """Build the manager index: manager id -> name, email and managed cohorts.

    Args:
        db: Database session
        roleid: Cohort manager role id
        manager_userid: Restrict to a single manager

    Returns:
        Managers ordered by last name, first name; cohorts ordered by name
    """
    stmt = _manager_pairs_query(roleid)
    if manager_userid is not None:
        stmt = stmt.where(HostUser.id == manager_userid)
    stmt = stmt.order_by(HostUser.lastname, HostUser.firstname, Cohort.name)

    result = await db.execute(stmt)

    managers: dict[int, ManagerEntry] = {}
    for row in result:
        entry = managers.get(row.userid)
        if entry is None:
            entry = ManagerEntry(
                user_id=row.userid,
                name=f"{row.firstname} {row.lastname}",
                email=row.email,
            )
            managers[row.userid] = entry
        entry.cohorts[row.cohortid] = row.cohortname

    return managers


async def fetch_viewer_cohorts(db: AsyncSession, viewer_id: int, roleid: int) -> dict[int, str]:
    """Cohorts managed by a single (non-admin) viewer, ordered by name."""
    stmt = (
        select(Cohort.id, Cohort.name)
        .distinct()
        .select_from(RoleAssignment)
        .join(CohortMember, CohortMember.userid == RoleAssignment.userid)
        .join(Cohort, Cohort.id == CohortMember.cohortid)
        .join(
            Context,
            and_(
                Context.id == RoleAssignment.contextid,
                or_(Context.contextlevel == CONTEXT_SYSTEM, Context.id == Cohort.contextid),
            ),
        )
        .where(RoleAssignment.roleid == roleid, RoleAssignment.userid == viewer_id)
        .order_by(Cohort.name)
    )
    result = await db.execute(stmt)
    return {row.id: row.name for row in result}


async def fetch_all_cohorts(db: AsyncSession) -> dict[int, str]:
    """Every cohort in the system, ordered by name."""
    result = await db.execute(select(Cohort.id, Cohort.name).order_by(Cohort.name))
    return {row.id: row.name for row in result}


async def is_site_context_manager(
    db: AsyncSession,
    user_id: int,
    roleid: int,
    admin_ids: list[int],
) -> bool:
    """Whether a user is a site admin or holds `roleid` at system context."""
    if user_id in admin_ids:
        return True

    stmt = (
        select(RoleAssignment.id)
        .join(Context, Context.id == RoleAssignment.contextid)
        .where(
            RoleAssignment.userid == user_id,
            RoleAssignment.roleid == roleid,
            Context.contextlevel == CONTEXT_SYSTEM,
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.first() is not None


async def resolve_scope(
    db: AsyncSession,
    viewer: Viewer,
    *,
    roleid: int,
    manager_userid: int | None = None,
    cohort_id: int | None = None,
) -> ReportScope:
    """Compute the cohorts a viewer may report on.

    Admins see every managed cohort and get the manager index; they may
    narrow to one manager's cohorts. Everyone else sees only the cohorts
    they manage. A requested cohort outside the visible set is ignored and
    the scope falls back to all visible cohorts.

    Args:
        db: Database session
        viewer: The requesting viewer
        roleid: Cohort manager role id
        manager_userid: Admin-only pivot to one manager's cohorts
        cohort_id: Optional single cohort filter

    Returns:
        ReportScope for the report queries
    """
    scope = ReportScope()

    if viewer.is_admin:
        scope.managers = await fetch_manager_cohorts(db, roleid)
        for entry in scope.managers.values():
            scope.visible_cohorts.update(entry.cohorts)
    else:
        scope.visible_cohorts = await fetch_viewer_cohorts(db, viewer.id, roleid)

    if viewer.is_admin and manager_userid and manager_userid in scope.managers:
        scope.visible_cohorts = dict(scope.managers[manager_userid].cohorts)
        scope.manager_userid = manager_userid

    if cohort_id and cohort_id in scope.visible_cohorts:
        scope.cohort_id = cohort_id
    elif cohort_id:
        logger.bind(viewer_id=viewer.id, cohort_id=cohort_id).debug("cohort_not_visible_ignored")

    logger.bind(
        viewer_id=viewer.id,
        is_admin=viewer.is_admin,
        visible=len(scope.visible_cohorts),
        cohort_id=scope.cohort_id,
    ).debug("report_scope_resolved")

    return scope
