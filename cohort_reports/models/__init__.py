from cohort_reports.models.base import Base
from cohort_reports.models.digest_log import CohortDigestLog
from cohort_reports.models.host import (
    Cohort,
    CohortMember,
    Context,
    CourseCompletion,
    Enrol,
    HostUser,
    ManagerEmail,
    RoleAssignment,
    UserEnrolment,
)

__all__ = [
    "Base",
    "HostUser",
    "Context",
    "Cohort",
    "CohortMember",
    "RoleAssignment",
    "Enrol",
    "UserEnrolment",
    "CourseCompletion",
    "ManagerEmail",
    "CohortDigestLog",
]
