"""Read-only mappings of the host learning platform's tables.

These tables are owned by the host platform. This project only selects
from them (plus the optional legacy `manager_emails` tracker, which it
upserts into when enabled). Columns not used by the reports are omitted.
"""

from datetime import datetime

from sqlalchemy import BigInteger, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cohort_reports.models.base import TABLE_PREFIX, Base

# contextlevel value for the site-wide system context
CONTEXT_SYSTEM = 10


class HostUser(Base):
    """Platform user account."""

    __tablename__ = f"{TABLE_PREFIX}user"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    firstname: Mapped[str] = mapped_column(String(100), default="")
    lastname: Mapped[str] = mapped_column(String(100), default="")
    email: Mapped[str] = mapped_column(String(100), default="")

    @property
    def fullname(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()

    def __repr__(self) -> str:
        return f"<HostUser {self.id} {self.email}>"


class Context(Base):
    """Permission context (system, category, course, ...)."""

    __tablename__ = f"{TABLE_PREFIX}context"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    contextlevel: Mapped[int] = mapped_column(Integer)


class Cohort(Base):
    """Named group of learner accounts."""

    __tablename__ = f"{TABLE_PREFIX}cohort"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    name: Mapped[str] = mapped_column(String(254))
    contextid: Mapped[int] = mapped_column(ForeignKey(f"{TABLE_PREFIX}context.id"))

    def __repr__(self) -> str:
        return f"<Cohort {self.id} {self.name}>"


class CohortMember(Base):
    __tablename__ = f"{TABLE_PREFIX}cohort_members"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    cohortid: Mapped[int] = mapped_column(ForeignKey(f"{TABLE_PREFIX}cohort.id"), index=True)
    userid: Mapped[int] = mapped_column(ForeignKey(f"{TABLE_PREFIX}user.id"), index=True)


class RoleAssignment(Base):
    __tablename__ = f"{TABLE_PREFIX}role_assignments"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    roleid: Mapped[int] = mapped_column(Integer, index=True)
    contextid: Mapped[int] = mapped_column(ForeignKey(f"{TABLE_PREFIX}context.id"), index=True)
    userid: Mapped[int] = mapped_column(ForeignKey(f"{TABLE_PREFIX}user.id"), index=True)


class Enrol(Base):
    """Enrolment method instance attached to a course."""

    __tablename__ = f"{TABLE_PREFIX}enrol"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    courseid: Mapped[int] = mapped_column(BigInteger, index=True)


class UserEnrolment(Base):
    """A user's enrolment through one enrol instance; timecreated is unix seconds."""

    __tablename__ = f"{TABLE_PREFIX}user_enrolments"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    enrolid: Mapped[int] = mapped_column(ForeignKey(f"{TABLE_PREFIX}enrol.id"), index=True)
    userid: Mapped[int] = mapped_column(ForeignKey(f"{TABLE_PREFIX}user.id"), index=True)
    timecreated: Mapped[int] = mapped_column(BigInteger, default=0)


class CourseCompletion(Base):
    """Course completion state; timecompleted is NULL until the learner finishes."""

    __tablename__ = f"{TABLE_PREFIX}course_completions"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    userid: Mapped[int] = mapped_column(ForeignKey(f"{TABLE_PREFIX}user.id"), index=True)
    course: Mapped[int] = mapped_column(BigInteger, index=True)
    timecompleted: Mapped[int | None] = mapped_column(BigInteger, nullable=True, default=None)


class ManagerEmail(Base):
    """Legacy last-sent tracker kept by older digest scripts."""

    __tablename__ = f"{TABLE_PREFIX}manager_emails"

    userid: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    recent_lastsentdate: Mapped[datetime | None] = mapped_column(nullable=True)
    all_lastsentdate: Mapped[datetime | None] = mapped_column(nullable=True)
