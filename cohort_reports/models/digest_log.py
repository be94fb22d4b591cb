"""Append-only audit log of digest send attempts."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from cohort_reports.core.datetime_utils import utc_now
from cohort_reports.models.base import TABLE_PREFIX, Base

STATUS_SENT = "SENT"
STATUS_FAIL = "FAIL"
STATUS_DRYRUN = "DRYRUN"


class CohortDigestLog(Base):
    """One row per attempted digest recipient, whatever the outcome.

    Rows are only ever inserted. The (manager_userid, sent_at) index backs
    the throttle lookup.
    """

    __tablename__ = f"{TABLE_PREFIX}cohort_digest_log"
    __table_args__ = (
        Index("idx_manager", "manager_userid", "sent_at"),
        Index("idx_course", "courseid", "sent_at"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    manager_userid: Mapped[int] = mapped_column(BigInteger)
    manager_email: Mapped[str] = mapped_column(String(255))
    courseid: Mapped[int] = mapped_column(BigInteger)
    since_days: Mapped[int] = mapped_column(Integer)
    years_back: Mapped[int] = mapped_column(Integer)
    recent_count: Mapped[int] = mapped_column(Integer)
    incomplete_count: Mapped[int] = mapped_column(Integer)
    cohorts_csv: Mapped[str] = mapped_column(Text)
    subject: Mapped[str] = mapped_column(String(255))
    sent_ok: Mapped[bool] = mapped_column(Boolean, default=False)
    status_label: Mapped[str] = mapped_column(String(32))  # SENT, FAIL, DRYRUN
    error_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(default=utc_now, server_default=func.now())

    def __repr__(self) -> str:
        return f"<CohortDigestLog {self.manager_userid} course={self.courseid} {self.status_label}>"
