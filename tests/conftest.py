"""
Pytest configuration and fixtures for cohort report tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- Factory fixtures for host platform data (users, cohorts, roles, enrolments)
"""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cohort_reports.api.reports import get_mail_transport
from cohort_reports.config import Settings, get_config, get_settings
from cohort_reports.core.database import get_db
from cohort_reports.core.datetime_utils import SECONDS_PER_DAY
from cohort_reports.main import app
from cohort_reports.models import (
    Base,
    Cohort,
    CohortMember,
    Context,
    CourseCompletion,
    Enrol,
    HostUser,
    RoleAssignment,
    UserEnrolment,
)
from cohort_reports.models.host import CONTEXT_SYSTEM

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed reference time: 2025-10-09 08:53:20 UTC
NOW = 1_760_000_000
COURSE_ID = 42
ADMIN_ID = 2
NOREPLY_ID = 493
ROLE_COHORT_MANAGER = 10
ROLE_SITE_MANAGER = 1
CONTEXT_COHORT = 40


def days_ago(days: int, now: int = NOW) -> int:
    return now - days * SECONDS_PER_DAY


@pytest.fixture(autouse=True)
def settings_env(tmp_path, monkeypatch) -> Settings:
    """Point settings at test values for every test."""
    monkeypatch.setenv("DATABASE_URL", TEST_DATABASE_URL)
    monkeypatch.setenv("SITE_ADMIN_IDS", f"[{ADMIN_ID}]")
    monkeypatch.setenv("ATTACHMENT_DIR", str(tmp_path / "attachments"))
    monkeypatch.setenv("RESEND_API_KEY", "")
    monkeypatch.setenv("REPORT_TIMEZONE", "UTC")
    monkeypatch.setenv("NOREPLY_USERID", str(NOREPLY_ID))
    get_settings.cache_clear()
    get_config.cache_clear()

    yield get_settings()

    get_settings.cache_clear()
    get_config.cache_clear()


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def mail_transport() -> AsyncMock:
    """Mail transport double that reports successful delivery."""
    return AsyncMock(return_value=True)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, mail_transport: AsyncMock
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database and mail overrides."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mail_transport] = lambda: mail_transport

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession):
    """Factory for creating host users."""
    counter = {"n": 0}

    async def _create_user(
        id: int | None = None,
        firstname: str = "Test",
        lastname: str | None = None,
        email: str | None = None,
    ) -> HostUser:
        counter["n"] += 1
        if lastname is None:
            lastname = f"User{counter['n']}"
        if email is None:
            email = f"{firstname}.{lastname}@example.edu".lower()

        user = HostUser(id=id, firstname=firstname, lastname=lastname, email=email)
        db_session.add(user)
        await db_session.flush()
        return user

    return _create_user


@pytest_asyncio.fixture
async def context_factory(db_session: AsyncSession):
    """Factory for creating permission contexts."""

    async def _create_context(contextlevel: int = CONTEXT_COHORT) -> Context:
        context = Context(contextlevel=contextlevel)
        db_session.add(context)
        await db_session.flush()
        return context

    return _create_context


@pytest_asyncio.fixture
async def system_context(context_factory) -> Context:
    return await context_factory(CONTEXT_SYSTEM)


@pytest_asyncio.fixture
async def cohort_factory(db_session: AsyncSession, context_factory):
    """Factory for creating cohorts, each with its own context."""

    async def _create_cohort(name: str, id: int | None = None) -> Cohort:
        context = await context_factory(CONTEXT_COHORT)
        cohort = Cohort(id=id, name=name, contextid=context.id)
        db_session.add(cohort)
        await db_session.flush()
        return cohort

    return _create_cohort


@pytest_asyncio.fixture
async def add_member(db_session: AsyncSession):
    """Add a user to a cohort."""

    async def _add(cohort: Cohort, user: HostUser) -> CohortMember:
        member = CohortMember(cohortid=cohort.id, userid=user.id)
        db_session.add(member)
        await db_session.flush()
        return member

    return _add


@pytest_asyncio.fixture
async def assign_role(db_session: AsyncSession):
    """Assign a role to a user in a context."""

    async def _assign(user: HostUser, roleid: int, contextid: int) -> RoleAssignment:
        assignment = RoleAssignment(userid=user.id, roleid=roleid, contextid=contextid)
        db_session.add(assignment)
        await db_session.flush()
        return assignment

    return _assign


@pytest_asyncio.fixture
async def make_manager(assign_role, add_member):
    """Make a user a cohort manager: role at the cohort context plus membership."""

    async def _make(user: HostUser, *cohorts: Cohort, roleid: int = ROLE_COHORT_MANAGER):
        for cohort in cohorts:
            await assign_role(user, roleid, cohort.contextid)
            await add_member(cohort, user)
        return user

    return _make


@pytest_asyncio.fixture
async def enrol(db_session: AsyncSession):
    """Enrol a user in a course at a given unix time."""
    instances: dict[int, Enrol] = {}

    async def _enrol(user: HostUser, timecreated: int, course_id: int = COURSE_ID) -> UserEnrolment:
        instance = instances.get(course_id)
        if instance is None:
            instance = Enrol(courseid=course_id)
            db_session.add(instance)
            await db_session.flush()
            instances[course_id] = instance

        enrolment = UserEnrolment(enrolid=instance.id, userid=user.id, timecreated=timecreated)
        db_session.add(enrolment)
        await db_session.flush()
        return enrolment

    return _enrol


@pytest_asyncio.fixture
async def complete(db_session: AsyncSession):
    """Record a course completion row (timecompleted None means in progress)."""

    async def _complete(
        user: HostUser, timecompleted: int | None, course_id: int = COURSE_ID
    ) -> CourseCompletion:
        completion = CourseCompletion(userid=user.id, course=course_id, timecompleted=timecompleted)
        db_session.add(completion)
        await db_session.flush()
        return completion

    return _complete


# ============================================================================
# Scenario Fixtures
# ============================================================================


@dataclass
class CohortWorld:
    admin: HostUser
    noreply: HostUser
    alice: HostUser
    bob: HostUser
    alpha: Cohort
    beta: Cohort
    gamma: Cohort
    learners: dict[str, HostUser]


@pytest_asyncio.fixture
async def world(
    system_context,
    user_factory,
    cohort_factory,
    add_member,
    make_manager,
    enrol,
    complete,
) -> CohortWorld:
    """
    A small site around course 42:

    - Alpha (id 5), managed by Alice: one recent in-progress learner and
      one recent learner who completed
    - Beta (id 9), managed by Bob: one learner enrolled 100 days ago and
      one enrolled 800 days ago, neither completed
    - Gamma (id 12), no manager: one recent learner
    """
    admin = await user_factory(id=ADMIN_ID, firstname="Site", lastname="Admin")
    noreply = await user_factory(
        id=NOREPLY_ID, firstname="No", lastname="Reply", email="noreply@example.edu"
    )
    alice = await user_factory(firstname="Alice", lastname="Anderson")
    bob = await user_factory(firstname="Bob", lastname="Brown")

    alpha = await cohort_factory("Alpha", id=5)
    beta = await cohort_factory("Beta", id=9)
    gamma = await cohort_factory("Gamma", id=12)

    await make_manager(alice, alpha)
    await make_manager(bob, beta)

    learners = {
        "fresh": await user_factory(firstname="Fay", lastname="Fresh"),
        "done": await user_factory(firstname="Dan", lastname="Done"),
        "older": await user_factory(firstname="Olga", lastname="Older"),
        "stale": await user_factory(firstname="Sam", lastname="Stale"),
        "gamma": await user_factory(firstname="Gus", lastname="Gamma"),
    }

    await add_member(alpha, learners["fresh"])
    await add_member(alpha, learners["done"])
    await add_member(beta, learners["older"])
    await add_member(beta, learners["stale"])
    await add_member(gamma, learners["gamma"])

    await enrol(learners["fresh"], days_ago(5))
    await enrol(learners["done"], days_ago(10))
    await complete(learners["done"], days_ago(1))
    await enrol(learners["older"], days_ago(100))
    await complete(learners["older"], None)
    await enrol(learners["stale"], days_ago(800))
    await enrol(learners["gamma"], days_ago(3))

    return CohortWorld(
        admin=admin,
        noreply=noreply,
        alice=alice,
        bob=bob,
        alpha=alpha,
        beta=beta,
        gamma=gamma,
        learners=learners,
    )
