import ssl
from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from cohort_reports.config import get_settings
from cohort_reports.core.logging import get_logger
from cohort_reports.models.digest_log import CohortDigestLog

logger = get_logger(__name__)

settings = get_settings()


def _fix_database_url(url: str) -> tuple[str, dict]:
    """
    Normalize the host database URL for asyncpg.

    libpq-style params like sslmode are rejected by asyncpg. We strip them
    and handle SSL via connect_args instead.

    - sslmode=require/verify-*: Use SSL with default context
    - otherwise (local dev, sqlite, mysql): No SSL
    """
    parsed = urlparse(url)
    params = parse_qs(parsed.query)

    sslmode = (params.pop("sslmode", [""])[0] or "").lower()
    for param in ["channel_binding", "options"]:
        params.pop(param, None)

    new_query = urlencode(params, doseq=True)
    clean_url = urlunparse(parsed._replace(query=new_query))

    if sslmode in ("require", "verify-ca", "verify-full"):
        return clean_url, {"ssl": ssl.create_default_context()}
    return clean_url, {}


clean_url, connect_args = _fix_database_url(settings.database_url)


engine = create_async_engine(
    clean_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
    pool_recycle=280,
    connect_args=connect_args,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.bind(error=str(e)).error("database_transaction_rollback")
            await session.rollback()
            raise


async def ensure_digest_log_table(bind: AsyncEngine) -> None:
    """Create the digest log table if it does not exist yet.

    Host tables are never created here; only the table this project owns.
    """
    async with bind.begin() as conn:
        await conn.run_sync(CohortDigestLog.__table__.create, checkfirst=True)
    logger.debug("digest_log_table_ready")
