"""
Database infrastructure

Async SQLAlchemy engine/session management and the transactional record store
used by the friendship core.
"""

from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


class TransactionConflictError(Exception):
    """Commit kept losing optimistic-concurrency races after every retry"""

    def __init__(self, attempts: int, cause: Exception):
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Transaction aborted after {attempts} attempt(s): {cause}")


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases"""
    kwargs = {"echo": echo, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=3600,
        )
    return create_async_engine(database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url, echo=settings.db_echo)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def close_db_connection() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


class RecordStore:
    """
    Transactional access to the record tables.

    ``run_transaction`` gives read-then-write atomicity over one session: the
    callback does all of its reads, then its writes, and the commit checks the
    version of every row it touched. A lost race is retried with a brand new
    session so the callback re-reads current data on every attempt.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int = settings.transaction_max_attempts,
    ):
        self.session_factory = session_factory
        self.max_attempts = max(1, max_attempts)

    def session(self) -> AsyncSession:
        """Plain session for reads and batched writes outside a transition"""
        return self.session_factory()

    async def run_transaction(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            async with self.session_factory() as session:
                try:
                    async with session.begin():
                        return await fn(session)
                except (StaleDataError, IntegrityError) as exc:
                    last_error = exc
                    logger.warning(
                        "store.conflict.retry",
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        error=type(exc).__name__,
                    )
        raise TransactionConflictError(self.max_attempts, last_error)


def get_record_store() -> RecordStore:
    return RecordStore(get_session_factory())
