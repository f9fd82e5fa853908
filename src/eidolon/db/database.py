"""Durable-store adapter: engine, sessions, transactions and circuit breaker."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Awaitable, Callable, Optional, TypeVar

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from .. import config
from ..core.exceptions import ServiceUnavailableError
from ..core.resilience import CircuitBreaker, CircuitBreakerConfig
from .models import Base

T = TypeVar("T")


def _ensure_sqlite_dir(url: str) -> None:
    prefix = "sqlite+aiosqlite:///"
    if url.startswith(prefix) and ":memory:" not in url:
        Path(url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)


class Database:
    """
    Async SQLAlchemy engine wrapped by a circuit breaker.

    Every unit of work goes through `transaction()` (or `run()`), which
    commits on success and rolls back on exception. Store failures
    (SQLAlchemyError, OSError) count against the breaker; once it opens,
    new transactions fail fast with CircuitBreakerOpen.
    """

    def __init__(
        self,
        url: str = config.DATABASE_URL,
        breaker: Optional[CircuitBreaker] = None,
        echo: bool = False,
    ):
        self.url = url
        if url.startswith("sqlite"):
            _ensure_sqlite_dir(url)
            if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
                self.engine = create_async_engine(
                    url,
                    echo=echo,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            else:
                self.engine = create_async_engine(url, echo=echo)
        else:
            self.engine = create_async_engine(url, echo=echo, pool_pre_ping=True)

        self.session_maker = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self.breaker = breaker or CircuitBreaker(CircuitBreakerConfig(
            name="database",
            failure_threshold=config.DB_FAILURE_THRESHOLD,
            reset_timeout=config.DB_RESET_TIMEOUT,
            half_open_max_attempts=config.DB_HALF_OPEN_MAX_ATTEMPTS,
            failure_exceptions=(SQLAlchemyError, OSError),
        ))

    async def init(self) -> None:
        """Create tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database ready ({self.engine.url.get_backend_name()})")

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Atomic unit of work.

        Raises:
            CircuitBreakerOpen: store currently considered unavailable
        """
        self.breaker.before_call()
        failure = None
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except BaseException as e:
                failure = e
                await session.rollback()
                raise
            finally:
                if failure is None:
                    self.breaker.record_success()
                elif isinstance(failure, self.breaker.config.failure_exceptions):
                    self.breaker.record_failure()
                else:
                    self.breaker.release()

    async def run(self, operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run `operation` inside its own transaction."""
        async with self.transaction() as session:
            return await operation(session)


# Failures that read paths degrade on instead of propagating
STORE_ERRORS = (SQLAlchemyError, OSError, ServiceUnavailableError)
