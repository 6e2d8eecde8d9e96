"""Fixed-window rate limiting with swappable storage backends."""

import logging
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage
from limits.aio.strategies import FixedWindowRateLimiter
from sqlalchemy import case
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fieldpost.core.config import Settings
from fieldpost.core.errors import RateLimited
from fieldpost.models import RateLimitRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitPolicy:
    """Allowance of ``max_requests`` per fixed ``window_seconds``."""

    name: str
    max_requests: int
    window_seconds: float


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds

    def retry_after(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_at - now))

    def headers(self, now: float | None = None) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
            "Retry-After": str(self.retry_after(now)),
        }


@dataclass(frozen=True)
class WindowState:
    count: int
    reset_at: float


class RateLimitBackend(ABC):
    """Storage for window counters. ``hit`` must be atomic per identifier."""

    durable: bool = False

    @abstractmethod
    async def hit(self, identifier: str, max_requests: int, window_seconds: float, now: float) -> WindowState:
        """Count one request and return the window state after counting it.

        Starts a fresh window (count 1) when none exists or ``now`` is past
        ``reset_at``. The stored count stops growing at ``max_requests + 1``.
        """
        ...


class MemoryRateLimitBackend(RateLimitBackend):
    """In-process fixed windows from ``limits``. Not shared between server processes.

    Windows are timed by ``limits`` against the wall clock, so ``now`` is unused.
    """

    durable = False

    def __init__(self):
        self._limiter = FixedWindowRateLimiter(MemoryStorage())

    async def hit(self, identifier: str, max_requests: int, window_seconds: float, now: float) -> WindowState:
        item = RateLimitItemPerSecond(max_requests, max(1, math.ceil(window_seconds)))
        if not await self._limiter.test(item, identifier):
            reset_at, _ = await self._limiter.get_window_stats(item, identifier)
            return WindowState(count=max_requests + 1, reset_at=reset_at)

        allowed = await self._limiter.hit(item, identifier)
        reset_at, remaining = await self._limiter.get_window_stats(item, identifier)
        count = max_requests - remaining if allowed else max_requests + 1
        return WindowState(count=count, reset_at=reset_at)


class DatabaseRateLimitBackend(RateLimitBackend):
    """Counters in the ``rate_limits`` table using a single atomic upsert."""

    durable = True

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _insert_for(dialect_name: str):
        if dialect_name == "postgresql":
            return postgresql.insert
        if dialect_name == "sqlite":
            return sqlite.insert
        raise RuntimeError(f"Rate limiting is not supported on dialect {dialect_name!r}")

    async def hit(self, identifier: str, max_requests: int, window_seconds: float, now: float) -> WindowState:
        table = RateLimitRecord.__table__
        async with self._session_factory() as session:
            insert = self._insert_for(session.bind.dialect.name)
            stmt = insert(table).values(identifier=identifier, count=1, reset_at=now + window_seconds)
            expired = table.c.reset_at < now
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.identifier],
                set_={
                    "count": case(
                        (expired, 1),
                        (table.c.count > max_requests, table.c.count),
                        else_=table.c.count + 1,
                    ),
                    "reset_at": case((expired, now + window_seconds), else_=table.c.reset_at),
                },
            ).returning(table.c.count, table.c.reset_at)
            result = await session.execute(stmt)
            row = result.one()
            await session.commit()
        return WindowState(count=int(row.count), reset_at=float(row.reset_at))


class RateLimiter:
    """Applies one policy against a backend.

    Failure policy: in production a missing durable backend or a backend error
    rejects the request; elsewhere backend errors let the request through.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        backend: RateLimitBackend | None,
        *,
        fail_closed: bool,
        clock: Clock = time.time,
        on_fail_closed: Callable[[str, str], None] | None = None,
    ):
        self.policy = policy
        self.backend = backend
        self.fail_closed = fail_closed
        self._clock = clock
        self._on_fail_closed = on_fail_closed

    def _rejected(self, now: float, key: str, reason: str) -> RateLimitResult:
        logger.critical(
            "Rate limiter failing closed for %s (%s): %s", self.policy.name, key, reason
        )
        if self._on_fail_closed:
            self._on_fail_closed(self.policy.name, reason)
        return RateLimitResult(
            success=False,
            limit=self.policy.max_requests,
            remaining=0,
            reset_at=now + self.policy.window_seconds,
        )

    async def limit(self, key: str) -> RateLimitResult:
        now = self._clock()
        identifier = f"{self.policy.name}:{key}"

        if self.backend is None or (self.fail_closed and not self.backend.durable):
            if self.fail_closed:
                return self._rejected(now, identifier, "no durable rate-limit backend configured")
            return RateLimitResult(True, self.policy.max_requests, self.policy.max_requests, now)

        try:
            state = await self.backend.hit(
                identifier, self.policy.max_requests, self.policy.window_seconds, now
            )
        except Exception as e:
            if self.fail_closed:
                return self._rejected(now, identifier, f"backend error: {e}")
            logger.error("Rate limit backend error for %s, allowing request: %s", identifier, e)
            return RateLimitResult(
                success=True,
                limit=self.policy.max_requests,
                remaining=self.policy.max_requests,
                reset_at=now + self.policy.window_seconds,
            )

        return RateLimitResult(
            success=state.count <= self.policy.max_requests,
            limit=self.policy.max_requests,
            remaining=max(0, self.policy.max_requests - state.count),
            reset_at=state.reset_at,
        )

    async def limit_ip(self, ip: str) -> RateLimitResult:
        return await self.limit(f"ip:{ip}")

    async def limit_identity(self, identity: str) -> RateLimitResult:
        return await self.limit(f"id:{identity}")

    async def enforce(self, key: str, message: str | None = None) -> RateLimitResult:
        """Count a request and raise RateLimited if it is over the limit."""
        result = await self.limit(key)
        if not result.success:
            now = self._clock()
            logger.warning("Rate limit exceeded: %s:%s", self.policy.name, key)
            raise RateLimited(message, retry_after=result.retry_after(now), headers=result.headers(now))
        return result

    async def enforce_ip(self, ip: str, message: str | None = None) -> RateLimitResult:
        return await self.enforce(f"ip:{ip}", message)

    async def enforce_identity(self, identity: str, message: str | None = None) -> RateLimitResult:
        return await self.enforce(f"id:{identity}", message)


MINUTE = 60
QUARTER_HOUR = 15 * MINUTE
HOUR = 60 * MINUTE

# Identity-scoped variants (``*_user``) exist where the allowance differs from the IP scope.
DEFAULT_POLICIES: dict[str, RateLimitPolicy] = {
    policy.name: policy
    for policy in (
        RateLimitPolicy("send_link", 5, QUARTER_HOUR),
        RateLimitPolicy("validate_code", 10, QUARTER_HOUR),
        RateLimitPolicy("password_login", 5, QUARTER_HOUR),
        RateLimitPolicy("dashboard_auth", 5, QUARTER_HOUR),
        RateLimitPolicy("create_submission", 10, QUARTER_HOUR),
        RateLimitPolicy("read", 30, QUARTER_HOUR),
        RateLimitPolicy("read_user", 20, QUARTER_HOUR),
        RateLimitPolicy("update", 20, QUARTER_HOUR),
        RateLimitPolicy("update_user", 15, QUARTER_HOUR),
        RateLimitPolicy("workflow", 10, QUARTER_HOUR),
        RateLimitPolicy("regenerate", 5, MINUTE),
        RateLimitPolicy("publish", 10, HOUR),
    )
}


class RateLimiters:
    """Registry of limiters, one per policy, sharing a backend."""

    def __init__(self, limiters: dict[str, RateLimiter]):
        self._limiters = limiters

    def __getitem__(self, name: str) -> RateLimiter:
        return self._limiters[name]

    def __contains__(self, name: str) -> bool:
        return name in self._limiters

    @classmethod
    def build(
        cls,
        backend: RateLimitBackend | None,
        *,
        fail_closed: bool,
        policies: dict[str, RateLimitPolicy] | None = None,
        clock: Clock = time.time,
        on_fail_closed: Callable[[str, str], None] | None = None,
    ) -> "RateLimiters":
        policies = policies or DEFAULT_POLICIES
        return cls(
            {
                name: RateLimiter(
                    policy,
                    backend,
                    fail_closed=fail_closed,
                    clock=clock,
                    on_fail_closed=on_fail_closed,
                )
                for name, policy in policies.items()
            }
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        on_fail_closed: Callable[[str, str], None] | None = None,
    ) -> "RateLimiters":
        """Pick a backend for the environment.

        Production requires the database backend; anything else fails closed.
        Outside production an unset backend falls back to memory.
        """
        backend: RateLimitBackend | None
        if settings.rate_limit_backend == "database":
            backend = DatabaseRateLimitBackend(session_factory)
            logger.info("Using database for rate limiting")
        elif settings.rate_limit_backend == "memory" or not settings.is_production:
            backend = MemoryRateLimitBackend()
            if settings.is_production:
                logger.critical("In-memory rate limiting configured in production; requests will be rejected")
            else:
                logger.warning("Using in-memory rate limiting (single process only)")
        else:
            backend = None
            logger.critical("No rate-limit backend configured in production; requests will be rejected")

        return cls.build(backend, fail_closed=settings.is_production, on_fail_closed=on_fail_closed)
