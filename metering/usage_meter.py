"""
Per-user, per-resource usage metering.

Counters live in usage_meters, one row per (user, resource, billing cycle
start). Every increment is a single INSERT ... ON CONFLICT DO UPDATE so
concurrent writers are serialized by the database and no update is lost.

Two ways to count:
- record_usage(): unconditional increment in its own transaction, retried on
  lock/deadlock errors and surfaced as MeteringConflictError when it cannot
  commit.
- reserve(): check-and-increment inside the caller's transaction; the
  increment only applies while count < limit, otherwise QuotaExceededError
  is raised and the caller rolls back together with the granted resource.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Union

from sqlalchemy import select, delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.exceptions import MeteringConflictError, MeteringError, QuotaExceededError
from metering.billing_cycle import BillingCycle, billing_cycle_for
from metering.tiers import is_unlimited, limit_for, rate_limit_for, resolve_tier
from models.base import ResourceKind
from models.usage_counter import UsageCounter
from schemas.usage import ResourceUsage, UsageSnapshot

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _increment_statement(dialect_name: str, user_id: int, resource: ResourceKind, cycle: BillingCycle, limit=None):
    """Upsert adding one to the counter; with a limit the update only applies while count < limit."""
    insert = _DIALECT_INSERTS.get(dialect_name)
    if insert is None:
        raise MeteringError(
            f"Atomic usage increments are not supported on {dialect_name}",
            context={"dialect": dialect_name}
        )

    now = datetime.utcnow()
    table = UsageCounter.__table__
    stmt = insert(table).values(
        user_id=user_id,
        resource=resource.value,
        count=1,
        billing_cycle_start=cycle.start,
        billing_cycle_end=cycle.end,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.user_id, table.c.resource, table.c.billing_cycle_start],
        set_={
            "count": table.c.count + 1,
            "billing_cycle_end": cycle.end,
            "updated_at": now,
        },
        where=(table.c.count < limit) if limit is not None else None,
    )
    return stmt.returning(table.c.count)


class UsageMeter:
    """
    Usage counters and quota checks.

    Attributes:
        session_maker: Factory for sessions used by the self-contained operations
        clock: Returns the current UTC time; billing cycles are derived from it
        max_retries: Attempts for record_usage before giving up
        retry_delay: Initial backoff delay in seconds (doubled per attempt)
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None
    ):
        self.session_maker = session_maker
        self.clock = clock
        self.max_retries = max_retries if max_retries is not None else settings.METERING_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.METERING_RETRY_DELAY

    # ------------------------------------------------------------------
    # Billing cycle
    # ------------------------------------------------------------------

    def billing_cycle(self, user) -> BillingCycle:
        return billing_cycle_for(user, self.clock())

    def billing_cycle_start(self, user):
        return self.billing_cycle(user).start

    def billing_cycle_end(self, user):
        return self.billing_cycle(user).end

    # ------------------------------------------------------------------
    # Increments
    # ------------------------------------------------------------------

    async def record_usage(self, user, resource: Union[str, ResourceKind]) -> int:
        """
        Increment the user's counter for the current cycle.

        Returns:
            The counter value after the increment

        Raises:
            MeteringConflictError: The transaction could not commit after retries
        """
        resource = ResourceKind(resource)
        cycle = self.billing_cycle(user)
        last_error = None

        for attempt in range(self.max_retries):
            try:
                async with self.session_maker() as session:
                    async with session.begin():
                        stmt = _increment_statement(session.bind.dialect.name, user.id, resource, cycle)
                        count = (await session.execute(stmt)).scalar_one()
                logger.debug(f"Recorded {resource.value} usage for user {user.id}: {count}")
                return count

            except IntegrityError:
                raise

            except DBAPIError as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Usage increment for user {user.id} failed "
                        f"(attempt {attempt + 1}/{self.max_retries}), retrying in {delay:.2f}s: {e}"
                    )
                    await asyncio.sleep(delay)

        raise MeteringConflictError(
            f"Could not record {resource.value} usage for user {user.id}",
            context={
                "user_id": user.id,
                "resource": resource.value,
                "billing_cycle_start": cycle.start.isoformat(),
                "attempts": self.max_retries,
            },
            original_exception=last_error,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay
        )

    async def reserve(self, session: AsyncSession, user, resource: Union[str, ResourceKind]) -> int:
        """
        Take one unit of quota inside the caller's transaction.

        Returns:
            The counter value after the increment

        Raises:
            QuotaExceededError: The user has no quota left in this cycle
        """
        resource = ResourceKind(resource)
        cycle = self.billing_cycle(user)
        limit = limit_for(user, resource)

        count = None
        if limit > 0:
            stmt = _increment_statement(session.bind.dialect.name, user.id, resource, cycle, limit=limit)
            count = (await session.execute(stmt)).scalar_one_or_none()

        if count is None:
            used = await self._read_count(session, user.id, resource, cycle)
            raise QuotaExceededError(
                f"{resource.value} quota exhausted for this billing cycle",
                resource=resource.value,
                limit=limit,
                used=used,
                resets_at=cycle.resets_at,
                now=self.clock(),
                context={"user_id": user.id, "plan_tier": resolve_tier(user).value}
            )
        return count

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _read_count(self, session: AsyncSession, user_id: int, resource: ResourceKind, cycle: BillingCycle) -> int:
        result = await session.execute(
            select(UsageCounter.count).where(
                UsageCounter.user_id == user_id,
                UsageCounter.resource == resource.value,
                UsageCounter.billing_cycle_start == cycle.start,
            )
        )
        return result.scalar_one_or_none() or 0

    async def get_current_usage(self, user, resource: Union[str, ResourceKind], session: Optional[AsyncSession] = None) -> int:
        resource = ResourceKind(resource)
        cycle = self.billing_cycle(user)
        if session is not None:
            return await self._read_count(session, user.id, resource, cycle)
        async with self.session_maker() as own_session:
            return await self._read_count(own_session, user.id, resource, cycle)

    async def can_perform_action(self, user, resource: Union[str, ResourceKind], session: Optional[AsyncSession] = None) -> bool:
        return await self.get_current_usage(user, resource, session) < limit_for(user, resource)

    async def get_remaining_quota(self, user, resource: Union[str, ResourceKind], session: Optional[AsyncSession] = None) -> int:
        return max(0, limit_for(user, resource) - await self.get_current_usage(user, resource, session))

    async def usage_snapshot(self, user, session: Optional[AsyncSession] = None) -> UsageSnapshot:
        cycle = self.billing_cycle(user)
        resources = {}
        for resource in ResourceKind:
            used = await self.get_current_usage(user, resource, session)
            limit = limit_for(user, resource)
            resources[resource.value] = ResourceUsage(
                used=used,
                limit=limit,
                remaining=max(0, limit - used),
                unlimited=is_unlimited(limit),
            )

        return UsageSnapshot(
            user_id=user.id,
            plan_tier=resolve_tier(user).value,
            billing_cycle_start=cycle.start,
            billing_cycle_end=cycle.end,
            resets_at=cycle.resets_at,
            rate_limit_per_hour=rate_limit_for(user),
            resources=resources,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def reset_usage(self, user, resource: Optional[Union[str, ResourceKind]] = None) -> int:
        """
        Remove the user's counters for the current cycle (one resource or all).

        Operator override; the next increment starts the cycle again at 1.

        Returns:
            Number of counter rows removed
        """
        cycle = self.billing_cycle(user)
        stmt = delete(UsageCounter).where(
            UsageCounter.user_id == user.id,
            UsageCounter.billing_cycle_start == cycle.start,
        )
        if resource is not None:
            stmt = stmt.where(UsageCounter.resource == ResourceKind(resource).value)

        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(stmt)

        logger.warning(
            f"Reset usage for user {user.id} "
            f"({ResourceKind(resource).value if resource else 'all resources'}, cycle {cycle.start})"
        )
        return result.rowcount
