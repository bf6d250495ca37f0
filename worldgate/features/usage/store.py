"""
worldgate/features/usage/store.py

Plan/usage store protocol and backends.

The gate only needs four capabilities from a store:
- get a user's state (created with basic defaults if absent)
- put a user's state back
- enumerate known user ids (for batch resets)
- serialize read-modify-write per user

Backends:
- InMemoryPlanStore: process-local, for development and tests
- SqlPlanStore: SQLAlchemy Core over user_plan_states + usage_events
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Protocol

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from worldgate.core.config import settings
from worldgate.core.database import (
    build_engine,
    create_all_tables,
    get_database_url,
    get_db_session,
    usage_events,
    user_plan_states,
)
from worldgate.core.errors import PlanStoreError
from worldgate.features.plans.service import resolve_plan_tier
from worldgate.features.usage.service import effective_retention
from worldgate.models.usage_event import AIOperation, UsageEvent
from worldgate.models.user_plan import SubscriptionStatus, UsageCounters, UserPlanState


logger = logging.getLogger("worldgate.store")


class PlanStore(Protocol):
    """
    Protocol for plan/usage stores.

    Implementations must handle:
    - Lazy creation of basic-tier state on first access
    - Persisting counters, plan fields and the recent-event log
    - Listing every user id they hold
    - A per-user lock for atomic read-evaluate-write
    """

    def get(self, user_id: str) -> UserPlanState:
        """
        Return the user's state, creating a default one if absent.

        Raises:
            PlanStoreError: If the backing store cannot be read
        """
        ...

    def put(self, state: UserPlanState) -> None:
        """
        Persist the given state (keyed by state.user_id).

        Raises:
            PlanStoreError: If the backing store cannot be written
        """
        ...

    def list_user_ids(self) -> List[str]:
        ...

    def locked(self, user_id: str):
        """Context manager held across a get/evaluate/put sequence."""
        ...


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UserLockRegistry:
    """One re-entrant lock per user id; no cross-user contention."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, user_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def locked(self, user_id: str) -> Iterator[None]:
        with self.lock_for(user_id):
            yield


class InMemoryPlanStore(UserLockRegistry):
    """Process-local store. Callers always receive copies."""

    def __init__(self):
        super().__init__()
        self._states: Dict[str, UserPlanState] = {}
        self._states_guard = threading.Lock()

    def get(self, user_id: str) -> UserPlanState:
        with self._states_guard:
            state = self._states.get(user_id)
            if state is None:
                state = UserPlanState(user_id=user_id)
                self._states[user_id] = state
                logger.info("[store] created default plan state", extra={"user_id": user_id})
            return state.snapshot()

    def put(self, state: UserPlanState) -> None:
        stored = state.snapshot()
        stored.updated_at = datetime.now(timezone.utc)
        with self._states_guard:
            self._states[state.user_id] = stored

    def list_user_ids(self) -> List[str]:
        with self._states_guard:
            return list(self._states)


class SqlPlanStore(UserLockRegistry):
    """
    SQLAlchemy-backed store.

    user_plan_states holds one row per user; usage_events holds the recent
    request log, rewritten on every put and trimmed to `retention` rows.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        *,
        engine=None,
        retention: Optional[int] = None,
        create_tables: bool = True,
    ):
        super().__init__()
        if engine is None:
            url = database_url or get_database_url()
            if not url:
                raise ValueError(
                    "DATABASE_URL is not configured. "
                    "Set DATABASE_URL in environment or .env file."
                )
            engine = build_engine(url)
        self.engine = engine
        self.retention = effective_retention(retention or settings.USAGE_EVENT_RETENTION)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        if create_tables:
            create_all_tables(engine)

    def _load(self, session, user_id: str) -> Optional[UserPlanState]:
        row = session.execute(
            select(user_plan_states).where(user_plan_states.c.user_id == user_id)
        ).first()
        if not row:
            return None

        events = session.execute(
            select(usage_events)
            .where(usage_events.c.user_id == user_id)
            .order_by(usage_events.c.occurred_at, usage_events.c.id)
        ).all()

        return UserPlanState(
            user_id=row.user_id,
            plan=resolve_plan_tier(row.plan),
            subscription_id=row.subscription_id,
            subscription_status=SubscriptionStatus(row.subscription_status),
            world_element_count=row.world_element_count,
            usage=UsageCounters(
                monthly_requests=row.monthly_requests,
                daily_requests=row.daily_requests,
                tokens_used=row.tokens_used,
                storage_used=row.storage_used,
                recent_requests=[
                    UsageEvent(
                        operation=AIOperation(event.operation),
                        model_name=event.model_name,
                        occurred_at=_utc(event.occurred_at),
                        token_count=event.token_count,
                    )
                    for event in events
                ],
            ),
            updated_at=_utc(row.updated_at),
        )

    def get(self, user_id: str) -> UserPlanState:
        try:
            with get_db_session(self._session_factory) as session:
                state = self._load(session, user_id)
                if state is not None:
                    return state

            state = UserPlanState(user_id=user_id)
            try:
                with get_db_session(self._session_factory) as session:
                    session.execute(
                        insert(user_plan_states).values(
                            user_id=user_id,
                            plan=state.plan.value,
                            subscription_status=state.subscription_status.value,
                            created_at=state.updated_at,
                            updated_at=state.updated_at,
                        )
                    )
                logger.info("[store] created default plan state", extra={"user_id": user_id})
                return state
            except IntegrityError:
                # Another writer created the row first
                with get_db_session(self._session_factory) as session:
                    return self._load(session, user_id)
        except SQLAlchemyError as e:
            raise PlanStoreError(f"Failed to load plan state for {user_id}: {e}")

    def put(self, state: UserPlanState) -> None:
        now = datetime.now(timezone.utc)
        values = dict(
            plan=state.plan.value,
            subscription_id=state.subscription_id,
            subscription_status=state.subscription_status.value,
            world_element_count=state.world_element_count,
            monthly_requests=state.usage.monthly_requests,
            daily_requests=state.usage.daily_requests,
            tokens_used=state.usage.tokens_used,
            storage_used=state.usage.storage_used,
            updated_at=now,
        )
        recent = state.usage.recent_requests[-self.retention:]
        try:
            with get_db_session(self._session_factory) as session:
                result = session.execute(
                    update(user_plan_states)
                    .where(user_plan_states.c.user_id == state.user_id)
                    .values(**values)
                )
                if not result.rowcount:
                    session.execute(
                        insert(user_plan_states).values(user_id=state.user_id, created_at=now, **values)
                    )

                session.execute(
                    delete(usage_events).where(usage_events.c.user_id == state.user_id)
                )
                if recent:
                    session.execute(
                        insert(usage_events),
                        [
                            {
                                "user_id": state.user_id,
                                "operation": event.operation.value,
                                "model_name": event.model_name,
                                "occurred_at": event.occurred_at,
                                "token_count": event.token_count,
                            }
                            for event in recent
                        ],
                    )
        except SQLAlchemyError as e:
            raise PlanStoreError(f"Failed to save plan state for {state.user_id}: {e}")

    def list_user_ids(self) -> List[str]:
        try:
            with get_db_session(self._session_factory) as session:
                rows = session.execute(
                    select(user_plan_states.c.user_id).order_by(user_plan_states.c.user_id)
                ).all()
                return [row.user_id for row in rows]
        except SQLAlchemyError as e:
            raise PlanStoreError(f"Failed to list users: {e}")


def build_store_from_settings(settings_obj=None) -> PlanStore:
    """Select a store backend from PLAN_STORE (memory | sql)."""
    cfg = settings_obj or settings
    kind = str(cfg.PLAN_STORE).lower()
    if kind == "memory":
        return InMemoryPlanStore()
    if kind == "sql":
        return SqlPlanStore(cfg.TEST_DATABASE_URL or cfg.DATABASE_URL, retention=cfg.USAGE_EVENT_RETENTION)
    raise ValueError(f"Unsupported PLAN_STORE: {cfg.PLAN_STORE}")
