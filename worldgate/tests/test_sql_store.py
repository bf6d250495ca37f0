"""Tests for the SQLAlchemy plan/usage store (SQLite in a temp dir)."""
from datetime import datetime, timedelta, timezone

import pytest

from worldgate.core.database import drop_all_tables
from worldgate.core.errors import PlanStoreError
from worldgate.features.entitlements.service import DenialReason, EntitlementGate
from worldgate.features.plans.service import MIN_EVENT_RETENTION
from worldgate.features.usage.store import SqlPlanStore
from worldgate.models.plan import PlanTier
from worldgate.models.usage_event import AIOperation, UsageEvent
from worldgate.models.user_plan import SubscriptionStatus


def test_get_creates_default_state(sql_store):
    state = sql_store.get("fresh")

    assert state.plan == PlanTier.BASIC
    assert state.subscription_id is None
    assert state.subscription_status == SubscriptionStatus.ACTIVE
    assert state.usage.monthly_requests == 0
    assert sql_store.list_user_ids() == ["fresh"]


def test_put_round_trips_counters_and_events(sql_store, now):
    state = sql_store.get("writer")
    state.plan = PlanTier.PRO
    state.subscription_id = "sub_1"
    state.subscription_status = SubscriptionStatus.TRIALING
    state.world_element_count = 12
    state.usage.monthly_requests = 3
    state.usage.daily_requests = 2
    state.usage.tokens_used = 900
    state.usage.storage_used = 5 * 1024
    state.usage.recent_requests = [
        UsageEvent(operation=AIOperation.GENERATE, model_name="gpt-4o", occurred_at=now, token_count=400),
        UsageEvent(operation=AIOperation.STREAM, model_name="gpt-4o-mini", occurred_at=now + timedelta(seconds=5), token_count=500),
    ]
    sql_store.put(state)

    loaded = sql_store.get("writer")
    assert loaded.plan == PlanTier.PRO
    assert loaded.subscription_id == "sub_1"
    assert loaded.subscription_status == SubscriptionStatus.TRIALING
    assert loaded.world_element_count == 12
    assert loaded.usage.tokens_used == 900
    assert loaded.usage.storage_used == 5 * 1024
    assert [e.operation for e in loaded.usage.recent_requests] == [AIOperation.GENERATE, AIOperation.STREAM]
    assert loaded.usage.recent_requests[0].occurred_at == now


def test_put_trims_events_to_retention(tmp_path, now):
    store = SqlPlanStore(f"sqlite:///{tmp_path / 'trim.db'}", retention=2)
    assert store.retention == MIN_EVENT_RETENTION
    state = store.get("trim")
    state.usage.recent_requests = [
        UsageEvent(operation=AIOperation.ANALYZE, model_name="gpt-4o-mini", occurred_at=now + timedelta(seconds=i), token_count=i)
        for i in range(MIN_EVENT_RETENTION + 10)
    ]
    store.put(state)

    kept = [e.token_count for e in store.get("trim").usage.recent_requests]
    assert kept == list(range(10, MIN_EVENT_RETENTION + 10))
    store.engine.dispose()


def test_non_utc_clock_round_trips_through_sqlite(sql_store):
    gate = EntitlementGate(sql_store, retention=100, fail_open=True, rate_window_seconds=60)
    local_now = datetime(2024, 6, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))

    burst = [gate.check_ai_usage("tz", "gpt-4o-mini", "analyze", now=local_now) for _ in range(5)]
    later = gate.check_ai_usage("tz", "gpt-4o-mini", "analyze", now=local_now + timedelta(minutes=5))

    assert all(d.allowed for d in burst)
    assert later.allowed is True
    stored = sql_store.get("tz").usage.recent_requests[0].occurred_at
    assert stored == datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_gate_over_sql_store(sql_store, now):
    gate = EntitlementGate(sql_store, retention=100, fail_open=True, rate_window_seconds=60)

    results = [gate.check_ai_usage("u1", "gpt-4o-mini", "generate", 100, now=now) for _ in range(6)]

    assert [r.allowed for r in results] == [True] * 5 + [False]
    assert results[-1].reason == DenialReason.RATE_LIMIT
    persisted = sql_store.get("u1")
    assert persisted.usage.monthly_requests == 5
    assert persisted.usage.tokens_used == 500
    assert len(persisted.usage.recent_requests) == 5

    gate.reset_daily()
    assert sql_store.get("u1").usage.daily_requests == 0
    assert sql_store.get("u1").usage.monthly_requests == 5


def test_sql_errors_are_wrapped(sql_store):
    drop_all_tables(sql_store.engine)

    with pytest.raises(PlanStoreError):
        sql_store.get("gone")
    with pytest.raises(PlanStoreError):
        sql_store.list_user_ids()


def test_gate_fails_open_when_tables_missing(sql_store):
    drop_all_tables(sql_store.engine)
    gate = EntitlementGate(sql_store, fail_open=True)

    decision = gate.check_ai_usage("u", "gpt-4o-mini", "analyze")

    assert decision.allowed is True
    assert decision.fail_open is True


def test_missing_database_url_raises(monkeypatch):
    from worldgate.core.config import settings

    monkeypatch.delenv("TEST_DATABASE_URL", raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", None)
    monkeypatch.setattr(settings, "TEST_DATABASE_URL", None)

    with pytest.raises(ValueError):
        SqlPlanStore()
