from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_backoffice.exceptions import NotFoundError
from billing_backoffice.models.enums import Periodicity, SubscriptionStatus
from billing_backoffice.services.cache import TTLCache

pytestmark = pytest.mark.asyncio


# ――― TTLCache ――― #

async def test_cache_hit_until_ttl_expires(monotonic):
    cache = TTLCache(ttl_seconds=300, clock=monotonic)
    calls = []

    async def _factory():
        calls.append(1)
        return len(calls)

    assert await cache.get_or_compute("metrics", _factory) == 1
    monotonic.value += 299
    assert await cache.get_or_compute("metrics", _factory) == 1
    monotonic.value += 1
    assert await cache.get_or_compute("metrics", _factory) == 2
    assert len(calls) == 2


async def test_cache_invalidate_one_or_all(monotonic):
    cache = TTLCache(ttl_seconds=60, clock=monotonic)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2

    cache.invalidate()
    assert cache.get("b") is None


async def test_cache_factory_error_is_not_cached(monotonic):
    cache = TTLCache(clock=monotonic)

    async def _broken():
        raise RuntimeError("db down")

    with pytest.raises(RuntimeError):
        await cache.get_or_compute("metrics", _broken)
    assert cache.get("metrics") is None


# ――― DashboardAggregator ――― #

@pytest.fixture
def seed_portfolio(provisioning, reconciliation, jobs, make_user):
    """
    Два подписчика:
    - ana: MONTHLY 50.00 с 2025-01-01, январь оплачен в марте, февраль и март просрочены;
    - bia: ANNUAL 600.00 с 2025-04-01, ещё не активна.
    """

    async def _seed():
        ana = await make_user("ana@example.com")
        bia = await make_user("bia@example.com")
        monthly = await provisioning.create_with_schedule(ana, "50.00", "MONTHLY", date(2025, 1, 1), 10)
        annual = await provisioning.create_with_schedule(bia, "600.00", "ANNUAL", date(2025, 4, 1), 10)
        await reconciliation.reconcile(
            ana, "50.00", date(2025, 3, 2), "PIX", pending_charge_id=monthly.charges[0].id
        )
        await jobs.age_pending_charges()
        return ana, bia, monthly, annual

    return _seed


async def test_metrics(dashboard, seed_portfolio, clock):
    await seed_portfolio()

    metrics = await dashboard.metrics()

    assert metrics.total_subscriptions == 2
    assert metrics.subscriptions_by_status[SubscriptionStatus.ACTIVE] == 1
    assert metrics.subscriptions_by_status[SubscriptionStatus.PENDING] == 1
    assert metrics.subscriptions_by_status[SubscriptionStatus.CANCELED] == 0
    assert metrics.current_month_revenue == Decimal("50.00")
    # ana: фев и мар просрочены (10-е число < 15.03), апр..дек ждут; bia: одно начисление
    assert metrics.overdue.count == 2
    assert metrics.overdue.amount == Decimal("100.00")
    assert metrics.pending.count == 10
    assert metrics.pending.amount == Decimal("1050.00")
    assert metrics.total_open_amount == Decimal("1150.00")
    assert metrics.by_periodicity == {Periodicity.MONTHLY: 1, Periodicity.ANNUAL: 1}
    assert metrics.computed_at == clock()


async def test_metrics_are_cached_until_invalidated(dashboard, seed_portfolio, make_user, provisioning):
    await seed_portfolio()
    first = await dashboard.metrics()
    assert await dashboard.metrics() is first

    carla = await make_user("carla@example.com")
    await provisioning.create_with_schedule(carla, "10.00", "ANNUAL", date(2025, 5, 1))
    refreshed = await dashboard.metrics()
    assert refreshed.total_subscriptions == 3


async def test_metrics_expire_with_ttl(dashboard, monotonic, runner, repos, make_user):
    before = await dashboard.metrics()
    assert before.total_subscriptions == 0

    user_id = await make_user()

    async def _direct_insert(session):
        await repos.subscriptions.create(session, user_id, Decimal("10.00"), Periodicity.MONTHLY, date(2025, 1, 1), 10)

    await runner.run(_direct_insert)
    assert (await dashboard.metrics()).total_subscriptions == 0

    monotonic.value += 301
    assert (await dashboard.metrics()).total_subscriptions == 1


async def test_active_subscriptions_report_balance_per_subscription(dashboard, seed_portfolio, provisioning):
    ana, _, monthly, _ = await seed_portfolio()
    second = await provisioning.create_with_schedule(ana, "20.00", "SEMIANNUAL", date(2025, 1, 1), 10)

    rows = await dashboard.active_subscriptions()

    assert [r.subscription.id for r in rows] == [monthly.subscription.id]
    assert rows[0].open_charges == 11
    assert rows[0].open_amount == Decimal("550.00")
    assert second.subscription.id not in {r.subscription.id for r in rows}


async def test_outstanding_charges_ordered_by_due_date(dashboard, seed_portfolio):
    await seed_portfolio()

    rows = await dashboard.outstanding_charges(limit=3)

    assert [r.due_date for r in rows] == [date(2025, 2, 10), date(2025, 3, 10), date(2025, 4, 10)]


async def test_outstanding_charges_cached_per_limit(dashboard, seed_portfolio):
    await seed_portfolio()

    short = await dashboard.outstanding_charges(limit=3)
    longer = await dashboard.outstanding_charges(limit=10)

    assert len(short) == 3
    assert len(longer) == 10
    assert await dashboard.outstanding_charges(limit=3) is short


async def test_invalidate_by_name_drops_every_limit(dashboard, seed_portfolio, make_charge):
    ana, _, _, _ = await seed_portfolio()
    first = await dashboard.outstanding_charges(limit=3)
    await dashboard.outstanding_charges(limit=50)
    metrics = await dashboard.metrics()

    await make_charge(ana, "5.00", date(2025, 1, 1), "Multa")
    dashboard.invalidate("outstanding_charges")

    assert (await dashboard.outstanding_charges(limit=3))[0].due_date == date(2025, 1, 1)
    assert len(await dashboard.outstanding_charges(limit=50)) == len(first) + 10
    assert await dashboard.metrics() is metrics


async def test_cache_invalidate_prefix_keeps_unrelated_keys(monotonic):
    cache = TTLCache(clock=monotonic)
    cache.set("outstanding_charges:3", "a")
    cache.set("outstanding_charges:20", "b")
    cache.set("outstanding_charges_extra", "c")

    cache.invalidate("outstanding_charges")

    assert cache.get("outstanding_charges:3") is None
    assert cache.get("outstanding_charges:20") is None
    assert cache.get("outstanding_charges_extra") == "c"


async def test_delinquent_users(dashboard, seed_portfolio, make_user, make_charge, jobs):
    ana, bia, _, _ = await seed_portfolio()
    await make_charge(bia, "500.00", date(2025, 3, 1), "Taxa de adesão")
    await jobs.age_pending_charges()
    dashboard.invalidate()

    report = await dashboard.delinquent_users()

    assert [r.user_id for r in report] == [bia, ana]
    assert report[0].overdue_amount == Decimal("500.00")
    assert report[0].max_days_late == 14
    assert report[0].user.email == "bia@example.com"
    assert report[1].overdue_count == 2
    assert report[1].overdue_amount == Decimal("100.00")
    assert report[1].max_days_late == 33
    assert [c.days_late for c in report[1].charges] == [33, 5]


async def test_user_report(dashboard, seed_portfolio):
    ana, _, _, _ = await seed_portfolio()

    report = await dashboard.user_report(ana)

    assert report.user.email == "ana@example.com"
    assert report.active_subscriptions == 1
    assert report.canceled_subscriptions == 0
    assert report.expected_recurring_amount == Decimal("50.00")
    assert [d.due_date for d in report.overdue] == [date(2025, 2, 10), date(2025, 3, 10)]
    assert report.overdue_amount == Decimal("100.00")
    assert len(report.upcoming) == 9
    assert report.upcoming_amount == Decimal("450.00")


async def test_user_report_unknown_user(dashboard):
    with pytest.raises(NotFoundError):
        await dashboard.user_report(uuid4())
