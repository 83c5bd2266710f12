from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from jose import jwt

from billing_backoffice.config import AuthConfig
from billing_backoffice.exceptions import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from billing_backoffice.models.enums import ChargeStatus, LedgerKind, Periodicity, UserRole
from billing_backoffice.security import create_access_token, decode_access_token, token_expiry

pytestmark = pytest.mark.asyncio


async def test_user_lifecycle(billing_client):
    user = await billing_client.create_user("Ana", "Ana@Example.com", "s3cret", "admin")
    assert user.email == "ana@example.com"
    assert user.role is UserRole.ADMIN

    assert (await billing_client.get_user(str(user.id))).name == "Ana"
    assert (await billing_client.authenticate("ana@example.com", "s3cret")).id == user.id
    with pytest.raises(UnauthorizedError):
        await billing_client.authenticate("ana@example.com", "wrong")

    with pytest.raises(ConflictError):
        await billing_client.create_user("Ana 2", "ana@example.com", "other")

    await billing_client.delete_user(user.id)
    with pytest.raises(NotFoundError, match="User"):
        await billing_client.get_user(user.id)
    with pytest.raises(NotFoundError):
        await billing_client.delete_user(user.id)


async def test_create_user_validation(billing_client):
    with pytest.raises(ValidationError, match="email"):
        await billing_client.create_user("Ana", "not-an-email", "pw")
    with pytest.raises(ValidationError, match="role"):
        await billing_client.create_user("Ana", "ana@example.com", "pw", role="ROOT")


async def test_delete_user_removes_owned_records(billing_client):
    user = await billing_client.create_user("Bia", "bia@example.com", "pw")
    provisioned = await billing_client.create_subscription(user.id, "30.00", "MONTHLY", date(2025, 1, 1))
    await billing_client.reconcile_payment(
        user.id, "30.00", date(2025, 1, 5), "PIX", pending_charge_id=provisioned.charges[0].id
    )

    await billing_client.delete_user(user.id)

    assert await billing_client.list_user_subscriptions(user.id) == []
    assert await billing_client.list_user_charges(user.id) == []
    assert await billing_client.list_user_payments(user.id) == []
    totals = await billing_client.ledger_totals(user.id)
    assert totals.inflow == Decimal("0")


async def test_plans(billing_client):
    basic = await billing_client.create_plan("Basic", "Entrada", "19.90", "monthly")
    pro = await billing_client.create_plan("Pro", "", "49.90", Periodicity.QUARTERLY)
    assert basic.price == Decimal("19.90")
    assert basic.is_active is True

    with pytest.raises(ConflictError):
        await billing_client.create_plan("Basic", "dup", "9.90", "MONTHLY")
    with pytest.raises(ValidationError, match="price"):
        await billing_client.create_plan("Free", "", "0", "MONTHLY")

    assert [p.name for p in await billing_client.list_active_plans()] == ["Basic", "Pro"]
    retired = await billing_client.retire_plan(pro.id)
    assert retired.is_active is False
    assert [p.name for p in await billing_client.list_active_plans()] == ["Basic"]
    with pytest.raises(NotFoundError, match="Plan"):
        await billing_client.retire_plan(uuid4())


async def test_subscription_from_plan_and_cancel(billing_client):
    user = await billing_client.create_user("Caio", "caio@example.com", "pw")
    plan = await billing_client.create_plan("Semestral", "", "120.00", "SEMIANNUAL")

    provisioned = await billing_client.create_subscription_from_plan(user.id, plan.id, date(2025, 1, 20), 20)
    assert [c.due_date for c in provisioned.charges] == [date(2025, 1, 20), date(2025, 7, 20)]

    subs = await billing_client.list_user_subscriptions(user.id)
    assert [s.id for s in subs] == [provisioned.subscription.id]

    assert await billing_client.cancel_subscription(provisioned.subscription.id) == 2
    canceled = await billing_client.list_charges_by_status("canceled")
    assert {c.id for c in canceled} == {c.id for c in provisioned.charges}


async def test_one_off_charges(billing_client):
    user = await billing_client.create_user("Duda", "duda@example.com", "pw")
    other = await billing_client.create_user("Edu", "edu@example.com", "pw")
    provisioned = await billing_client.create_subscription(other.id, "10.00", "ANNUAL", date(2025, 1, 1))

    charge = await billing_client.create_charge(user.id, "15.50", "2025-02-01", "Taxa de adesão")
    assert charge.status is ChargeStatus.PENDING
    assert charge.subscription_id is None
    assert (await billing_client.get_charge(charge.id)).amount == Decimal("15.50")

    with pytest.raises(ValidationError, match="does not belong"):
        await billing_client.create_charge(user.id, "10.00", "2025-02-01", "x", provisioned.subscription.id)
    with pytest.raises(NotFoundError, match="User"):
        await billing_client.create_charge(uuid4(), "10.00", "2025-02-01", "x")
    with pytest.raises(NotFoundError, match="Pending charge"):
        await billing_client.get_charge(uuid4())

    pending = await billing_client.list_user_charges(user.id, statuses=["PENDING", "OVERDUE"])
    assert [c.id for c in pending] == [charge.id]
    assert await billing_client.list_user_charges(user.id, statuses=["PAID"]) == []


async def test_charge_description_leaves_room_for_ledger_prefix(billing_client):
    user = await billing_client.create_user("Gabi", "gabi@example.com", "pw")
    with pytest.raises(ValidationError, match="description"):
        await billing_client.create_charge(user.id, "10.00", "2025-02-01", "x" * 201)

    charge = await billing_client.create_charge(user.id, "10.00", "2025-02-01", "x" * 200)
    result = await billing_client.reconcile_payment(
        user.id, "10.00", date(2025, 2, 1), "CARD", pending_charge_id=charge.id
    )
    assert result.ledger_entry.description == "Pagamento via Cartão - " + "x" * 200


async def test_ledger_totals_and_outflow(billing_client):
    user = await billing_client.create_user("Fabi", "fabi@example.com", "pw")
    await billing_client.reconcile_payment(user.id, "100.00", date(2025, 3, 1), "CASH")
    entry = await billing_client.record_outflow(user.id, "30.00", date(2025, 3, 2), "Estorno parcial")
    assert entry.kind is LedgerKind.OUTFLOW

    totals = await billing_client.ledger_totals(user.id)
    assert totals.inflow == Decimal("100.00")
    assert totals.outflow == Decimal("30.00")
    assert totals.balance == Decimal("70.00")

    overall = await billing_client.ledger_totals()
    assert overall.balance == Decimal("70.00")

    with pytest.raises(NotFoundError):
        await billing_client.record_outflow(uuid4(), "1.00", date(2025, 3, 2), "x")


async def test_logout_blacklists_token_until_expiry(billing_client):
    token = create_access_token({"sub": str(uuid4())})
    assert await billing_client.is_token_blacklisted(token) is False

    await billing_client.logout(token)
    await billing_client.logout(token)

    assert await billing_client.is_token_blacklisted(token) is True
    with pytest.raises(ValidationError):
        await billing_client.logout("")


async def test_check_connection(billing_client):
    await billing_client.check_connection()


async def test_token_helpers():
    auth = AuthConfig(secret_key="test-secret", access_token_expire_minutes=5)
    token = create_access_token({"sub": "abc"}, auth)
    assert decode_access_token(token, auth)["sub"] == "abc"
    with pytest.raises(UnauthorizedError):
        decode_access_token(token, AuthConfig(secret_key="other-secret"))

    expires = token_expiry(token)
    assert timedelta(minutes=4) < expires - datetime.now(timezone.utc) <= timedelta(minutes=5)

    no_exp = jwt.encode({"sub": "abc"}, "test-secret", algorithm="HS256")
    assert token_expiry(no_exp, default_ttl=timedelta(hours=2)) > datetime.now(timezone.utc) + timedelta(minutes=119)
    assert token_expiry("garbage") > datetime.now(timezone.utc)
