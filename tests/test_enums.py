import pytest

from billing_backoffice.exceptions import InvalidTransitionError, ValidationError
from billing_backoffice.models.enums import (
    ChargeStatus, OPEN_CHARGE_STATUSES, PaymentMethod, Periodicity, SubscriptionStatus, charge_sources,
    ensure_charge_transition, ensure_subscription_transition,
)


@pytest.mark.parametrize(
    "current, target",
    [
        (ChargeStatus.PENDING, ChargeStatus.OVERDUE),
        (ChargeStatus.PENDING, ChargeStatus.PAID),
        (ChargeStatus.PENDING, ChargeStatus.CANCELED),
        (ChargeStatus.OVERDUE, ChargeStatus.PAID),
        (ChargeStatus.OVERDUE, ChargeStatus.CANCELED),
    ],
)
def test_allowed_charge_transitions(current, target):
    ensure_charge_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (ChargeStatus.PAID, ChargeStatus.OVERDUE),
        (ChargeStatus.PAID, ChargeStatus.PENDING),
        (ChargeStatus.CANCELED, ChargeStatus.PAID),
        (ChargeStatus.OVERDUE, ChargeStatus.PENDING),
    ],
)
def test_forbidden_charge_transitions(current, target):
    with pytest.raises(InvalidTransitionError):
        ensure_charge_transition(current, target)


def test_subscription_transitions():
    ensure_subscription_transition(SubscriptionStatus.PENDING, SubscriptionStatus.ACTIVE)
    ensure_subscription_transition(SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED)
    with pytest.raises(InvalidTransitionError):
        ensure_subscription_transition(SubscriptionStatus.CANCELED, SubscriptionStatus.ACTIVE)
    with pytest.raises(InvalidTransitionError):
        ensure_subscription_transition(SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING)


def test_invalid_transition_is_a_validation_error():
    assert issubclass(InvalidTransitionError, ValidationError)
    assert InvalidTransitionError.http_status == 400


def test_charge_sources_follow_transition_table():
    assert charge_sources(ChargeStatus.PAID) == (ChargeStatus.PENDING, ChargeStatus.OVERDUE)
    assert charge_sources(ChargeStatus.CANCELED) == OPEN_CHARGE_STATUSES
    assert charge_sources(ChargeStatus.OVERDUE) == (ChargeStatus.PENDING,)
    assert charge_sources(ChargeStatus.PENDING) == ()


def test_periodicity_schedules_and_labels():
    assert Periodicity.MONTHLY.schedule == (12, 1)
    assert Periodicity.QUARTERLY.schedule == (4, 3)
    assert Periodicity.SEMIANNUAL.schedule == (2, 6)
    assert Periodicity.ANNUAL.schedule == (1, 12)
    assert [p.label for p in Periodicity] == ["Mensal", "Trimestral", "Semestral", "Anual"]
    for periodicity in Periodicity:
        count, stride = periodicity.schedule
        assert count * stride == 12


def test_payment_method_labels():
    assert [m.label for m in PaymentMethod] == ["PIX", "Cartão", "Caixa"]
