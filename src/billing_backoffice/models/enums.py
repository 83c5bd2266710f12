# Файл: billing_backoffice/models/enums.py

from __future__ import annotations

import enum

from billing_backoffice.exceptions import InvalidTransitionError


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    SUBSCRIBER = "SUBSCRIBER"


class Periodicity(str, enum.Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMIANNUAL = "SEMIANNUAL"
    ANNUAL = "ANNUAL"

    @property
    def schedule(self) -> tuple[int, int]:
        """(количество парцел, шаг в месяцах). Всегда покрывает ровно один год."""
        return _SCHEDULES[self]

    @property
    def label(self) -> str:
        return _PERIODICITY_LABELS[self]


_SCHEDULES = {
    Periodicity.MONTHLY: (12, 1),
    Periodicity.QUARTERLY: (4, 3),
    Periodicity.SEMIANNUAL: (2, 6),
    Periodicity.ANNUAL: (1, 12),
}

_PERIODICITY_LABELS = {
    Periodicity.MONTHLY: "Mensal",
    Periodicity.QUARTERLY: "Trimestral",
    Periodicity.SEMIANNUAL: "Semestral",
    Periodicity.ANNUAL: "Anual",
}


class PaymentMethod(str, enum.Enum):
    PIX = "PIX"
    CARD = "CARD"
    CASH = "CASH"

    @property
    def label(self) -> str:
        return {"PIX": "PIX", "CARD": "Cartão", "CASH": "Caixa"}[self.value]


class LedgerKind(str, enum.Enum):
    INFLOW = "INFLOW"
    OUTFLOW = "OUTFLOW"


class ChargeStatus(str, enum.Enum):
    PENDING = "PENDING"
    OVERDUE = "OVERDUE"
    PAID = "PAID"
    CANCELED = "CANCELED"


class SubscriptionStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"


OPEN_CHARGE_STATUSES = (ChargeStatus.PENDING, ChargeStatus.OVERDUE)

# Таблицы переходов. Всё, чего здесь нет, запрещено.
CHARGE_TRANSITIONS: dict[ChargeStatus, frozenset[ChargeStatus]] = {
    ChargeStatus.PENDING: frozenset({ChargeStatus.OVERDUE, ChargeStatus.PAID, ChargeStatus.CANCELED}),
    ChargeStatus.OVERDUE: frozenset({ChargeStatus.PAID, ChargeStatus.CANCELED}),
    ChargeStatus.PAID: frozenset(),
    ChargeStatus.CANCELED: frozenset(),
}

SUBSCRIPTION_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED}),
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.CANCELED}),
    SubscriptionStatus.CANCELED: frozenset(),
}


def ensure_charge_transition(current: ChargeStatus, target: ChargeStatus) -> None:
    if target not in CHARGE_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Pending charge cannot move from {current.value} to {target.value}")


def ensure_subscription_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> None:
    if target not in SUBSCRIPTION_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Subscription cannot move from {current.value} to {target.value}")


def charge_sources(target: ChargeStatus) -> tuple[ChargeStatus, ...]:
    """Статусы, из которых разрешён переход в `target`. Используется в WHERE условных UPDATE."""
    return tuple(status for status in ChargeStatus if target in CHARGE_TRANSITIONS[status])
