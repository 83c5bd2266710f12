# Файл: billing_backoffice/models/billing.py

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import BaseModel, Field

from .enums import (
    ChargeStatus, LedgerKind, PaymentMethod, Periodicity, SubscriptionStatus, UserRole,
)


class UserInfo(BaseModel):
    id: UUID
    name: str
    email: str
    role: UserRole

    model_config = {"from_attributes": True}


class PlanInDB(BaseModel):
    id: UUID
    name: str
    description: str
    price: Decimal
    periodicity: Periodicity
    is_active: bool

    model_config = {"from_attributes": True}


class SubscriptionInDB(BaseModel):
    id: UUID
    user_id: UUID
    plan_id: Optional[UUID] = None
    amount: Decimal
    periodicity: Periodicity
    start_date: date
    due_day: int
    status: SubscriptionStatus
    canceled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PendingChargeInDB(BaseModel):
    id: UUID
    user_id: UUID
    subscription_id: Optional[UUID] = None
    amount: Decimal
    due_date: date
    description: str
    status: ChargeStatus
    paid_payment_id: Optional[UUID] = None

    model_config = {"from_attributes": True}


class PaymentInDB(BaseModel):
    id: UUID
    user_id: UUID
    amount: Decimal
    payment_date: date
    method: PaymentMethod
    note: Optional[str] = None

    model_config = {"from_attributes": True}


class LedgerEntryInDB(BaseModel):
    id: UUID
    user_id: UUID
    kind: LedgerKind
    amount: Decimal
    entry_date: date
    description: str

    model_config = {"from_attributes": True}


class LedgerTotals(BaseModel):
    inflow: Decimal
    outflow: Decimal
    balance: Decimal


# ――― результаты основных операций ――― #

class ReconciliationResult(BaseModel):
    payment: PaymentInDB
    ledger_entry: LedgerEntryInDB
    # None, если подходящего начисления не нашлось (платёж принят "как есть").
    charge: Optional[PendingChargeInDB] = None
    subscription_activated: bool = False
    ambiguous_match: bool = False


class ProvisionedSubscription(BaseModel):
    subscription: SubscriptionInDB
    charges: List[PendingChargeInDB]


# ――― дашборд ――― #

class ChargeBucket(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0")


class DashboardMetrics(BaseModel):
    total_subscriptions: int
    subscriptions_by_status: Dict[SubscriptionStatus, int]
    current_month_revenue: Decimal
    pending: ChargeBucket
    overdue: ChargeBucket
    total_open_amount: Decimal
    by_periodicity: Dict[Periodicity, int]
    computed_at: datetime


class SubscriptionBalance(BaseModel):
    subscription: SubscriptionInDB
    open_charges: int
    open_amount: Decimal


class OverdueChargeDetail(BaseModel):
    id: UUID
    amount: Decimal
    due_date: date
    days_late: int


class DelinquentUser(BaseModel):
    user: Optional[UserInfo] = None
    user_id: UUID
    overdue_count: int
    overdue_amount: Decimal
    max_days_late: int
    charges: List[OverdueChargeDetail] = Field(default_factory=list)


class UserReport(BaseModel):
    user: UserInfo
    active_subscriptions: int
    canceled_subscriptions: int
    expected_recurring_amount: Decimal
    overdue: List[OverdueChargeDetail]
    overdue_amount: Decimal
    upcoming: List[PendingChargeInDB]
    upcoming_amount: Decimal
