# billing_backoffice/db/billing/subscription_orm.py
from __future__ import annotations
from uuid import UUID, uuid4
from datetime import date, datetime
from typing import List, Optional
from sqlalchemy import ForeignKey, Date, DateTime, SmallInteger, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..base import Base, CreatedAt, UpdatedAt, Money, enum_column
from billing_backoffice.models.enums import Periodicity, SubscriptionStatus
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..users.users import UserORM
    from .plan_orm import SubscriptionPlanORM
    from .pending_charge_orm import PendingChargeORM

class SubscriptionORM(Base):
    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id: Mapped[Optional[UUID]] = mapped_column(ForeignKey("subscription_plans.id"), nullable=True, index=True)

    amount: Mapped[Money]
    periodicity: Mapped[Periodicity] = mapped_column(enum_column(Periodicity, "periodicity_enum"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_day: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=10)

    # PENDING - ждёт первой оплаты, ACTIVE - оплачена первая парцела, CANCELED - отменена.
    status: Mapped[SubscriptionStatus] = mapped_column(
        enum_column(SubscriptionStatus, "subscription_status_enum"),
        default=SubscriptionStatus.PENDING, nullable=False, index=True
    )
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]

    # Связи
    user: Mapped["UserORM"] = relationship(back_populates="subscriptions")
    plan: Mapped[Optional["SubscriptionPlanORM"]] = relationship(lazy="joined")
    pending_charges: Mapped[List["PendingChargeORM"]] = relationship(
        back_populates="subscription", order_by="PendingChargeORM.due_date"
    )
