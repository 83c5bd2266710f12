# billing_backoffice/db/billing/pending_charge_orm.py
from __future__ import annotations
from uuid import UUID, uuid4
from datetime import date
from typing import Optional
from sqlalchemy import String, ForeignKey, Date, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..base import Base, CreatedAt, UpdatedAt, Money, enum_column
from billing_backoffice.models.enums import ChargeStatus
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..users.users import UserORM
    from .subscription_orm import SubscriptionORM

class PendingChargeORM(Base):
    __tablename__ = "pending_charges"
    __table_args__ = (
        # Основной путь сверки: открытые начисления пользователя с конкретной суммой.
        Index("ix_pending_charges_user_status_amount", "user_id", "status", "amount"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=True, index=True
    )

    amount: Mapped[Money]
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)

    # PENDING -> OVERDUE (джоб просрочки) -> PAID (сверка) | CANCELED (отмена подписки).
    status: Mapped[ChargeStatus] = mapped_column(
        enum_column(ChargeStatus, "charge_status_enum"), default=ChargeStatus.PENDING, nullable=False, index=True
    )
    # Платёж, которым закрыто начисление.
    paid_payment_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]

    user: Mapped["UserORM"] = relationship(back_populates="pending_charges")
    subscription: Mapped[Optional["SubscriptionORM"]] = relationship(back_populates="pending_charges")
