# billing_backoffice/db/billing/payment_orm.py
from __future__ import annotations
from uuid import UUID, uuid4
from datetime import date
from typing import Optional
from sqlalchemy import String, ForeignKey, Date, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..base import Base, CreatedAt, Money, enum_column
from billing_backoffice.models.enums import PaymentMethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..users.users import UserORM

class PaymentORM(Base):
    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    amount: Mapped[Money]
    payment_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    method: Mapped[PaymentMethod] = mapped_column(enum_column(PaymentMethod, "payment_method_enum"), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[CreatedAt]

    # Связь
    user: Mapped["UserORM"] = relationship(back_populates="payments")
