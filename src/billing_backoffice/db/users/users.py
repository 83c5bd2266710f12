from __future__ import annotations
from uuid import UUID, uuid4
from typing import List

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base, CreatedAt, enum_column
from billing_backoffice.models.enums import UserRole
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from ..billing.subscription_orm import SubscriptionORM
    from ..billing.pending_charge_orm import PendingChargeORM
    from ..billing.payment_orm import PaymentORM
    from ..billing.ledger_orm import LedgerEntryORM


class UserORM(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    # Роль меняется только администратором.
    role: Mapped[UserRole] = mapped_column(
        enum_column(UserRole, "user_role_enum"), default=UserRole.SUBSCRIBER, nullable=False
    )
    created_at: Mapped[CreatedAt]

    # Удаление пользователя каскадно удаляет всё, чем он владеет.
    subscriptions: Mapped[List["SubscriptionORM"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    pending_charges: Mapped[List["PendingChargeORM"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    payments: Mapped[List["PaymentORM"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    ledger_entries: Mapped[List["LedgerEntryORM"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
