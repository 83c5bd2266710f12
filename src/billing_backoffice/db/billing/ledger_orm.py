# billing_backoffice/db/billing/ledger_orm.py
from __future__ import annotations
from uuid import UUID, uuid4
from datetime import date
from sqlalchemy import String, ForeignKey, Date, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..base import Base, CreatedAt, Money, enum_column
from billing_backoffice.models.enums import LedgerKind
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..users.users import UserORM

class LedgerEntryORM(Base):
    """Запись истории движения денег. Только добавление; итоги считаются агрегатами."""
    __tablename__ = "ledger_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    kind: Mapped[LedgerKind] = mapped_column(enum_column(LedgerKind, "ledger_kind_enum"), nullable=False, index=True)
    amount: Mapped[Money]
    entry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[CreatedAt]

    user: Mapped["UserORM"] = relationship(back_populates="ledger_entries")
