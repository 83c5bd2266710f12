# billing_backoffice/db/billing/plan_orm.py
from __future__ import annotations
from uuid import UUID, uuid4
from sqlalchemy import String, Boolean, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from ..base import Base, CreatedAt, UpdatedAt, Money, enum_column
from billing_backoffice.models.enums import Periodicity

class SubscriptionPlanORM(Base):
    __tablename__ = "subscription_plans"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    price: Mapped[Money]
    periodicity: Mapped[Periodicity] = mapped_column(enum_column(Periodicity, "periodicity_enum"), nullable=False)

    # Флаг для архивации планов, чтобы не удалять их из истории подписок.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]
