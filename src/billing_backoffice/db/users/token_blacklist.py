from __future__ import annotations
from uuid import UUID, uuid4
from datetime import datetime

from sqlalchemy import Text, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base


class TokenBlacklistORM(Base):
    __tablename__ = "token_blacklist"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    token: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    # После этого момента запись можно удалить: сам токен уже просрочен.
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
