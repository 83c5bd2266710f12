"""Проверки входных данных. Выполняются до открытия транзакции."""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Type, TypeVar
from uuid import UUID

from dateutil.relativedelta import relativedelta

from billing_backoffice.exceptions import ValidationError

E = TypeVar("E", bound=enum.Enum)

DEFAULT_MONEY_CEILING = Decimal("1000000")
CENT = Decimal("0.01")
MAX_NOTE_LENGTH = 255
# Описание начисления попадает в журнал с префиксом "Pagamento via <метод> - " (всего до 255).
MAX_CHARGE_DESCRIPTION_LENGTH = 200


def parse_uuid(value: Any, field: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        return UUID(str(value))
    except (ValueError, TypeError, AttributeError) as e:
        raise ValidationError(f"{field} must be a valid UUID") from e


def parse_money(value: Any, ceiling: Decimal = DEFAULT_MONEY_CEILING, field: str = "amount") -> Decimal:
    """Положительное конечное число, не больше потолка и не точнее копейки. Возвращает Decimal с 2 знаками."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} must be a number") from e
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be a positive finite number")
    if amount > ceiling:
        raise ValidationError(f"{field} must not exceed {ceiling}")
    if amount != amount.quantize(CENT):
        raise ValidationError(f"{field} must have at most two decimal places")
    return amount.quantize(CENT)


def parse_date(value: Any, field: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
        # полная метка времени ISO 8601 тоже допустима
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError as e:
            raise ValidationError(f"{field} must be an ISO date") from e
    raise ValidationError(f"{field} is required")


def ensure_not_far_future(value: date, today: date, years: int = 10, field: str = "payment_date") -> date:
    if value > today + relativedelta(years=years):
        raise ValidationError(f"{field} cannot be more than {years} years in the future")
    return value


def parse_enum(enum_cls: Type[E], value: Any, field: str) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).upper())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}") from e


def parse_due_day(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 28:
        raise ValidationError("due_day must be an integer between 1 and 28")
    return value


def parse_text(value: Any, field: str, max_length: int = MAX_NOTE_LENGTH, required: bool = True) -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value.strip()
