# billing_backoffice/db/__init__.py

from .base import Base

from .users.users import UserORM
from .users.token_blacklist import TokenBlacklistORM

from .billing.plan_orm import SubscriptionPlanORM
from .billing.subscription_orm import SubscriptionORM
from .billing.payment_orm import PaymentORM
from .billing.pending_charge_orm import PendingChargeORM
from .billing.ledger_orm import LedgerEntryORM


__all__ = [
    "Base",
    "UserORM",
    "TokenBlacklistORM",
    "SubscriptionPlanORM",
    "SubscriptionORM",
    "PaymentORM",
    "PendingChargeORM",
    "LedgerEntryORM",
]
