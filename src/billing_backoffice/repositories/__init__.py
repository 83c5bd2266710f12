from .auth.pg_repositoryUser import UserRepository
from .auth.pg_repositoryTokenBlacklist import TokenBlacklistRepository
from .billing.pg_repositoryPlan import PlanRepository
from .billing.pg_repositorySubscription import SubscriptionRepository
from .billing.pg_repositoryPendingCharge import PendingChargeRepository
from .billing.pg_repositoryPayment import PaymentRepository
from .billing.pg_repositoryLedger import LedgerRepository

__all__ = [
    "UserRepository",
    "TokenBlacklistRepository",
    "PlanRepository",
    "SubscriptionRepository",
    "PendingChargeRepository",
    "PaymentRepository",
    "LedgerRepository",
]
