from .enums import (
    UserRole, Periodicity, PaymentMethod, LedgerKind, ChargeStatus, SubscriptionStatus,
)
from .billing import (
    UserInfo, PlanInDB, SubscriptionInDB, PendingChargeInDB, PaymentInDB, LedgerEntryInDB, LedgerTotals,
    ReconciliationResult, ProvisionedSubscription, ChargeBucket, DashboardMetrics, SubscriptionBalance,
    OverdueChargeDetail, DelinquentUser, UserReport,
)

__all__ = [
    "UserRole", "Periodicity", "PaymentMethod", "LedgerKind", "ChargeStatus", "SubscriptionStatus",
    "UserInfo", "PlanInDB", "SubscriptionInDB", "PendingChargeInDB", "PaymentInDB", "LedgerEntryInDB",
    "LedgerTotals", "ReconciliationResult", "ProvisionedSubscription", "ChargeBucket", "DashboardMetrics",
    "SubscriptionBalance", "OverdueChargeDetail", "DelinquentUser", "UserReport",
]
