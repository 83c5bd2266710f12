# Файл: billing_backoffice/services/reconciliation.py

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db import PendingChargeORM
from billing_backoffice.db.uow import TransactionRunner
from billing_backoffice.exceptions import NotFoundError, TransientConflictError, ValidationError
from billing_backoffice.models import (
    LedgerEntryInDB, PaymentInDB, PendingChargeInDB, ReconciliationResult,
)
from billing_backoffice.models.enums import (
    ChargeStatus, LedgerKind, PaymentMethod, SubscriptionStatus, ensure_charge_transition,
)
from billing_backoffice.repositories import (
    LedgerRepository, PaymentRepository, PendingChargeRepository, SubscriptionRepository, UserRepository,
)
from billing_backoffice.services import validators
from billing_backoffice.services.cache import TTLCache

logger = logging.getLogger(__name__)

UNLINKED_DESCRIPTION = "pagamento avulso"
LEDGER_DESCRIPTION_LENGTH = 255


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PaymentRequest:
    user_id: UUID
    amount: Decimal
    payment_date: date
    method: PaymentMethod
    note: Optional[str]
    pending_charge_id: Optional[UUID]


class PaymentReconciliationService:
    """
    Превращает "пользователь заплатил X" в согласованное состояние за одну транзакцию:
    платёж записан, начисление закрыто (если нашлось), подписка активирована
    (если это была её первая оплата), в журнал добавлен приход.
    """

    def __init__(
        self,
        runner: TransactionRunner,
        users: UserRepository,
        charges: PendingChargeRepository,
        payments: PaymentRepository,
        ledger: LedgerRepository,
        subscriptions: SubscriptionRepository,
        cache: Optional[TTLCache] = None,
        money_ceiling: Decimal = validators.DEFAULT_MONEY_CEILING,
        max_retries: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._runner = runner
        self._users = users
        self._charges = charges
        self._payments = payments
        self._ledger = ledger
        self._subscriptions = subscriptions
        self._cache = cache
        self._money_ceiling = money_ceiling
        self._max_retries = max_retries
        self._clock = clock

    def validate(
        self,
        user_id: Any,
        amount: Any,
        payment_date: Any,
        method: Any,
        note: Any = None,
        pending_charge_id: Any = None,
    ) -> PaymentRequest:
        today = self._clock().date()
        paid_on = validators.parse_date(payment_date, "payment_date")
        return PaymentRequest(
            user_id=validators.parse_uuid(user_id, "user_id"),
            amount=validators.parse_money(amount, self._money_ceiling),
            payment_date=validators.ensure_not_far_future(paid_on, today),
            method=validators.parse_enum(PaymentMethod, method, "method"),
            note=validators.parse_text(note, "note", required=False),
            pending_charge_id=(
                validators.parse_uuid(pending_charge_id, "pending_charge_id") if pending_charge_id else None
            ),
        )

    async def reconcile(
        self,
        user_id: Any,
        amount: Any,
        payment_date: Any,
        method: Any,
        note: Any = None,
        pending_charge_id: Any = None,
    ) -> ReconciliationResult:
        request = self.validate(user_id, amount, payment_date, method, note, pending_charge_id)

        async def _work(session: AsyncSession) -> ReconciliationResult:
            return await self._reconcile(session, request)

        result = await self._runner.run_with_retry(_work, max_retries=self._max_retries)
        if self._cache is not None:
            self._cache.invalidate()
        logger.info(
            f"Payment {result.payment.id} of {request.amount} recorded for user {request.user_id}"
            + (f", charge {result.charge.id} paid" if result.charge else ", no charge linked")
        )
        return result

    async def _reconcile(self, session: AsyncSession, req: PaymentRequest) -> ReconciliationResult:
        # Шаг 1: пользователь должен существовать
        if not await self._users.exists(session, req.user_id):
            raise NotFoundError("User", req.user_id)

        # Шаг 2: сам платёж
        payment = await self._payments.create(
            session, req.user_id, req.amount, req.payment_date, req.method, req.note
        )

        # Шаг 3: какое начисление он закрывает
        if req.pending_charge_id is not None:
            charge = await self._resolve_explicit(session, req)
            ambiguous = False
        else:
            charge, ambiguous = await self._resolve_by_amount(session, req)

        activated = False
        if charge is not None:
            charge = await self._settle(session, charge.id, req, payment.id)
            activated = await self._activate_subscription(session, charge)

        # Шаг 4: приход в журнал
        description = f"Pagamento via {req.method.label} - {charge.description if charge else UNLINKED_DESCRIPTION}"
        if len(description) > LEDGER_DESCRIPTION_LENGTH:
            logger.warning(
                f"Ledger description for payment {payment.id} truncated from {len(description)} "
                f"to {LEDGER_DESCRIPTION_LENGTH} characters"
            )
            description = description[:LEDGER_DESCRIPTION_LENGTH]
        entry = await self._ledger.append(
            session, req.user_id, LedgerKind.INFLOW, req.amount, req.payment_date, description
        )

        return ReconciliationResult(
            payment=PaymentInDB.model_validate(payment),
            ledger_entry=LedgerEntryInDB.model_validate(entry),
            charge=PendingChargeInDB.model_validate(charge) if charge else None,
            subscription_activated=activated,
            ambiguous_match=ambiguous,
        )

    @staticmethod
    def _check_payable(charge: PendingChargeORM, req: PaymentRequest) -> None:
        if charge.user_id != req.user_id:
            raise ValidationError(f"Pending charge {charge.id} does not belong to user {req.user_id}")
        if charge.status is ChargeStatus.PAID:
            raise ValidationError(f"Pending charge {charge.id} is already paid")
        if charge.status is ChargeStatus.CANCELED:
            raise ValidationError(f"Pending charge {charge.id} is canceled")
        if Decimal(charge.amount) != req.amount:
            raise ValidationError(
                f"Payment amount {req.amount} does not match pending charge amount {charge.amount}"
            )

    async def _resolve_explicit(self, session: AsyncSession, req: PaymentRequest) -> PendingChargeORM:
        charge = await self._charges.get(session, req.pending_charge_id)
        if charge is None:
            raise NotFoundError("Pending charge", req.pending_charge_id)
        self._check_payable(charge, req)
        return charge

    async def _resolve_by_amount(
        self, session: AsyncSession, req: PaymentRequest
    ) -> tuple[Optional[PendingChargeORM], bool]:
        candidates = await self._charges.list_open_matching_amount(session, req.user_id, req.amount)
        if not candidates:
            logger.warning(
                f"No open pending charge of {req.amount} for user {req.user_id}; payment recorded without a charge"
            )
            return None, False
        if len(candidates) > 1:
            # Эвристика: закрываем самое раннее по сроку. Вызывающего не спрашиваем.
            logger.warning(
                f"{len(candidates)} open charges of {req.amount} for user {req.user_id}; "
                f"picking {candidates[0].id} due {candidates[0].due_date}"
            )
            return candidates[0], True
        return candidates[0], False

    async def _settle(
        self, session: AsyncSession, charge_id: UUID, req: PaymentRequest, payment_id: UUID
    ) -> PendingChargeORM:
        # Перечитываем под блокировкой: статус мог измениться, пока мы выбирали.
        fresh = await self._charges.get_for_update(session, charge_id)
        if fresh is None:
            raise NotFoundError("Pending charge", charge_id)
        self._check_payable(fresh, req)
        ensure_charge_transition(fresh.status, ChargeStatus.PAID)
        if not await self._charges.mark_paid(session, charge_id, payment_id):
            raise TransientConflictError(f"Pending charge {charge_id} changed while being reconciled")
        await session.refresh(fresh)
        return fresh

    async def _activate_subscription(self, session: AsyncSession, charge: PendingChargeORM) -> bool:
        if charge.subscription_id is None:
            return False
        subscription = await self._subscriptions.get_for_update(session, charge.subscription_id)
        if subscription is None or subscription.status is not SubscriptionStatus.PENDING:
            return False
        await self._subscriptions.set_status(session, subscription, SubscriptionStatus.ACTIVE)
        return True
