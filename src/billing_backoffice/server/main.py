import logging
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from billing_backoffice import create_billing_client
from billing_backoffice.client import BillingClient
from billing_backoffice.exceptions import BillingError, ForbiddenError
from billing_backoffice.models import (
    DashboardMetrics, DelinquentUser, PendingChargeInDB, ProvisionedSubscription, ReconciliationResult,
    SubscriptionBalance, UserInfo, UserReport, UserRole,
)
from billing_backoffice.security import create_access_token
from .auth import Token, get_billing_client, get_current_user, get_token, require_admin

logger = logging.getLogger(__name__)


# --- Тела запросов ---
class LoginRequest(BaseModel):
    email: str
    password: str


class ReconcileRequest(BaseModel):
    user_id: UUID
    amount: Decimal
    payment_date: date
    method: str
    note: Optional[str] = None
    pending_charge_id: Optional[UUID] = None


class SubscriptionRequest(BaseModel):
    user_id: UUID
    amount: Decimal
    periodicity: str
    start_date: date
    due_day: int = 10


class PlanSubscriptionRequest(BaseModel):
    user_id: UUID
    plan_id: UUID
    start_date: date
    due_day: int = 10


class CancelResponse(BaseModel):
    subscription_id: UUID
    canceled_charges: int


Client = Annotated[BillingClient, Depends(get_billing_client)]
Admin = Annotated[UserInfo, Depends(require_admin)]

auth_router = APIRouter(prefix="/auth", tags=["Auth"])
billing_router = APIRouter(tags=["Billing"])
dashboard_router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@auth_router.post("/token", response_model=Token)
async def login(body: LoginRequest, client: Client):
    user = await client.authenticate(body.email, body.password)
    return Token(access_token=create_access_token({"sub": str(user.id), "role": user.role.value}))


@auth_router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    token: Annotated[str, Depends(get_token)],
    _: Annotated[UserInfo, Depends(get_current_user)],
    client: Client,
):
    await client.logout(token)


@billing_router.post("/payments/reconcile", response_model=ReconciliationResult)
async def reconcile_payment(body: ReconcileRequest, client: Client, _: Admin):
    """Регистрирует платёж и закрывает соответствующее начисление."""
    return await client.reconcile_payment(
        body.user_id, body.amount, body.payment_date, body.method, body.note, body.pending_charge_id
    )


@billing_router.post("/subscriptions", response_model=ProvisionedSubscription, status_code=status.HTTP_201_CREATED)
async def create_subscription(body: SubscriptionRequest, client: Client, _: Admin):
    return await client.create_subscription(
        body.user_id, body.amount, body.periodicity, body.start_date, body.due_day
    )


@billing_router.post(
    "/subscriptions/from-plan", response_model=ProvisionedSubscription, status_code=status.HTTP_201_CREATED
)
async def create_subscription_from_plan(body: PlanSubscriptionRequest, client: Client, _: Admin):
    return await client.create_subscription_from_plan(body.user_id, body.plan_id, body.start_date, body.due_day)


@billing_router.post("/subscriptions/{subscription_id}/cancel", response_model=CancelResponse)
async def cancel_subscription(subscription_id: UUID, client: Client, _: Admin):
    canceled = await client.cancel_subscription(subscription_id)
    return CancelResponse(subscription_id=subscription_id, canceled_charges=canceled)


@billing_router.get("/users/{user_id}/report", response_model=UserReport)
async def user_report(
    user_id: UUID,
    client: Client,
    current_user: Annotated[UserInfo, Depends(get_current_user)],
):
    """Отчёт доступен администратору и самому пользователю."""
    if current_user.role is not UserRole.ADMIN and current_user.id != user_id:
        raise ForbiddenError("Not allowed to view another user's report")
    return await client.user_report(user_id)


@dashboard_router.get("/metrics", response_model=DashboardMetrics)
async def dashboard_metrics(client: Client, _: Admin):
    return await client.dashboard_metrics()


@dashboard_router.get("/active-subscriptions", response_model=List[SubscriptionBalance])
async def active_subscriptions(client: Client, _: Admin):
    return await client.active_subscriptions()


@dashboard_router.get("/outstanding-charges", response_model=List[PendingChargeInDB])
async def outstanding_charges(client: Client, _: Admin):
    return await client.outstanding_charges()


@dashboard_router.get("/delinquent-users", response_model=List[DelinquentUser])
async def delinquent_users(client: Client, _: Admin):
    return await client.delinquent_users()


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
        detail = "An internal error occurred."
    else:
        detail = str(exc)
    headers = {"WWW-Authenticate": "Bearer"} if exc.http_status == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.http_status, content={"detail": detail}, headers=headers)


def create_app(client: Optional[BillingClient] = None) -> FastAPI:
    """
    Собирает FastAPI-приложение. Без явного клиента он создаётся из настроек
    окружения при старте и закрывается при остановке.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "billing_client", None) is None:
            owned = create_billing_client()
            app.state.billing_client = owned
        try:
            yield
        finally:
            if owned is not None:
                await owned.aclose()

    app = FastAPI(title="Billing back office", lifespan=lifespan)
    app.state.billing_client = client
    app.add_exception_handler(BillingError, billing_error_handler)
    app.include_router(auth_router)
    app.include_router(billing_router)
    app.include_router(dashboard_router)
    return app
