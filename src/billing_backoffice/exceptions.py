class BillingError(Exception):
    """Base class."""

    http_status: int = 500


class ValidationError(BillingError):
    http_status = 400


class InvalidTransitionError(ValidationError):
    """Недопустимый переход в машине состояний (например, PAID -> OVERDUE)."""


class NotFoundError(BillingError):
    http_status = 404

    def __init__(self, resource: str, ident: object | None = None):
        self.resource = resource
        self.ident = ident
        message = f"{resource} {ident} not found" if ident is not None else f"{resource} not found"
        super().__init__(message)


class ConflictError(BillingError):
    http_status = 409


class UnauthorizedError(BillingError):
    http_status = 401


class ForbiddenError(BillingError):
    http_status = 403


class DatabaseError(BillingError):
    http_status = 500


class TransientConflictError(DatabaseError):
    """Дедлок, ошибка сериализации или таймаут: операцию можно безопасно повторить."""
