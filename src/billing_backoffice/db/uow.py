from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from sqlalchemy.exc import DBAPIError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from billing_backoffice.exceptions import TransientConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Work = Callable[[AsyncSession], Awaitable[T]]

# serialization_failure, deadlock_detected, lock_not_available, query_canceled (statement_timeout)
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03", "57014"})


def is_transient(exc: BaseException) -> bool:
    """Классифицирует ошибку драйвера по SQLSTATE, а не по тексту сообщения."""
    if isinstance(exc, (TransientConflictError, PoolTimeoutError)):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return code in TRANSIENT_SQLSTATES
    return False


class AsyncUnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sf = session_factory
        self.session: Optional[AsyncSession] = None

    async def __aenter__(self):
        self.session = self._sf()
        await self.session.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            if exc:
                await self.session.rollback()
            else:
                try:
                    await self.session.commit()
                except DBAPIError as e:
                    await self.session.rollback()
                    if is_transient(e):
                        raise TransientConflictError(f"Commit failed on a transient conflict: {e}") from e
                    raise
        finally:
            await self.session.__aexit__(exc_type, exc, tb)
        if exc is not None and not isinstance(exc, TransientConflictError) and is_transient(exc):
            raise TransientConflictError(f"Transaction aborted on a transient conflict: {exc}") from exc
        return False


class TransactionRunner:
    """
    Выполняет единицу работы в одной транзакции.

    - `run`: commit при успехе, rollback и повторный raise исходной ошибки при сбое.
    - `run_many`: несколько операций подряд, один commit в конце.
    - `run_with_retry`: повторяет только TransientConflictError с экспоненциальной
      задержкой 2**attempt * base_delay (без джиттера). Прочие ошибки летят сразу.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        base_delay: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._session_factory = session_factory
        self._base_delay = base_delay
        self._sleep = sleep

    async def run(self, work: Work[T]) -> T:
        async with AsyncUnitOfWork(self._session_factory) as uow:
            return await work(uow.session)

    async def run_many(self, ops: Sequence[Work[Any]]) -> list[Any]:
        async def _all(session: AsyncSession) -> list[Any]:
            results = []
            for op in ops:
                results.append(await op(session))
            return results

        return await self.run(_all)

    async def run_with_retry(self, work: Work[T], max_retries: int = 3) -> T:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        last_error: Optional[TransientConflictError] = None
        for attempt in range(1, max_retries + 1):
            try:
                return await self.run(work)
            except TransientConflictError as e:
                last_error = e
                if attempt == max_retries:
                    break
                delay = (2 ** attempt) * self._base_delay
                logger.warning(f"Transient conflict on attempt {attempt}/{max_retries}, retrying in {delay:.2f}s: {e}")
                await self._sleep(delay)
        logger.error(f"Transaction failed after {max_retries} attempts: {last_error}")
        raise last_error
