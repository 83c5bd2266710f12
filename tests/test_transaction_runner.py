import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import DBAPIError, IntegrityError

from billing_backoffice.db import UserORM
from billing_backoffice.db.uow import TransactionRunner, is_transient
from billing_backoffice.exceptions import NotFoundError, TransientConflictError

pytestmark = pytest.mark.asyncio


class _DriverError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"driver failure {sqlstate}")
        self.sqlstate = sqlstate


def _dbapi_error(sqlstate: str) -> DBAPIError:
    return DBAPIError("UPDATE pending_charges ...", {}, _DriverError(sqlstate))


async def _count_users(runner) -> int:
    async def _work(session):
        return (await session.execute(select(func.count(UserORM.id)))).scalar_one()

    return await runner.run(_work)


async def test_run_commits_on_success(runner, repos):
    async def _work(session):
        user = await repos.users.create_user(session, "Ana", "ana@example.com", "pw")
        return user.id

    user_id = await runner.run(_work)

    async def _check(session):
        return await repos.users.exists(session, user_id)

    assert await runner.run(_check) is True


async def test_run_rolls_back_and_reraises(runner, repos):
    async def _work(session):
        await repos.users.create_user(session, "Ana", "ana@example.com", "pw")
        raise NotFoundError("Plan", "missing")

    with pytest.raises(NotFoundError):
        await runner.run(_work)

    assert await _count_users(runner) == 0


async def test_run_many_uses_one_transaction(runner, repos):
    async def _first(session):
        return (await repos.users.create_user(session, "Ana", "ana@example.com", "pw")).email

    async def _second(session):
        return (await repos.users.create_user(session, "Bia", "bia@example.com", "pw")).email

    async def _boom(session):
        raise RuntimeError("third step failed")

    assert await runner.run_many([_first, _second]) == ["ana@example.com", "bia@example.com"]

    with pytest.raises(RuntimeError):
        await runner.run_many([
            lambda s: repos.users.create_user(s, "Caio", "caio@example.com", "pw"),
            _boom,
        ])
    assert await _count_users(runner) == 2


async def test_retry_succeeds_after_transient_failures(runner, sleeps):
    attempts = []

    async def _work(session):
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientConflictError("deadlock")
        return "done"

    assert await runner.run_with_retry(_work, max_retries=3) == "done"
    assert len(attempts) == 3
    # 2**1 * 100ms, 2**2 * 100ms
    assert sleeps == pytest.approx([0.2, 0.4])


async def test_retry_raises_last_error_when_exhausted(runner, sleeps):
    attempts = []

    async def _work(session):
        attempts.append(1)
        raise _dbapi_error("40P01")

    with pytest.raises(TransientConflictError) as exc_info:
        await runner.run_with_retry(_work, max_retries=3)

    assert len(attempts) == 3
    assert sleeps == pytest.approx([0.2, 0.4])
    assert isinstance(exc_info.value.__cause__, DBAPIError)


async def test_retry_does_not_repeat_non_transient_errors(runner, sleeps):
    attempts = []

    async def _work(session):
        attempts.append(1)
        raise _dbapi_error("23505")

    with pytest.raises(DBAPIError):
        await runner.run_with_retry(_work, max_retries=5)
    assert len(attempts) == 1
    assert sleeps == []


async def test_retry_rejects_zero_attempts(runner):
    async def _work(session):
        return None

    with pytest.raises(ValueError):
        await runner.run_with_retry(_work, max_retries=0)


@pytest.mark.parametrize("sqlstate", ["40001", "40P01", "55P03", "57014"])
async def test_transient_sqlstates_are_classified(sqlstate):
    assert is_transient(_dbapi_error(sqlstate))


async def test_other_errors_are_not_transient():
    assert not is_transient(_dbapi_error("23505"))
    assert not is_transient(IntegrityError("INSERT", {}, _DriverError("23505")))
    assert not is_transient(ValueError("boom"))


async def test_retry_delay_scales_with_base_delay(session_factory):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    runner = TransactionRunner(session_factory, base_delay=0.5, sleep=fake_sleep)

    async def _work(session):
        raise TransientConflictError("serialization failure")

    with pytest.raises(TransientConflictError):
        await runner.run_with_retry(_work, max_retries=4)
    assert delays == pytest.approx([1.0, 2.0, 4.0])
