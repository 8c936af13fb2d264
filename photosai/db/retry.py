"""Bounded retry for local storage work.

Only wrap units that touch the database and nothing else: a retried callable
must be safe to run again from scratch, so calls to payment or inference
providers stay outside of it.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photosai.utils.logging import get_logger


logger = get_logger('db.retry')

T = TypeVar('T')


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    # Connection refused / reset before the driver wrapped it.
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    return False


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    delay: float = 1.0,
    name: str = 'db_operation',
) -> T:
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= retries or not is_transient_error(exc):
                raise
            wait_s = delay * (2 ** attempt)
            attempt += 1
            logger.warning(
                'db_retry',
                operation=name,
                attempt=attempt,
                retries_left=retries - attempt,
                wait_s=wait_s,
                error=str(exc),
            )
            await asyncio.sleep(wait_s)


async def run_in_transaction(
    sessionmaker: async_sessionmaker[AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    retries: int = 3,
    delay: float = 1.0,
    name: str = 'db_transaction',
) -> T:
    """Run ``work`` inside a fresh session and transaction, retrying transient failures.

    Each attempt gets its own session so a failed attempt leaves nothing behind.
    """

    async def attempt() -> T:
        async with sessionmaker() as session:
            async with session.begin():
                return await work(session)

    return await with_retry(attempt, retries=retries, delay=delay, name=name)
