from __future__ import annotations

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from photosai.db.models import CreditHistory, UserCredit
from photosai.utils.time import utcnow


class CreditsService:
    """Per-user credit balance plus an append-only history journal.

    Every mutation writes a history row; rows carrying an idempotency key are
    unique, so replaying the same external event fails with ``IntegrityError``
    instead of applying twice. Callers own the transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_credit(self, user_id: str) -> Optional[UserCredit]:
        result = await self.session.execute(
            select(UserCredit)
            .where(UserCredit.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_balance(self, user_id: str) -> int:
        result = await self.session.execute(select(UserCredit.amount).where(UserCredit.user_id == user_id))
        amount = result.scalar_one_or_none()
        return int(amount or 0)

    async def has_balance(self, user_id: str, cost: int) -> bool:
        return await self.get_balance(user_id) >= cost

    async def credit(
        self,
        user_id: str,
        amount: int,
        reason: str,
        meta: dict | None = None,
        idempotency_key: str | None = None,
    ) -> None:
        if amount <= 0:
            raise ValueError('credit amount must be positive')
        self.session.add(
            CreditHistory(
                user_id=user_id,
                delta=amount,
                reason=reason,
                meta=meta or {},
                idempotency_key=idempotency_key,
                created_at=utcnow(),
            )
        )
        await self.session.flush()
        await self._upsert_increment(user_id, amount)

    async def debit(
        self,
        user_id: str,
        amount: int,
        reason: str,
        meta: dict | None = None,
        idempotency_key: str | None = None,
    ) -> bool:
        """Decrement only when the balance covers ``amount``; False means insufficient funds."""
        if amount <= 0:
            raise ValueError('debit amount must be positive')
        stmt = (
            update(UserCredit)
            .where(UserCredit.user_id == user_id, UserCredit.amount >= amount)
            .values(amount=UserCredit.amount - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        self.session.add(
            CreditHistory(
                user_id=user_id,
                delta=-amount,
                reason=reason,
                meta=meta or {},
                idempotency_key=idempotency_key,
                created_at=utcnow(),
            )
        )
        await self.session.flush()
        return True

    async def _upsert_increment(self, user_id: str, amount: int) -> None:
        now = utcnow()
        dialect = self.session.get_bind().dialect.name
        if dialect in ('postgresql', 'sqlite'):
            insert = postgresql.insert if dialect == 'postgresql' else sqlite.insert
            stmt = (
                insert(UserCredit)
                .values(user_id=user_id, amount=amount, created_at=now, updated_at=now)
                .on_conflict_do_update(
                    index_elements=[UserCredit.user_id],
                    set_={'amount': UserCredit.amount + amount, 'updated_at': now},
                )
            )
            await self.session.execute(stmt)
            return

        stmt = (
            update(UserCredit)
            .where(UserCredit.user_id == user_id)
            .values(amount=UserCredit.amount + amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            self.session.add(UserCredit(user_id=user_id, amount=amount, created_at=now, updated_at=now))
            await self.session.flush()
