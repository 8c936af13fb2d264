from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photosai.config import Settings
from photosai.db.models import TX_FAILED, TX_PENDING, TX_SUCCESS, Subscription, Transaction
from photosai.db.retry import run_in_transaction
from photosai.services.credits import CreditsService
from photosai.services.errors import InvalidPaymentMethod, NoPendingTransaction
from photosai.services.plans import PAYMENT_METHODS, get_plan
from photosai.services.provider import PaymentProvider
from photosai.services.razorpay import RazorpayError
from photosai.utils.logging import get_logger
from photosai.utils.time import utcnow


logger = get_logger('payments')

T = TypeVar('T')


@dataclass
class SettlementResult:
    verified: bool
    credits: int
    subscription: Optional[Subscription]


class SettlementService:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        razorpay: PaymentProvider,
        settings: Settings,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.razorpay = razorpay
        self.settings = settings

    async def _tx(self, work: Callable[[AsyncSession], Awaitable[T]], name: str) -> T:
        return await run_in_transaction(
            self.sessionmaker,
            work,
            retries=self.settings.db_retry_attempts,
            delay=self.settings.db_retry_base_delay,
            name=name,
        )

    async def create_order(self, user_id: str, plan_key: str, method: str) -> Dict[str, Any]:
        plan = get_plan(plan_key)
        if method not in PAYMENT_METHODS:
            raise InvalidPaymentMethod(f'unsupported payment method: {method}')

        currency = self.settings.razorpay_currency.upper()
        notes = {'userId': user_id, 'plan': plan.key}
        order = await self.razorpay.create_order(
            amount=plan.price,
            currency=currency,
            receipt=f'rcpt_{int(time.time() * 1000)}',
            notes=notes,
        )
        order_id = str(order['id'])
        logger.info('order_created', order_id=order_id, user_id=user_id, plan=plan.key, amount=plan.price)

        async def record(session: AsyncSession) -> None:
            now = utcnow()
            session.add(
                Transaction(
                    user_id=user_id,
                    amount=plan.price,
                    currency=currency,
                    payment_id=None,
                    order_id=order_id,
                    plan=plan.key,
                    status=TX_PENDING,
                    created_at=now,
                    updated_at=now,
                )
            )

        try:
            await self._tx(record, 'create_transaction')
        except Exception as exc:
            # The provider order exists without a local record; nothing re-links it automatically.
            logger.error('orphaned_order', order_id=order_id, user_id=user_id, plan=plan.key, error=str(exc))
            raise

        return {
            'key': self.razorpay.key_id,
            'amount': plan.price,
            'currency': currency,
            'name': self.settings.checkout_name,
            'description': f'{plan.key.upper()} Plan - {plan.credits} Credits',
            'order_id': order_id,
            'prefill': {'name': '', 'email': ''},
            'notes': notes,
            'theme': {'color': '#000000'},
        }

    async def verify_and_settle(
        self,
        *,
        user_id: str,
        payment_id: str,
        order_id: str,
        signature: str,
        plan_key: str,
    ) -> SettlementResult:
        verified = self.razorpay.verify_signature(order_id=order_id, payment_id=payment_id, signature=signature)
        logger.info('signature_checked', order_id=order_id, payment_id=payment_id, verified=verified)

        # A rejected signature is settled locally; the provider is not consulted.
        provider_order = None
        if verified:
            try:
                provider_order = await self.razorpay.fetch_order(order_id)
            except RazorpayError as exc:
                logger.warning('order_audit_fetch_failed', order_id=order_id, error=str(exc))
        try:
            return await self.apply_settlement(
                user_id=user_id,
                order_id=order_id,
                payment_id=payment_id,
                verified=verified,
                provider_order=provider_order,
                requested_plan=str(plan_key or '').strip().lower(),
            )
        except NoPendingTransaction:
            if verified:
                raise
            logger.warning('order_rejected', order_id=order_id, user_id=user_id, pending=False)
            credits, _ = await self.get_credits(user_id)
            return SettlementResult(verified=False, credits=credits, subscription=None)

    async def apply_settlement(
        self,
        *,
        user_id: str,
        order_id: str,
        payment_id: str,
        verified: bool,
        provider_order: Dict[str, Any] | None = None,
        requested_plan: str | None = None,
    ) -> SettlementResult:
        """Close the PENDING transaction for ``order_id`` exactly once.

        Status change, subscription row and credit grant commit together or not
        at all. A second call for the same order raises ``NoPendingTransaction``.
        """

        async def work(session: AsyncSession) -> Optional[Subscription]:
            result = await session.execute(
                select(Transaction).where(
                    Transaction.order_id == order_id,
                    Transaction.user_id == user_id,
                    Transaction.status == TX_PENDING,
                )
            )
            transaction = result.scalar_one_or_none()
            if not transaction:
                raise NoPendingTransaction(f'no pending transaction for order {order_id}')

            self._audit(transaction, provider_order, requested_plan)

            status = TX_SUCCESS if verified else TX_FAILED
            updated = await session.execute(
                update(Transaction)
                .where(Transaction.id == transaction.id, Transaction.status == TX_PENDING)
                .values(status=status, payment_id=payment_id, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount != 1:
                raise NoPendingTransaction(f'order {order_id} was settled concurrently')
            if not verified:
                return None

            plan = get_plan(transaction.plan)
            subscription = Subscription(
                user_id=user_id,
                plan=plan.key,
                payment_id=payment_id,
                order_id=order_id,
                created_at=utcnow(),
            )
            session.add(subscription)
            await session.flush()
            await CreditsService(session).credit(
                user_id,
                plan.credits,
                'plan_purchase',
                meta={'order_id': order_id, 'payment_id': payment_id, 'plan': plan.key},
                idempotency_key=f'order:{order_id}',
            )
            return subscription

        subscription = await self._tx(work, 'settle_order')
        credits, _ = await self.get_credits(user_id)
        if subscription:
            logger.info('order_settled', order_id=order_id, user_id=user_id, plan=subscription.plan, credits=credits)
        else:
            logger.warning('order_rejected', order_id=order_id, user_id=user_id)
        return SettlementResult(verified=verified, credits=credits, subscription=subscription)

    async def expire_order(self, transaction_id: int) -> bool:
        async def work(session: AsyncSession) -> bool:
            result = await session.execute(
                update(Transaction)
                .where(Transaction.id == transaction_id, Transaction.status == TX_PENDING)
                .values(status=TX_FAILED, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

        return await self._tx(work, 'expire_order')

    @staticmethod
    def _audit(
        transaction: Transaction,
        provider_order: Dict[str, Any] | None,
        requested_plan: str | None,
    ) -> None:
        if requested_plan and requested_plan != transaction.plan:
            logger.warning(
                'plan_mismatch',
                order_id=transaction.order_id,
                recorded=transaction.plan,
                requested=requested_plan,
            )
        if not provider_order:
            return
        amount = provider_order.get('amount')
        currency = str(provider_order.get('currency') or '').upper()
        if amount != transaction.amount or currency != transaction.currency:
            logger.warning(
                'order_amount_mismatch',
                order_id=transaction.order_id,
                recorded_amount=transaction.amount,
                recorded_currency=transaction.currency,
                provider_amount=amount,
                provider_currency=currency,
            )

    async def get_credits(self, user_id: str) -> tuple[int, Optional[datetime]]:
        async with self.sessionmaker() as session:
            credit = await CreditsService(session).get_credit(user_id)
        if not credit:
            return 0, None
        return int(credit.amount), credit.updated_at

    async def current_subscription(self, user_id: str) -> Optional[Subscription]:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .order_by(Subscription.created_at.desc(), Subscription.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_transactions(self, user_id: str) -> List[Transaction]:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            )
            return list(result.scalars().all())
