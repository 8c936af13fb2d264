from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photosai.config import Settings
from photosai.db.models import JOB_PENDING, TX_PENDING, TrainingModel, Transaction
from photosai.services.errors import InsufficientCredits, NoPendingTransaction
from photosai.services.fal_client import COMPLETED_STATUSES, FalError
from photosai.services.payments import SettlementService
from photosai.services.provider import InferenceProvider, PaymentProvider
from photosai.services.razorpay import RazorpayError
from photosai.services.training import TrainingService
from photosai.utils.logging import get_logger
from photosai.utils.time import utcnow


logger = get_logger('reconcile')

# An authorized payment can still be captured, so its order must stay open.
LIVE_PAYMENT_STATUSES = {'authorized', 'captured'}
EXPIRABLE_ORDER_STATUSES = {'created', 'attempted'}


@dataclass
class SweepReport:
    settled: int = 0
    expired: int = 0
    trainings_completed: int = 0


def _aware(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _has_live_payment(payments: List[Dict[str, Any]]) -> bool:
    return any(str(p.get('status') or '').lower() in LIVE_PAYMENT_STATUSES for p in payments)


def _captured_payment_id(payments: List[Dict[str, Any]]) -> Optional[str]:
    for payment in payments:
        if str(payment.get('status') or '').lower() == 'captured' and payment.get('id'):
            return str(payment['id'])
    return None


class Reconciler:
    """Re-checks stale local intents against the providers' own records.

    Nothing here re-issues a provider call with side effects: orders and
    training requests are only read back, then settled through the same
    exactly-once paths the request handlers use.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        razorpay: PaymentProvider,
        fal: InferenceProvider,
        settlement: SettlementService,
        training: TrainingService,
        settings: Settings,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.razorpay = razorpay
        self.fal = fal
        self.settlement = settlement
        self.training = training
        self.settings = settings

    async def sweep(self) -> SweepReport:
        report = SweepReport()
        await self._sweep_transactions(report)
        await self._sweep_trainings(report)
        logger.info(
            'reconcile_sweep_done',
            settled=report.settled,
            expired=report.expired,
            trainings_completed=report.trainings_completed,
        )
        return report

    async def _sweep_transactions(self, report: SweepReport) -> None:
        now = utcnow()
        cutoff = now - timedelta(seconds=self.settings.reconcile_pending_after_seconds)
        expire_cutoff = now - timedelta(seconds=self.settings.reconcile_expire_after_seconds)
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(Transaction)
                .where(Transaction.status == TX_PENDING, Transaction.created_at <= cutoff)
                .order_by(Transaction.created_at)
            )
            pending = list(result.scalars().all())

        for transaction in pending:
            try:
                order = await self.razorpay.fetch_order(transaction.order_id)
            except RazorpayError as exc:
                logger.warning('reconcile_fetch_order_failed', order_id=transaction.order_id, error=str(exc))
                continue

            order_status = str(order.get('status') or '').lower()
            if order_status == 'paid':
                try:
                    payments = await self.razorpay.fetch_order_payments(transaction.order_id)
                except RazorpayError as exc:
                    logger.warning('reconcile_fetch_payments_failed', order_id=transaction.order_id, error=str(exc))
                    continue
                payment_id = _captured_payment_id(payments)
                if not payment_id:
                    logger.warning('reconcile_paid_without_capture', order_id=transaction.order_id)
                    continue
                try:
                    await self.settlement.apply_settlement(
                        user_id=transaction.user_id,
                        order_id=transaction.order_id,
                        payment_id=payment_id,
                        verified=True,
                        provider_order=order,
                    )
                except NoPendingTransaction:
                    continue
                report.settled += 1
                logger.info('reconcile_order_settled', order_id=transaction.order_id, payment_id=payment_id)
            elif order_status in EXPIRABLE_ORDER_STATUSES and _aware(transaction.created_at) <= expire_cutoff:
                if order_status == 'attempted':
                    try:
                        payments = await self.razorpay.fetch_order_payments(transaction.order_id)
                    except RazorpayError as exc:
                        logger.warning('reconcile_fetch_payments_failed', order_id=transaction.order_id, error=str(exc))
                        continue
                    if _has_live_payment(payments):
                        logger.info('reconcile_payment_in_flight', order_id=transaction.order_id)
                        continue
                if await self.settlement.expire_order(transaction.id):
                    report.expired += 1
                    logger.info('reconcile_order_expired', order_id=transaction.order_id, status=order_status)

    async def _sweep_trainings(self, report: SweepReport) -> None:
        cutoff = utcnow() - timedelta(seconds=self.settings.reconcile_pending_after_seconds)
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(TrainingModel)
                .where(TrainingModel.training_status == JOB_PENDING, TrainingModel.created_at <= cutoff)
                .order_by(TrainingModel.created_at)
            )
            pending = list(result.scalars().all())

        for model in pending:
            try:
                status = await self.fal.get_training_status(model.fal_ai_request_id)
                if status not in COMPLETED_STATUSES:
                    continue
                await self.training.complete(model)
            except (FalError, InsufficientCredits) as exc:
                logger.warning('reconcile_training_skipped', request_id=model.fal_ai_request_id, error=str(exc))
                continue
            report.trainings_completed += 1

    async def run_forever(self) -> None:
        interval = max(1, self.settings.reconcile_interval_seconds)
        while True:
            try:
                await self.sweep()
            except Exception as exc:
                logger.warning('reconcile_sweep_failed', error=str(exc))
            await asyncio.sleep(interval)
