from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, TypeVar

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photosai.config import Settings
from photosai.db.models import JOB_FAILED, JOB_GENERATED, JOB_PENDING, JOB_TERMINAL_STATUSES, TrainingModel
from photosai.db.retry import run_in_transaction
from photosai.services.credits import CreditsService
from photosai.services.errors import InsufficientCredits, NotFound
from photosai.services.fal_client import FalClient
from photosai.services.provider import InferenceProvider
from photosai.utils.logging import get_logger
from photosai.utils.time import utcnow


logger = get_logger('training')

T = TypeVar('T')


@dataclass
class TrainingRequest:
    name: str
    type: str
    age: int
    ethnicity: str
    eye_color: str
    bald: bool
    zip_url: str


class TrainingService:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        fal: InferenceProvider,
        settings: Settings,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.fal = fal
        self.settings = settings

    async def _tx(self, work: Callable[[AsyncSession], Awaitable[T]], name: str) -> T:
        return await run_in_transaction(
            self.sessionmaker,
            work,
            retries=self.settings.db_retry_attempts,
            delay=self.settings.db_retry_base_delay,
            name=name,
        )

    async def submit(self, user_id: str, request: TrainingRequest) -> TrainingModel:
        request_id = await self.fal.train_model(request.zip_url, request.name)
        logger.info('training_submitted', user_id=user_id, request_id=request_id)

        async def record(session: AsyncSession) -> TrainingModel:
            now = utcnow()
            model = TrainingModel(
                user_id=user_id,
                name=request.name,
                type=request.type,
                age=request.age,
                ethnicity=request.ethnicity,
                eye_color=request.eye_color,
                bald=request.bald,
                zip_url=request.zip_url,
                fal_ai_request_id=request_id,
                training_status=JOB_PENDING,
                created_at=now,
                updated_at=now,
            )
            session.add(model)
            await session.flush()
            return model

        try:
            return await self._tx(record, 'create_training_model')
        except Exception as exc:
            logger.error('orphaned_training_request', user_id=user_id, request_id=request_id, error=str(exc))
            raise

    async def _get_by_request_id(self, request_id: str) -> TrainingModel | None:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(TrainingModel).where(TrainingModel.fal_ai_request_id == request_id)
            )
            return result.scalar_one_or_none()

    async def handle_webhook(self, payload: Dict[str, Any]) -> str:
        """Apply a training webhook and return the job's resulting status.

        Redelivery for a job that already reached a terminal status is a no-op.
        """
        request_id = FalClient.extract_request_id(payload)
        if not request_id:
            raise NotFound('request_id missing')
        model = await self._get_by_request_id(request_id)
        if not model:
            logger.error('training_webhook_unknown_request', request_id=request_id)
            raise NotFound(f'no model for request {request_id}')
        if model.training_status in JOB_TERMINAL_STATUSES:
            logger.info('training_webhook_duplicate', request_id=request_id, status=model.training_status)
            return model.training_status

        if FalClient.is_error(payload):
            await self._mark_failed(model.id, FalClient.error_message(payload))
            return JOB_FAILED

        return await self.complete(model)

    async def complete(self, model: TrainingModel) -> str:
        request_id = model.fal_ai_request_id
        lora_url = await self.fal.get_training_result(request_id)

        cost = self.settings.train_model_credits
        async with self.sessionmaker() as session:
            enough = await CreditsService(session).has_balance(model.user_id, cost)
        if not enough:
            logger.warning('training_insufficient_credits', request_id=request_id, user_id=model.user_id, cost=cost)
            raise InsufficientCredits('Not enough credits to complete training')

        thumbnail = await self.fal.generate_image_sync(lora_url)
        logger.info('training_preview_rendered', request_id=request_id, thumbnail=thumbnail)

        async def work(session: AsyncSession) -> str:
            updated = await session.execute(
                update(TrainingModel)
                .where(TrainingModel.id == model.id, TrainingModel.training_status == JOB_PENDING)
                .values(
                    training_status=JOB_GENERATED,
                    tensor_path=lora_url,
                    thumbnail=thumbnail,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount != 1:
                return 'duplicate'
            charged = await CreditsService(session).debit(
                model.user_id,
                cost,
                'model_training',
                meta={'model_id': model.id, 'request_id': request_id},
                idempotency_key=f'train:{request_id}',
            )
            if not charged:
                raise InsufficientCredits('Not enough credits to complete training')
            return JOB_GENERATED

        outcome = await self._tx(work, 'complete_training')
        if outcome == 'duplicate':
            logger.info('training_completed_concurrently', request_id=request_id)
            return JOB_GENERATED
        logger.info('training_completed', request_id=request_id, user_id=model.user_id, cost=cost)
        return JOB_GENERATED

    async def _mark_failed(self, model_id: str, reason: str | None) -> None:
        async def work(session: AsyncSession) -> None:
            await session.execute(
                update(TrainingModel)
                .where(TrainingModel.id == model_id, TrainingModel.training_status == JOB_PENDING)
                .values(training_status=JOB_FAILED, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

        await self._tx(work, 'fail_training')
        logger.warning('training_failed', model_id=model_id, reason=reason)

    async def list_models(self, user_id: str) -> List[TrainingModel]:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(TrainingModel)
                .where(or_(TrainingModel.user_id == user_id, TrainingModel.open.is_(True)))
                .order_by(TrainingModel.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_model(self, user_id: str, model_id: str) -> TrainingModel:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(TrainingModel).where(TrainingModel.id == model_id, TrainingModel.user_id == user_id)
            )
            model = result.scalar_one_or_none()
        if not model:
            raise NotFound('model not found')
        return model
