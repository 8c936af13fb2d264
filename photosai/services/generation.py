from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Sequence, TypeVar

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photosai.config import Settings
from photosai.db.models import (
    JOB_FAILED,
    JOB_GENERATED,
    JOB_PENDING,
    JOB_TERMINAL_STATUSES,
    OutputImage,
    Pack,
    PackPrompt,
    TrainingModel,
)
from photosai.db.retry import run_in_transaction
from photosai.services.credits import CreditsService
from photosai.services.errors import InsufficientCredits, ModelNotReady, NotFound
from photosai.services.fal_client import FalClient
from photosai.services.provider import InferenceProvider
from photosai.utils.logging import get_logger
from photosai.utils.time import utcnow


logger = get_logger('generation')

T = TypeVar('T')


class GenerationService:
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

    async def _ready_model(self, user_id: str, model_id: str) -> TrainingModel:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(TrainingModel).where(
                    TrainingModel.id == model_id,
                    or_(TrainingModel.user_id == user_id, TrainingModel.open.is_(True)),
                )
            )
            model = result.scalar_one_or_none()
        if not model:
            raise NotFound('model not found')
        if not model.tensor_path:
            raise ModelNotReady('model has not finished training')
        return model

    async def _charge(self, user_id: str, cost: int, reason: str, meta: dict, key: str) -> None:
        async def work(session: AsyncSession) -> bool:
            return await CreditsService(session).debit(user_id, cost, reason, meta=meta, idempotency_key=key)

        if not await self._tx(work, 'charge_generation'):
            logger.info('generation_insufficient_credits', user_id=user_id, cost=cost)
            raise InsufficientCredits('Not enough credits')

    async def _refund(self, user_id: str, cost: int, meta: dict, key: str) -> None:
        async def work(session: AsyncSession) -> None:
            await CreditsService(session).credit(
                user_id,
                cost,
                'generation_refund',
                meta=meta,
                idempotency_key=f'refund:{key}',
            )

        await self._tx(work, 'refund_generation')
        logger.info('generation_refunded', user_id=user_id, cost=cost, charge_key=key)

    async def generate(self, user_id: str, model_id: str, prompt: str) -> OutputImage:
        model = await self._ready_model(user_id, model_id)
        cost = self.settings.image_gen_credits
        charge_key = f'gen:{uuid.uuid4()}'
        meta = {'model_id': model.id, 'count': 1}
        await self._charge(user_id, cost, 'image_generation', meta, charge_key)

        try:
            request_id = await self.fal.generate_image(prompt, model.tensor_path)
        except Exception:
            await self._refund(user_id, cost, meta, charge_key)
            raise

        async def record(session: AsyncSession) -> OutputImage:
            now = utcnow()
            image = OutputImage(
                user_id=user_id,
                model_id=model.id,
                prompt=prompt,
                image_url='',
                fal_ai_request_id=request_id,
                status=JOB_PENDING,
                created_at=now,
                updated_at=now,
            )
            session.add(image)
            await session.flush()
            return image

        try:
            image = await self._tx(record, 'create_output_image')
        except Exception as exc:
            logger.error('orphaned_image_request', user_id=user_id, request_id=request_id, error=str(exc))
            raise
        logger.info('image_submitted', user_id=user_id, image_id=image.id, request_id=request_id)
        return image

    async def pack_prompts(self, pack_id: str) -> List[str]:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(PackPrompt.prompt)
                .where(PackPrompt.pack_id == pack_id)
                .order_by(PackPrompt.position, PackPrompt.id)
            )
            return [row[0] for row in result.all()]

    async def generate_pack(self, user_id: str, model_id: str, pack_id: str) -> List[OutputImage]:
        prompts = await self.pack_prompts(pack_id)
        if not prompts:
            raise NotFound('pack not found or empty')
        model = await self._ready_model(user_id, model_id)

        cost = self.settings.image_gen_credits * len(prompts)
        charge_key = f'pack:{uuid.uuid4()}'
        meta = {'model_id': model.id, 'pack_id': pack_id, 'count': len(prompts)}
        await self._charge(user_id, cost, 'pack_generation', meta, charge_key)

        try:
            request_ids = await self._submit_all(prompts, model.tensor_path)
        except Exception:
            await self._refund(user_id, cost, meta, charge_key)
            raise

        async def record(session: AsyncSession) -> List[OutputImage]:
            now = utcnow()
            images = [
                OutputImage(
                    user_id=user_id,
                    model_id=model.id,
                    prompt=prompt,
                    image_url='',
                    fal_ai_request_id=request_id,
                    status=JOB_PENDING,
                    created_at=now,
                    updated_at=now,
                )
                for prompt, request_id in zip(prompts, request_ids, strict=True)
            ]
            session.add_all(images)
            await session.flush()
            return images

        try:
            images = await self._tx(record, 'create_pack_images')
        except Exception as exc:
            logger.error('orphaned_pack_requests', user_id=user_id, request_ids=request_ids, error=str(exc))
            raise
        logger.info('pack_submitted', user_id=user_id, pack_id=pack_id, count=len(images), cost=cost)
        return images

    async def _submit_all(self, prompts: Sequence[str], tensor_path: str) -> List[str]:
        """Submit every prompt; the returned ids line up with ``prompts`` by index."""
        sem = asyncio.Semaphore(max(1, self.settings.pack_submit_concurrency))

        async def submit(prompt: str) -> str:
            async with sem:
                return await self.fal.generate_image(prompt, tensor_path)

        results = await asyncio.gather(*(submit(p) for p in prompts), return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            submitted = [r for r in results if not isinstance(r, BaseException)]
            logger.error(
                'pack_submission_failed',
                failed=len(failures),
                submitted=len(submitted),
                orphaned_request_ids=submitted,
                error=str(failures[0]),
            )
            raise failures[0]
        return [str(r) for r in results]

    async def handle_webhook(self, payload: Dict[str, Any]) -> str:
        request_id = FalClient.extract_request_id(payload)
        if not request_id:
            raise NotFound('request_id missing')

        async with self.sessionmaker() as session:
            result = await session.execute(
                select(OutputImage).where(OutputImage.fal_ai_request_id == request_id)
            )
            image = result.scalar_one_or_none()
        if not image:
            logger.error('image_webhook_unknown_request', request_id=request_id)
            raise NotFound(f'no image for request {request_id}')
        if image.status in JOB_TERMINAL_STATUSES:
            logger.info('image_webhook_duplicate', request_id=request_id, status=image.status)
            return image.status

        status = JOB_FAILED if FalClient.is_error(payload) else JOB_GENERATED
        image_url = FalClient.extract_image_url(payload)

        async def work(session: AsyncSession) -> int:
            updated = await session.execute(
                update(OutputImage)
                .where(OutputImage.id == image.id, OutputImage.status == JOB_PENDING)
                .values(status=status, image_url=image_url, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return updated.rowcount

        await self._tx(work, 'complete_image')
        if status == JOB_FAILED:
            logger.warning('image_failed', request_id=request_id, reason=FalClient.error_message(payload))
        else:
            logger.info('image_generated', request_id=request_id, image_id=image.id)
        return status

    async def list_images(
        self,
        user_id: str,
        ids: Sequence[str] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[OutputImage]:
        stmt = select(OutputImage).where(
            OutputImage.user_id == user_id,
            OutputImage.status != JOB_FAILED,
        )
        if ids:
            stmt = stmt.where(OutputImage.id.in_(list(ids)))
        stmt = stmt.order_by(OutputImage.created_at.desc()).offset(offset).limit(limit)
        async with self.sessionmaker() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_packs(self) -> List[Pack]:
        async with self.sessionmaker() as session:
            result = await session.execute(select(Pack).order_by(Pack.name))
            return list(result.scalars().all())
