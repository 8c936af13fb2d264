from __future__ import annotations

import pytest
from sqlalchemy import select

from photosai.db.models import JOB_FAILED, JOB_GENERATED, JOB_PENDING, CreditHistory, TrainingModel
from photosai.services.errors import InsufficientCredits, NotFound
from photosai.services.training import TrainingRequest, TrainingService


@pytest.fixture
def training(sessionmaker, fal, settings):
    return TrainingService(sessionmaker, fal, settings)


def _request() -> TrainingRequest:
    return TrainingRequest(
        name='ava',
        type='Woman',
        age=28,
        ethnicity='South_Asian',
        eye_color='Hazel',
        bald=False,
        zip_url='https://files.photos.dev/ava.zip',
    )


async def _reload(sessionmaker, model_id: str) -> TrainingModel:
    async with sessionmaker() as session:
        return await session.get(TrainingModel, model_id)


def _success(request_id: str) -> dict:
    return {
        'request_id': request_id,
        'status': 'OK',
        'payload': {'diffusers_lora_file': {'url': f'https://fal.media/{request_id}/lora.safetensors'}},
    }


async def test_submit_records_pending_job(training, fal, make_user, balance):
    user = await make_user(credits=5)
    model = await training.submit(user.id, _request())

    assert model.training_status == JOB_PENDING
    assert model.fal_ai_request_id == fal.trained[0]
    assert model.tensor_path is None
    assert await balance(user.id) == 5


async def test_completion_debits_and_marks_generated(training, sessionmaker, fal, make_user, balance):
    user = await make_user(credits=25)
    model = await training.submit(user.id, _request())

    status = await training.handle_webhook(_success(model.fal_ai_request_id))

    assert status == JOB_GENERATED
    stored = await _reload(sessionmaker, model.id)
    assert stored.training_status == JOB_GENERATED
    assert stored.tensor_path.endswith('lora.safetensors')
    assert stored.thumbnail == 'https://fal.media/preview.png'
    assert await balance(user.id) == 5


async def test_replayed_webhook_debits_once(training, sessionmaker, fal, make_user, balance):
    user = await make_user(credits=45)
    model = await training.submit(user.id, _request())
    payload = _success(model.fal_ai_request_id)

    assert await training.handle_webhook(payload) == JOB_GENERATED
    assert await training.handle_webhook(payload) == JOB_GENERATED

    assert await balance(user.id) == 25
    assert fal.result_fetches == [model.fal_ai_request_id]
    async with sessionmaker() as session:
        result = await session.execute(
            select(CreditHistory).where(CreditHistory.idempotency_key == f'train:{model.fal_ai_request_id}')
        )
        assert len(result.scalars().all()) == 1


async def test_completion_runs_once_even_when_called_directly_twice(training, make_user, balance):
    user = await make_user(credits=45)
    model = await training.submit(user.id, _request())

    await training.complete(model)
    await training.complete(model)

    assert await balance(user.id) == 25


async def test_insufficient_credits_leaves_job_pending(training, sessionmaker, fal, make_user, balance):
    user = await make_user(credits=10)
    model = await training.submit(user.id, _request())

    with pytest.raises(InsufficientCredits):
        await training.handle_webhook(_success(model.fal_ai_request_id))

    stored = await _reload(sessionmaker, model.id)
    assert stored.training_status == JOB_PENDING
    assert stored.tensor_path is None
    assert fal.previews == []
    assert await balance(user.id) == 10


async def test_provider_error_marks_failed_without_debit(training, sessionmaker, make_user, balance):
    user = await make_user(credits=25)
    model = await training.submit(user.id, _request())

    status = await training.handle_webhook(
        {'request_id': model.fal_ai_request_id, 'status': 'ERROR', 'error': 'bad archive'}
    )

    assert status == JOB_FAILED
    assert (await _reload(sessionmaker, model.id)).training_status == JOB_FAILED
    assert await balance(user.id) == 25
    assert await training.handle_webhook(_success(model.fal_ai_request_id)) == JOB_FAILED
    assert await balance(user.id) == 25


async def test_unknown_request_id_is_not_found(training, sessionmaker, make_user, balance):
    user = await make_user(credits=25)
    model = await training.submit(user.id, _request())

    with pytest.raises(NotFound):
        await training.handle_webhook(_success('train-unknown'))
    with pytest.raises(NotFound):
        await training.handle_webhook({'status': 'OK'})

    assert (await _reload(sessionmaker, model.id)).training_status == JOB_PENDING
    assert await balance(user.id) == 25


async def test_model_listing_and_lookup(training, make_user, make_model):
    owner = await make_user()
    other = await make_user()
    own = await make_model(owner.id)
    foreign = await make_model(other.id)

    listed = {m.id for m in await training.list_models(owner.id)}
    assert own.id in listed
    assert foreign.id not in listed

    assert (await training.get_model(owner.id, own.id)).id == own.id
    with pytest.raises(NotFound):
        await training.get_model(owner.id, foreign.id)
