from __future__ import annotations

import asyncio
import itertools
from typing import Any, Dict, List

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from photosai.config import Settings
from photosai.db.base import Base
from photosai.db.models import TrainingModel, User
from photosai.db.session import create_sessionmaker
from photosai.services.credits import CreditsService
from photosai.services.fal_client import FalError
from photosai.services.razorpay import RazorpayClient
from photosai.utils.time import utcnow


class FakeRazorpay:
    """In-memory stand-in for the Razorpay orders API."""

    def __init__(self, key_id: str, key_secret: str) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.payments: Dict[str, List[Dict[str, Any]]] = {}
        self.created: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

    async def create_order(self, *, amount, currency, receipt, notes=None):
        order = {
            'id': f'order_{next(self._ids)}',
            'amount': amount,
            'currency': currency,
            'receipt': receipt,
            'notes': notes or {},
            'status': 'created',
        }
        self.orders[order['id']] = order
        self.created.append(order)
        return order

    async def fetch_order(self, order_id):
        return self.orders.get(order_id, {'id': order_id, 'status': 'created'})

    async def fetch_order_payments(self, order_id):
        return self.payments.get(order_id, [])

    def verify_signature(self, *, order_id, payment_id, signature):
        return self.sign(order_id, payment_id) == signature

    def sign(self, order_id: str, payment_id: str) -> str:
        return RazorpayClient.compute_signature(self.key_secret, order_id, payment_id)

    def mark_paid(self, order_id: str, payment_id: str) -> None:
        self.orders[order_id]['status'] = 'paid'
        self.payments[order_id] = [
            {'id': 'pay_failed', 'status': 'failed'},
            {'id': payment_id, 'status': 'captured'},
        ]


class FakeFal:
    """In-memory stand-in for the fal queue API.

    Image request ids are derived from the prompt so pairing can be checked
    after a concurrent fan-out.
    """

    def __init__(self) -> None:
        self.trained: List[str] = []
        self.submitted: List[str] = []
        self.previews: List[str] = []
        self.result_fetches: List[str] = []
        self.fail_prompts: set[str] = set()
        self.statuses: Dict[str, str] = {}
        self._ids = itertools.count(1)

    async def train_model(self, zip_url, trigger_word):
        request_id = f'train-{next(self._ids)}'
        self.trained.append(request_id)
        return request_id

    async def get_training_result(self, request_id):
        self.result_fetches.append(request_id)
        return f'https://fal.media/{request_id}/lora.safetensors'

    async def get_training_status(self, request_id):
        return self.statuses.get(request_id, 'in_progress')

    async def generate_image(self, prompt, tensor_path):
        # yield so pack submissions interleave
        await asyncio.sleep(0)
        if prompt in self.fail_prompts:
            raise FalError(f'submit failed for {prompt}', 500)
        self.submitted.append(prompt)
        return f'img-{prompt}'

    async def generate_image_sync(self, tensor_path):
        self.previews.append(tensor_path)
        return 'https://fal.media/preview.png'


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f'sqlite+aiosqlite:///{tmp_path / "photosai.db"}',
        JWT_SECRET='test-jwt-secret-0123456789abcdef0123',
        RAZORPAY_KEY_ID='rzp_test_key',
        RAZORPAY_KEY_SECRET='rzp_test_secret',
        FAL_KEY='fal-test-key',
        DB_RETRY_BASE_DELAY=0,
        IMAGE_GEN_CREDITS=1,
        TRAIN_MODEL_CREDITS=20,
    )


@pytest.fixture
async def engine(settings):
    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(settings, engine):
    return create_sessionmaker(settings, engine)


@pytest.fixture
def razorpay(settings) -> FakeRazorpay:
    return FakeRazorpay(settings.razorpay_key_id, settings.razorpay_key_secret)


@pytest.fixture
def fal() -> FakeFal:
    return FakeFal()


@pytest.fixture
def make_user(sessionmaker):
    counter = itertools.count(1)

    async def factory(credits: int = 0) -> User:
        n = next(counter)
        async with sessionmaker() as session:
            user = User(
                email=f'user{n}@photos.dev',
                password_hash='x',
                name=f'User {n}',
                created_at=utcnow(),
            )
            session.add(user)
            await session.flush()
            if credits:
                await CreditsService(session).credit(user.id, credits, 'test_grant')
            await session.commit()
        return user

    return factory


@pytest.fixture
def make_model(sessionmaker):
    counter = itertools.count(1)

    async def factory(user_id: str, *, ready: bool = True, request_id: str | None = None) -> TrainingModel:
        n = next(counter)
        now = utcnow()
        async with sessionmaker() as session:
            model = TrainingModel(
                user_id=user_id,
                name=f'model {n}',
                type='Woman',
                age=30,
                ethnicity='East Asian',
                eye_color='Brown',
                bald=False,
                zip_url='https://files.photos.dev/images.zip',
                fal_ai_request_id=request_id or f'train-fixture-{n}',
                training_status='Generated' if ready else 'Pending',
                tensor_path=f'https://fal.media/fixture-{n}.safetensors' if ready else None,
                created_at=now,
                updated_at=now,
            )
            session.add(model)
            await session.commit()
        return model

    return factory


@pytest.fixture
def balance(sessionmaker):
    async def read(user_id: str) -> int:
        async with sessionmaker() as session:
            return await CreditsService(session).get_balance(user_id)

    return read
