from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime
from typing import Any, Dict, Type, TypeVar

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photosai.config import Settings
from photosai.db.models import OutputImage, Pack, Subscription, TrainingModel, Transaction
from photosai.db.session import create_sessionmaker
from photosai.services.auth import bearer_token, decode_token, issue_token
from photosai.services.errors import (
    InsufficientCredits,
    InvalidCredentials,
    InvalidPaymentMethod,
    InvalidPlan,
    ModelNotReady,
    NoPendingTransaction,
    NotFound,
    ServiceError,
    UserExists,
    ValidationFailed,
)
from photosai.services.fal_client import FalClient, FalError
from photosai.services.generation import GenerationService
from photosai.services.payments import SettlementService
from photosai.services.provider import InferenceProvider, PaymentProvider
from photosai.services.razorpay import RazorpayClient, RazorpayError
from photosai.services.reconcile import Reconciler
from photosai.services.training import TrainingRequest, TrainingService
from photosai.services.users import UsersService
from photosai.utils.logging import bind_request, clear_request, get_logger
from photosai.web import schemas


logger = get_logger('web')

S = TypeVar('S', bound=BaseModel)

ERROR_STATUS: Dict[Type[ServiceError], int] = {
    ValidationFailed: 411,
    UserExists: 411,
    InvalidCredentials: 411,
    InsufficientCredits: 411,
    ModelNotReady: 411,
    NotFound: 404,
    InvalidPlan: 400,
    InvalidPaymentMethod: 400,
    NoPendingTransaction: 409,
}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _model_dict(model: TrainingModel) -> Dict[str, Any]:
    return {
        'id': model.id,
        'name': model.name,
        'type': model.type,
        'age': model.age,
        'ethnicity': model.ethnicity,
        'eyeColor': model.eye_color,
        'bald': model.bald,
        'trainingStatus': model.training_status,
        'thumbnail': model.thumbnail,
        'tensorPath': model.tensor_path,
        'open': model.open,
        'createdAt': _iso(model.created_at),
        'updatedAt': _iso(model.updated_at),
    }


def _image_dict(image: OutputImage) -> Dict[str, Any]:
    return {
        'id': image.id,
        'modelId': image.model_id,
        'prompt': image.prompt,
        'imageUrl': image.image_url,
        'status': image.status,
        'createdAt': _iso(image.created_at),
    }


def _pack_dict(pack: Pack) -> Dict[str, Any]:
    return {
        'id': pack.id,
        'name': pack.name,
        'description': pack.description,
        'imageUrl1': pack.image_url1,
        'imageUrl2': pack.image_url2,
    }


def _subscription_dict(subscription: Subscription) -> Dict[str, Any]:
    return {
        'id': subscription.id,
        'plan': subscription.plan,
        'paymentId': subscription.payment_id,
        'orderId': subscription.order_id,
        'createdAt': _iso(subscription.created_at),
    }


def _transaction_dict(transaction: Transaction) -> Dict[str, Any]:
    return {
        'id': transaction.id,
        'amount': transaction.amount,
        'currency': transaction.currency,
        'paymentId': transaction.payment_id,
        'orderId': transaction.order_id,
        'plan': transaction.plan,
        'status': transaction.status,
        'createdAt': _iso(transaction.created_at),
        'updatedAt': _iso(transaction.updated_at),
    }


async def _parse(request: Request, schema: Type[S]) -> S:
    try:
        data = await request.json()
    except ValueError:
        data = None
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailed(
            'Inputs are Incorrect',
            details=exc.errors(include_url=False, include_context=False),
        ) from exc


def create_app(
    settings: Settings,
    *,
    sessionmaker: async_sessionmaker[AsyncSession] | None = None,
    razorpay: PaymentProvider | None = None,
    fal: InferenceProvider | None = None,
) -> FastAPI:
    app = FastAPI(title='PhotosAI')
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list(),
        allow_methods=['*'],
        allow_headers=['*'],
    )

    owns_fal = fal is None
    app.state.sessionmaker = sessionmaker or create_sessionmaker(settings)
    app.state.razorpay = razorpay or RazorpayClient(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        base_url=settings.razorpay_base_url,
    )
    app.state.fal = fal or FalClient(settings)
    app.state.settlement = SettlementService(app.state.sessionmaker, app.state.razorpay, settings)
    app.state.training = TrainingService(app.state.sessionmaker, app.state.fal, settings)
    app.state.generation = GenerationService(app.state.sessionmaker, app.state.fal, settings)
    app.state.reconciler = Reconciler(
        app.state.sessionmaker,
        app.state.razorpay,
        app.state.fal,
        app.state.settlement,
        app.state.training,
        settings,
    )
    app.state.reconcile_task = None

    @app.middleware('http')
    async def request_context(request: Request, call_next):
        request_id = bind_request(
            request.headers.get('x-request-id'),
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        finally:
            clear_request()
        response.headers['X-Request-ID'] = request_id
        return response

    @app.on_event('startup')
    async def startup() -> None:
        if settings.reconcile_enabled:
            app.state.reconcile_task = asyncio.create_task(app.state.reconciler.run_forever())

    @app.on_event('shutdown')
    async def shutdown() -> None:
        task = app.state.reconcile_task
        if task:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if owns_fal:
            await app.state.fal.close()

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        status_code = 400
        for error_type, code in ERROR_STATUS.items():
            if isinstance(exc, error_type):
                status_code = code
                break
        body: Dict[str, Any] = {'message': str(exc), 'error': exc.code}
        if isinstance(exc, ValidationFailed) and exc.details:
            body['details'] = jsonable_encoder(exc.details)
        return JSONResponse(body, status_code=status_code)

    @app.exception_handler(RazorpayError)
    async def razorpay_error_handler(request: Request, exc: RazorpayError):
        logger.error('razorpay_error', path=request.url.path, status_code=exc.status_code, error=str(exc))
        return JSONResponse(
            {'message': 'Payment provider error', 'error': 'payment_provider_failed', 'details': str(exc)},
            status_code=502,
        )

    @app.exception_handler(FalError)
    async def fal_error_handler(request: Request, exc: FalError):
        logger.error('fal_error', path=request.url.path, status_code=exc.status_code, error=str(exc))
        return JSONResponse(
            {'message': 'Image provider error', 'error': 'inference_provider_failed', 'details': str(exc)},
            status_code=502,
        )

    def _user_id(request: Request) -> str | None:
        token = bearer_token(request.headers.get('authorization'))
        if not token:
            return None
        return decode_token(token, settings.jwt_secret)

    def _unauthorized() -> JSONResponse:
        return JSONResponse({'message': 'Invalid token'}, status_code=401)

    @app.get('/health')
    async def health():
        return {'ok': True}

    @app.post('/signup')
    async def signup(request: Request):
        body = await _parse(request, schemas.Signup)
        async with app.state.sessionmaker() as session:
            user = await UsersService(session).signup(body.email, body.password, body.name)
            await session.commit()
        logger.info('user_signed_up', user_id=user.id)
        return {
            'token': issue_token(user.id, settings.jwt_secret),
            'user': {'id': user.id, 'email': user.email, 'name': user.name},
        }

    @app.post('/signin')
    async def signin(request: Request):
        body = await _parse(request, schemas.Signin)
        async with app.state.sessionmaker() as session:
            user = await UsersService(session).signin(body.email, body.password)
        return {
            'token': issue_token(user.id, settings.jwt_secret),
            'user': {'id': user.id, 'email': user.email, 'name': user.name},
        }

    @app.post('/ai/training')
    async def train_model(request: Request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        body = await _parse(request, schemas.TrainModel)
        model = await app.state.training.submit(
            user_id,
            TrainingRequest(
                name=body.name,
                type=body.type,
                age=body.age,
                ethnicity=body.ethnicity,
                eye_color=body.eye_color,
                bald=body.bald,
                zip_url=body.zip_url,
            ),
        )
        return {'modelId': model.id}

    @app.post('/ai/generate')
    async def generate_image(request: Request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        body = await _parse(request, schemas.GenerateImage)
        image = await app.state.generation.generate(user_id, body.model_id, body.prompt)
        return {'imageId': image.id}

    @app.post('/pack/generate')
    async def generate_pack(request: Request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        body = await _parse(request, schemas.GenerateImageFromPack)
        images = await app.state.generation.generate_pack(user_id, body.model_id, body.pack_id)
        return {'images': [image.id for image in images]}

    @app.api_route('/pack/bulk', methods=['GET', 'POST'])
    async def list_packs():
        packs = await app.state.generation.list_packs()
        return {'packs': [_pack_dict(pack) for pack in packs]}

    @app.get('/image/bulk')
    async def list_images(request: Request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        ids = [x for x in request.query_params.getlist('ids') if x.strip()]
        try:
            limit = int(request.query_params.get('limit') or 100)
            offset = int(request.query_params.get('offset') or 0)
        except ValueError:
            raise ValidationFailed('limit and offset must be integers')
        images = await app.state.generation.list_images(
            user_id,
            ids=ids,
            limit=max(1, min(limit, 100)),
            offset=max(0, offset),
        )
        return {'images': [_image_dict(image) for image in images]}

    @app.post('/fal-ai/webhook/train')
    async def training_webhook(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse({'message': 'Invalid payload'}, status_code=400)
        if not isinstance(payload, dict):
            return JSONResponse({'message': 'Invalid payload'}, status_code=400)
        status = await app.state.training.handle_webhook(payload)
        return {'message': 'Webhook processed successfully', 'status': status}

    @app.post('/fal-ai/webhook/image')
    async def image_webhook(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse({'message': 'Invalid payload'}, status_code=400)
        if not isinstance(payload, dict):
            return JSONResponse({'message': 'Invalid payload'}, status_code=400)
        status = await app.state.generation.handle_webhook(payload)
        return {'message': 'Webhook received', 'status': status}

    @app.get('/models')
    async def list_models(request: Request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        models = await app.state.training.list_models(user_id)
        return {'models': [_model_dict(model) for model in models]}

    @app.get('/model/status/{model_id}')
    async def model_status(request: Request, model_id: str):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        try:
            model = await app.state.training.get_model(user_id, model_id)
        except NotFound:
            return JSONResponse({'success': False, 'message': 'Model not found'}, status_code=404)
        return {
            'success': True,
            'model': {
                'id': model.id,
                'name': model.name,
                'status': model.training_status,
                'thumbnail': model.thumbnail,
                'createdAt': _iso(model.created_at),
                'updatedAt': _iso(model.updated_at),
            },
        }

    @app.post('/payment/create')
    async def create_payment(request: Request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        body = await _parse(request, schemas.CreatePayment)
        return await app.state.settlement.create_order(user_id, body.plan, body.method)

    @app.post('/payment/razorpay/verify')
    async def verify_payment(request: Request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        body = await _parse(request, schemas.VerifyPayment)
        result = await app.state.settlement.verify_and_settle(
            user_id=user_id,
            payment_id=body.razorpay_payment_id,
            order_id=body.razorpay_order_id,
            signature=body.razorpay_signature,
            plan_key=body.plan,
        )
        if not result.verified:
            return JSONResponse({'message': 'Invalid payment signature'}, status_code=400)
        return {
            'success': True,
            'credits': result.credits,
            'subscription': _subscription_dict(result.subscription) if result.subscription else None,
        }

    @app.get('/payment/subscription')
    async def current_subscription(request: Request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        subscription = await app.state.settlement.current_subscription(user_id)
        if not subscription:
            return {'subscription': None}
        return {'subscription': {'plan': subscription.plan, 'createdAt': _iso(subscription.created_at)}}

    @app.get('/payment/credits')
    async def credits(request: Request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        amount, updated_at = await app.state.settlement.get_credits(user_id)
        return {'credits': amount, 'lastUpdated': _iso(updated_at)}

    @app.get('/payment/transactions')
    async def transactions(request: Request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthorized()
        rows = await app.state.settlement.list_transactions(user_id)
        return {'transactions': [_transaction_dict(row) for row in rows]}

    return app
