from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', populate_by_name=True)

    # Database
    database_url: str = Field(..., alias='DATABASE_URL')
    db_retry_attempts: int = Field(3, alias='DB_RETRY_ATTEMPTS')
    db_retry_base_delay: float = Field(1.0, alias='DB_RETRY_BASE_DELAY')

    # Auth
    jwt_secret: str = Field(..., alias='JWT_SECRET')

    # Razorpay
    razorpay_key_id: str = Field('', alias='RAZORPAY_KEY_ID')
    razorpay_key_secret: str = Field('', alias='RAZORPAY_KEY_SECRET')
    razorpay_currency: str = Field('INR', alias='RAZORPAY_CURRENCY')
    razorpay_base_url: str = Field('https://api.razorpay.com/v1', alias='RAZORPAY_BASE_URL')
    checkout_name: str = Field('PhotosAI', alias='CHECKOUT_NAME')

    # fal.ai
    fal_key: str = Field('', alias='FAL_KEY')
    fal_webhook_base_url: str = Field('', alias='FAL_WEBHOOK_BASE_URL')
    fal_training_app: str = Field('fal-ai/flux-lora-fast-training', alias='FAL_TRAINING_APP')
    fal_inference_app: str = Field('fal-ai/flux-lora', alias='FAL_INFERENCE_APP')
    preview_prompt: str = Field(
        'Generate a head shot for this user in front of a white background',
        alias='PREVIEW_PROMPT',
    )

    # Credits
    image_gen_credits: int = Field(1, alias='IMAGE_GEN_CREDITS')
    train_model_credits: int = Field(20, alias='TRAIN_MODEL_CREDITS')
    pack_submit_concurrency: int = Field(8, alias='PACK_SUBMIT_CONCURRENCY')

    # Reconciliation
    reconcile_enabled: bool = Field(False, alias='RECONCILE_ENABLED')
    reconcile_interval_seconds: int = Field(300, alias='RECONCILE_INTERVAL_SECONDS')
    reconcile_pending_after_seconds: int = Field(900, alias='RECONCILE_PENDING_AFTER_SECONDS')
    reconcile_expire_after_seconds: int = Field(86400, alias='RECONCILE_EXPIRE_AFTER_SECONDS')

    # Web
    web_host: str = Field('127.0.0.1', alias='WEB_HOST')
    web_port: int = Field(3000, alias='WEB_PORT')
    cors_origins: str = Field('*', alias='CORS_ORIGINS')

    # Logging
    log_level: str = Field('INFO', alias='LOG_LEVEL')

    def cors_origin_list(self) -> List[str]:
        return [x.strip() for x in self.cors_origins.split(',') if x.strip()]

    def fal_webhook_url(self, kind: str) -> str:
        base = self.fal_webhook_base_url.strip().rstrip('/')
        if not base:
            return ''
        return f'{base}/fal-ai/webhook/{kind}'


@lru_cache

def get_settings() -> Settings:
    return Settings()
