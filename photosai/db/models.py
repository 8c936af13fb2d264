from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from photosai.db.base import Base, JsonType


JOB_PENDING = 'Pending'
JOB_GENERATED = 'Generated'
JOB_FAILED = 'Failed'
JOB_TERMINAL_STATUSES = (JOB_GENERATED, JOB_FAILED)

TX_PENDING = 'PENDING'
TX_SUCCESS = 'SUCCESS'
TX_FAILED = 'FAILED'


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    models: Mapped[list['TrainingModel']] = relationship(back_populates='user')


class UserCredit(Base):
    __tablename__ = 'user_credits'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey('users.id'), unique=True, index=True)
    amount: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class CreditHistory(Base):
    __tablename__ = 'credit_history'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey('users.id'), index=True)
    delta: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column(JsonType, default=dict)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Transaction(Base):
    __tablename__ = 'transactions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey('users.id'), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(8))
    payment_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    order_id: Mapped[str] = mapped_column(String(128), index=True)
    plan: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(16), default=TX_PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint('user_id', 'order_id', name='uq_transactions_user_order'),
        Index('ix_transactions_status_created', 'status', 'created_at'),
    )


class Subscription(Base):
    __tablename__ = 'subscriptions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey('users.id'), index=True)
    plan: Mapped[str] = mapped_column(String(32))
    payment_id: Mapped[str] = mapped_column(String(128))
    order_id: Mapped[str] = mapped_column(String(128), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TrainingModel(Base):
    __tablename__ = 'models'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey('users.id'), index=True)
    name: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(16))
    age: Mapped[int] = mapped_column(Integer)
    ethnicity: Mapped[str] = mapped_column(String(32))
    eye_color: Mapped[str] = mapped_column(String(16))
    bald: Mapped[bool] = mapped_column(Boolean, default=False)
    zip_url: Mapped[str] = mapped_column(Text)
    fal_ai_request_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    training_status: Mapped[str] = mapped_column(String(16), default=JOB_PENDING)
    tensor_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail: Mapped[str | None] = mapped_column(Text, nullable=True)
    open: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    user: Mapped['User'] = relationship(back_populates='models')


class OutputImage(Base):
    __tablename__ = 'output_images'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey('users.id'), index=True)
    model_id: Mapped[str] = mapped_column(ForeignKey('models.id'), index=True)
    prompt: Mapped[str] = mapped_column(Text)
    image_url: Mapped[str] = mapped_column(Text, default='')
    fal_ai_request_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default=JOB_PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Pack(Base):
    __tablename__ = 'packs'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    description: Mapped[str] = mapped_column(Text, default='')
    image_url1: Mapped[str] = mapped_column(Text, default='')
    image_url2: Mapped[str] = mapped_column(Text, default='')

    prompts: Mapped[list['PackPrompt']] = relationship(back_populates='pack', order_by='PackPrompt.position')


class PackPrompt(Base):
    __tablename__ = 'pack_prompts'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    pack_id: Mapped[str] = mapped_column(ForeignKey('packs.id'), index=True)
    prompt: Mapped[str] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, default=0)

    pack: Mapped['Pack'] = relationship(back_populates='prompts')
