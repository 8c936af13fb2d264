"""initial schema

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table(
        'user_credits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('user_id', name='uq_user_credits_user_id'),
    )
    op.create_index('ix_user_credits_user_id', 'user_credits', ['user_id'])

    op.create_table(
        'credit_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=64), nullable=False),
        sa.Column('meta', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('idempotency_key', name='uq_credit_history_idempotency_key'),
    )
    op.create_index('ix_credit_history_user_id', 'credit_history', ['user_id'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('payment_id', sa.String(length=128), nullable=True),
        sa.Column('order_id', sa.String(length=128), nullable=False),
        sa.Column('plan', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('user_id', 'order_id', name='uq_transactions_user_order'),
    )
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'])
    op.create_index('ix_transactions_order_id', 'transactions', ['order_id'])
    op.create_index('ix_transactions_status_created', 'transactions', ['status', 'created_at'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('plan', sa.String(length=32), nullable=False),
        sa.Column('payment_id', sa.String(length=128), nullable=False),
        sa.Column('order_id', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])
    op.create_index('ix_subscriptions_order_id', 'subscriptions', ['order_id'])

    op.create_table(
        'models',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('age', sa.Integer(), nullable=False),
        sa.Column('ethnicity', sa.String(length=32), nullable=False),
        sa.Column('eye_color', sa.String(length=16), nullable=False),
        sa.Column('bald', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('zip_url', sa.Text(), nullable=False),
        sa.Column('fal_ai_request_id', sa.String(length=128), nullable=False),
        sa.Column('training_status', sa.String(length=16), nullable=False, server_default=sa.text("'Pending'")),
        sa.Column('tensor_path', sa.Text(), nullable=True),
        sa.Column('thumbnail', sa.Text(), nullable=True),
        sa.Column('open', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('fal_ai_request_id', name='uq_models_fal_ai_request_id'),
    )
    op.create_index('ix_models_user_id', 'models', ['user_id'])
    op.create_index('ix_models_fal_ai_request_id', 'models', ['fal_ai_request_id'])

    op.create_table(
        'output_images',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('model_id', sa.String(length=36), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('image_url', sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column('fal_ai_request_id', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default=sa.text("'Pending'")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['model_id'], ['models.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('fal_ai_request_id', name='uq_output_images_fal_ai_request_id'),
    )
    op.create_index('ix_output_images_user_id', 'output_images', ['user_id'])
    op.create_index('ix_output_images_model_id', 'output_images', ['model_id'])
    op.create_index('ix_output_images_fal_ai_request_id', 'output_images', ['fal_ai_request_id'])

    op.create_table(
        'packs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column('image_url1', sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column('image_url2', sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.UniqueConstraint('name', name='uq_packs_name'),
    )

    op.create_table(
        'pack_prompts',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('pack_id', sa.String(length=36), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.ForeignKeyConstraint(['pack_id'], ['packs.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_pack_prompts_pack_id', 'pack_prompts', ['pack_id'])


def downgrade() -> None:
    op.drop_index('ix_pack_prompts_pack_id', table_name='pack_prompts')
    op.drop_table('pack_prompts')
    op.drop_table('packs')
    op.drop_index('ix_output_images_fal_ai_request_id', table_name='output_images')
    op.drop_index('ix_output_images_model_id', table_name='output_images')
    op.drop_index('ix_output_images_user_id', table_name='output_images')
    op.drop_table('output_images')
    op.drop_index('ix_models_fal_ai_request_id', table_name='models')
    op.drop_index('ix_models_user_id', table_name='models')
    op.drop_table('models')
    op.drop_index('ix_subscriptions_order_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_user_id', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_index('ix_transactions_status_created', table_name='transactions')
    op.drop_index('ix_transactions_order_id', table_name='transactions')
    op.drop_index('ix_transactions_user_id', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('ix_credit_history_user_id', table_name='credit_history')
    op.drop_table('credit_history')
    op.drop_index('ix_user_credits_user_id', table_name='user_credits')
    op.drop_table('user_credits')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
