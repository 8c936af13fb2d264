from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash, generate_password_hash

from photosai.db.models import User
from photosai.services.errors import InvalidCredentials, UserExists
from photosai.utils.time import utcnow


class UsersService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self.session.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def signup(self, email: str, password: str, name: str) -> User:
        email = email.strip().lower()
        if await self.get_by_email(email):
            raise UserExists('user already exists')
        user = User(
            email=email,
            password_hash=generate_password_hash(password),
            name=name.strip(),
            created_at=utcnow(),
        )
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise UserExists('user already exists') from exc
        return user

    async def signin(self, email: str, password: str) -> User:
        user = await self.get_by_email(email)
        if not user or not check_password_hash(user.password_hash, password):
            raise InvalidCredentials('invalid email or password')
        return user
