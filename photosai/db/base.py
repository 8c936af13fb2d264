from __future__ import annotations

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
JsonType = JSON().with_variant(JSONB(), 'postgresql')


class Base(DeclarativeBase):
    pass
