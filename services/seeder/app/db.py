from __future__ import annotations

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from db.engine import create_engine as create_db_engine
from services.seeder.app.settings import SeederSettings


def create_engine(settings: SeederSettings) -> AsyncEngine:
    return create_db_engine(settings.postgres_url, ssl=settings.postgres_ssl)


def get_engine(request: Request) -> AsyncEngine:
    # The engine belongs to the app instance; handlers receive it explicitly.
    return request.app.state.engine
