from __future__ import annotations

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool


ASYNC_PREFIX = "postgresql+asyncpg://"
_KNOWN_PREFIXES = (
    "postgres://",
    "postgresql://",
    "postgresql+psycopg://",
    "postgresql+psycopg2://",
    ASYNC_PREFIX,
)


def normalize_database_url(url: str) -> tuple[str, str | None]:
    """
    Force the asyncpg driver onto a Postgres URL.

    Hosted providers hand out `postgres://...?sslmode=require`; asyncpg rejects `sslmode`
    as a connect kwarg, so it is stripped from the query and returned separately.
    """
    for prefix in _KNOWN_PREFIXES:
        if url.startswith(prefix):
            url = ASYNC_PREFIX + url[len(prefix) :]
            break
    else:
        raise ValueError("unsupported database url scheme")

    parsed = make_url(url)
    sslmode = parsed.query.get("sslmode")
    if isinstance(sslmode, tuple):
        sslmode = sslmode[-1]
    if sslmode is not None:
        parsed = parsed.difference_update_query(["sslmode"])
    return parsed.render_as_string(hide_password=False), sslmode


def create_engine(database_url: str, ssl: str = "require") -> AsyncEngine:
    url, sslmode = normalize_database_url(database_url)
    # NullPool avoids cross-event-loop pooled connections during tests and keeps behavior simple.
    return create_async_engine(
        url,
        poolclass=NullPool,
        connect_args={"ssl": sslmode or ssl},
    )
