from __future__ import annotations

import argparse
import asyncio
import hashlib
import json
import sys
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import bcrypt
import sqlalchemy as sa
import structlog
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.schema import CreateTable

from db.engine import create_engine
from db.placeholder_data import PLACEHOLDER_DATA, InvoiceRecord, SeedData
from db.settings import SETTINGS


logger = structlog.get_logger()

PASSWORD_HASH_ROUNDS = 10

meta = sa.MetaData()

users = sa.Table(
    "users",
    meta,
    sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
    sa.Column("name", sa.String(255), nullable=False),
    sa.Column("email", sa.Text(), nullable=False, unique=True),
    sa.Column("password", sa.Text(), nullable=False),
)
customers = sa.Table(
    "customers",
    meta,
    sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
    sa.Column("name", sa.String(255), nullable=False),
    sa.Column("email", sa.String(255), nullable=False, unique=True),
    sa.Column("image_url", sa.String(255), nullable=False),
)
invoices = sa.Table(
    "invoices",
    meta,
    sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
    sa.Column(
        "customer_id",
        UUID(as_uuid=True),
        sa.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    ),
    sa.Column("amount", sa.Integer(), nullable=False),
    sa.Column("status", sa.String(255), nullable=False),
    sa.Column("date", sa.Date(), nullable=False),
)
revenue = sa.Table(
    "revenue",
    meta,
    sa.Column("month", sa.String(4), nullable=False, unique=True),
    sa.Column("revenue", sa.Integer(), nullable=False),
)


class SeedError(RuntimeError):
    """One or more entity branches failed; the seeding transaction was rolled back."""

    def __init__(self, failures: Sequence[tuple[str, BaseException]]) -> None:
        self.failures = list(failures)
        super().__init__("; ".join(f"{name}: {exc}" for name, exc in self.failures))


@dataclass
class SeedResult:
    # Rows written by this run, per table. Conflict-skipped rows are not counted.
    inserted: dict[str, int] = field(default_factory=dict)
    # Rows present in each table at commit.
    counts: dict[str, int] = field(default_factory=dict)


class SharedConnection:
    """
    A transactional connection handed to concurrently running entity branches.

    A single asyncpg connection cannot run two statements at once, so statements are
    serialized here while everything between round-trips (password hashing, row building)
    interleaves freely.
    """

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn
        self._lock = asyncio.Lock()

    async def execute(self, statement: Any, parameters: dict[str, Any] | None = None) -> sa.CursorResult:
        async with self._lock:
            return await self._conn.execute(statement, parameters)


def hash_password(password: str, rounds: int = PASSWORD_HASH_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _det_uuid(*parts: str) -> uuid.UUID:
    h = hashlib.sha256("||".join(parts).encode("utf-8")).hexdigest()
    return uuid.UUID(h[:32])


def invoice_id(position: int, invoice: InvoiceRecord) -> uuid.UUID:
    """Seed invoices have no id of their own; derive a stable one so reseeding skips them."""
    return _det_uuid(
        "invoice",
        str(position),
        str(invoice.customer_id),
        str(invoice.amount),
        invoice.status,
        invoice.date.isoformat(),
    )


async def _user_rows(data: SeedData) -> list[dict[str, Any]]:
    # Each password is hashed on its own worker thread; bcrypt is deliberately slow.
    hashed = await asyncio.gather(*(asyncio.to_thread(hash_password, u.password) for u in data.users))
    return [
        {**u.model_dump(exclude_none=True), "password": pw}
        for u, pw in zip(data.users, hashed, strict=True)
    ]


async def _customer_rows(data: SeedData) -> list[dict[str, Any]]:
    return [c.model_dump(exclude_none=True) for c in data.customers]


async def _invoice_rows(data: SeedData) -> list[dict[str, Any]]:
    return [{"id": invoice_id(i, inv), **inv.model_dump()} for i, inv in enumerate(data.invoices)]


async def _revenue_rows(data: SeedData) -> list[dict[str, Any]]:
    return [r.model_dump() for r in data.revenue]


@dataclass(frozen=True)
class Entity:
    name: str
    table: sa.Table
    build_rows: Callable[[SeedData], Awaitable[list[dict[str, Any]]]]


USERS = Entity("users", users, _user_rows)
CUSTOMERS = Entity("customers", customers, _customer_rows)
INVOICES = Entity("invoices", invoices, _invoice_rows)
REVENUE = Entity("revenue", revenue, _revenue_rows)

# Branches within a stage run concurrently; a stage starts only after the previous one joined.
# Invoices reference customers, so they get a stage of their own.
SEED_PLAN: list[list[Entity]] = [[USERS, CUSTOMERS, REVENUE], [INVOICES]]


async def ensure_extension(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.execute(sa.text('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"'))


async def ensure_table(tx: SharedConnection, entity: Entity) -> None:
    await tx.execute(CreateTable(entity.table, if_not_exists=True))


async def insert_rows(tx: SharedConnection, entity: Entity, rows: Sequence[dict[str, Any]]) -> int:
    """Insert rows one statement each, skipping any that clash on a primary key or unique column."""
    inserted = 0
    for row in rows:
        stmt = pg_insert(entity.table).values(**row).on_conflict_do_nothing()
        result = await tx.execute(stmt)
        inserted += max(result.rowcount, 0)
    return inserted


async def seed_entity(tx: SharedConnection, entity: Entity, data: SeedData) -> int:
    await ensure_table(tx, entity)
    rows = await entity.build_rows(data)
    inserted = await insert_rows(tx, entity, rows)
    logger.info("seed_entity_finished", entity=entity.name, rows=len(rows), inserted=inserted)
    return inserted


async def _run_stage(tx: SharedConnection, stage: Sequence[Entity], data: SeedData) -> dict[str, int]:
    results = await asyncio.gather(*(seed_entity(tx, e, data) for e in stage), return_exceptions=True)
    failures = [(e.name, r) for e, r in zip(stage, results) if isinstance(r, BaseException)]
    if failures:
        raise SeedError(failures) from failures[0][1]
    return {e.name: r for e, r in zip(stage, results)}


async def count_rows(tx: SharedConnection) -> dict[str, int]:
    counts = {}
    for table in meta.sorted_tables:
        q = sa.select(sa.func.count()).select_from(table)
        counts[table.name] = int((await tx.execute(q)).scalar_one())
    return counts


async def seed_all(engine: AsyncEngine, data: SeedData = PLACEHOLDER_DATA) -> SeedResult:
    """
    Ensure the extension and tables exist and insert the seed rows, all-or-nothing.

    The extension is created in its own short transaction; everything else shares one
    transaction that commits only if every entity branch succeeded.
    """
    logger.info(
        "seed_started",
        users=len(data.users),
        customers=len(data.customers),
        invoices=len(data.invoices),
        revenue=len(data.revenue),
    )
    await ensure_extension(engine)

    result = SeedResult()
    async with engine.begin() as conn:
        tx = SharedConnection(conn)
        for stage in SEED_PLAN:
            result.inserted.update(await _run_stage(tx, stage, data))
        result.counts = await count_rows(tx)

    logger.info("seed_committed", inserted=result.inserted, counts=result.counts)
    return result


async def _seed_url(database_url: str, ssl: str) -> SeedResult:
    engine = create_engine(database_url, ssl=ssl)
    try:
        return await seed_all(engine)
    finally:
        await engine.dispose()


def _configure_cli_logging() -> None:
    # stdout carries the JSON summary only.
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create the dashboard tables and insert the placeholder rows.")
    parser.add_argument("--database-url", default=SETTINGS.postgres_url)
    parser.add_argument("--ssl", default=SETTINGS.postgres_ssl, help="asyncpg ssl mode (disable, prefer, require, ...).")
    args = parser.parse_args(argv)
    _configure_cli_logging()
    try:
        result = asyncio.run(_seed_url(args.database_url, args.ssl))
    except Exception as e:
        logger.exception("seed_failed", error=str(e))
        raise SystemExit(1) from e

    print(json.dumps({"inserted": result.inserted, "counts": result.counts}, indent=2))


if __name__ == "__main__":
    main()
