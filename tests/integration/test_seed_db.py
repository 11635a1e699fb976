from __future__ import annotations

import uuid

import bcrypt
import pytest
import sqlalchemy as sa


ALICE_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a1")


async def _scalar(engine, sql: str, **params):
    async with engine.connect() as conn:
        return (await conn.execute(sa.text(sql), params)).scalar_one()


async def _table_exists(engine, name: str) -> bool:
    return await _scalar(engine, "SELECT to_regclass(CAST(:name AS text)) IS NOT NULL", name=f"public.{name}")


@pytest.mark.asyncio
async def test_seed_all_creates_tables_and_placeholder_rows(engine):
    from db.seed import seed_all

    result = await seed_all(engine)

    expected = {"users": 1, "customers": 6, "invoices": 13, "revenue": 12}
    assert result.counts == expected
    assert result.inserted == expected
    for table in expected:
        assert await _table_exists(engine, table)


@pytest.mark.asyncio
async def test_seed_all_twice_is_idempotent(engine):
    from db.seed import seed_all

    first = await seed_all(engine)
    async with engine.connect() as conn:
        before = (await conn.execute(sa.text("SELECT id, customer_id, amount FROM invoices ORDER BY id"))).all()

    second = await seed_all(engine)
    async with engine.connect() as conn:
        after = (await conn.execute(sa.text("SELECT id, customer_id, amount FROM invoices ORDER BY id"))).all()

    assert second.counts == first.counts
    assert second.inserted == {"users": 0, "customers": 0, "invoices": 0, "revenue": 0}
    assert before == after


@pytest.mark.asyncio
async def test_every_invoice_references_a_customer(engine):
    from db.seed import seed_all

    await seed_all(engine)

    orphans = await _scalar(
        engine,
        "SELECT COUNT(1) FROM invoices i LEFT JOIN customers c ON c.id = i.customer_id WHERE c.id IS NULL",
    )
    assert orphans == 0


@pytest.mark.asyncio
async def test_persisted_password_is_hashed(engine):
    from db.placeholder_data import USERS
    from db.seed import seed_all

    await seed_all(engine)

    stored = await _scalar(engine, "SELECT password FROM users WHERE email = :email", email=USERS[0].email)
    assert stored != USERS[0].password
    assert bcrypt.checkpw(USERS[0].password.encode("utf-8"), stored.encode("utf-8"))


@pytest.mark.asyncio
async def test_seeded_user_lookup_by_id(engine):
    from db.placeholder_data import SeedData, UserRecord
    from db.seed import seed_all

    data = SeedData(users=[UserRecord(id=ALICE_ID, name="Alice", email="a@x.com", password="secret")])
    await seed_all(engine, data)

    async with engine.connect() as conn:
        row = (
            await conn.execute(sa.text("SELECT name, email, password FROM users WHERE id = :id"), {"id": ALICE_ID})
        ).one()
    assert row.name == "Alice"
    assert row.email == "a@x.com"
    assert row.password != "secret"


@pytest.mark.asyncio
async def test_duplicate_email_in_one_run_keeps_one_row(engine):
    from db.placeholder_data import CustomerRecord, SeedData, UserRecord
    from db.seed import seed_all

    data = SeedData(
        users=[
            UserRecord(name="Alice", email="a@x.com", password="secret"),
            UserRecord(name="Alice Again", email="a@x.com", password="other"),
        ],
        customers=[
            CustomerRecord(name="Acme", email="c@x.com", image_url="/customers/acme.png"),
            CustomerRecord(name="Acme Two", email="c@x.com", image_url="/customers/acme.png"),
        ],
    )
    result = await seed_all(engine, data)

    assert result.inserted["users"] == 1
    assert result.inserted["customers"] == 1
    assert await _scalar(engine, "SELECT COUNT(1) FROM users WHERE email = 'a@x.com'") == 1
    assert await _scalar(engine, "SELECT COUNT(1) FROM customers WHERE email = 'c@x.com'") == 1


@pytest.mark.asyncio
async def test_revenue_month_seeded_twice_keeps_one_row(engine):
    from db.placeholder_data import RevenueRecord, SeedData
    from db.seed import seed_all

    data = SeedData(revenue=[RevenueRecord(month="Jan", revenue=100)])
    await seed_all(engine, data)
    await seed_all(engine, data)

    assert await _scalar(engine, "SELECT COUNT(1) FROM revenue WHERE month = 'Jan'") == 1


@pytest.mark.asyncio
async def test_failed_insert_rolls_back_every_entity(engine):
    from db.placeholder_data import CustomerRecord, InvoiceRecord, RevenueRecord, SeedData, UserRecord
    from db.seed import SeedError, seed_all

    await seed_all(engine)

    bad = SeedData(
        users=[UserRecord(name="Bob", email="bob@x.com", password="pw")],
        customers=[CustomerRecord(name="Bob Co", email="bob@co.com", image_url="/customers/bob.png")],
        revenue=[RevenueRecord(month="Q1", revenue=1)],
        # References a customer that does not exist.
        invoices=[
            InvoiceRecord(
                customer_id="11111111-1111-1111-1111-111111111111",
                amount=10,
                status="paid",
                date="2024-01-01",
            )
        ],
    )
    with pytest.raises(SeedError) as exc_info:
        await seed_all(engine, bad)

    assert [name for name, _ in exc_info.value.failures] == ["invoices"]
    assert await _scalar(engine, "SELECT COUNT(1) FROM users WHERE email = 'bob@x.com'") == 0
    assert await _scalar(engine, "SELECT COUNT(1) FROM customers WHERE email = 'bob@co.com'") == 0
    assert await _scalar(engine, "SELECT COUNT(1) FROM revenue WHERE month = 'Q1'") == 0
    assert await _scalar(engine, "SELECT COUNT(1) FROM invoices") == 13


@pytest.mark.asyncio
async def test_failed_first_run_leaves_no_tables(engine):
    from db.placeholder_data import RevenueRecord, SeedData, UserRecord
    from db.seed import SeedError, seed_all

    # Out of range for INT.
    bad = SeedData(
        users=[UserRecord(name="Bob", email="bob@x.com", password="pw")],
        revenue=[RevenueRecord(month="Jan", revenue=2**40)],
    )
    with pytest.raises(SeedError):
        await seed_all(engine, bad)

    for table in ("users", "customers", "invoices", "revenue"):
        assert not await _table_exists(engine, table)


@pytest.mark.asyncio
async def test_deleting_a_customer_cascades_to_invoices(engine):
    from db.placeholder_data import CUSTOMERS
    from db.seed import seed_all

    await seed_all(engine)
    customer_id = CUSTOMERS[0].id
    assert await _scalar(engine, "SELECT COUNT(1) FROM invoices WHERE customer_id = :c", c=customer_id) == 2

    async with engine.begin() as conn:
        await conn.execute(sa.text("DELETE FROM customers WHERE id = :c"), {"c": customer_id})

    assert await _scalar(engine, "SELECT COUNT(1) FROM invoices WHERE customer_id = :c", c=customer_id) == 0
