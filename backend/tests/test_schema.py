"""Schema creation through init_db, with and without Alembic."""

import pytest
from sqlalchemy import create_engine, inspect

from criollo.db import init_db
from criollo.storage import SQLAlchemyStorage

FLOOR_TABLES = {
    "floor_tables",
    "orders",
    "order_lines",
    "invoices",
    "invoice_orders",
    "invoice_sequences",
    "reservations",
}


class TestInitDb:

    def test_create_all_fallback(self, temp_sqlite_url):
        engine = create_engine(temp_sqlite_url)
        try:
            init_db(engine, use_alembic=False)
            assert FLOOR_TABLES <= set(inspect(engine).get_table_names())
        finally:
            engine.dispose()

    def test_create_all_is_repeatable(self, temp_sqlite_url):
        engine = create_engine(temp_sqlite_url)
        try:
            init_db(engine, use_alembic=False)
            init_db(engine, use_alembic=False)
            assert FLOOR_TABLES <= set(inspect(engine).get_table_names())
        finally:
            engine.dispose()

    @pytest.mark.slow
    def test_alembic_upgrade_matches_models(self, temp_sqlite_url):
        engine = create_engine(temp_sqlite_url)
        try:
            init_db(engine, use_alembic=True)
            inspector = inspect(engine)
            names = set(inspector.get_table_names())
            assert FLOOR_TABLES <= names
            assert "alembic_version" in names
            indexes = {ix["name"] for ix in inspector.get_indexes("invoices")}
            assert "ix_invoices_number" in indexes
            columns = {c["name"] for c in inspector.get_columns("reservations")}
            assert "reminder_sent_at" in columns
        finally:
            engine.dispose()


class TestStorageSchema:

    def test_storage_creates_schema_on_open(self, temp_sqlite_url):
        storage = SQLAlchemyStorage(temp_sqlite_url)
        try:
            assert FLOOR_TABLES <= set(inspect(storage.engine).get_table_names())
        finally:
            storage.close()
