"""
The initial migration must create the same tables and columns as the models.
"""

import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from fulfillment_service.app.models import FulfillmentServiceBase

MIGRATION_PATH = (
    Path(__file__).resolve().parents[3]
    / "database"
    / "alembic"
    / "versions"
    / "001_initial_migration.py"
)


@pytest.fixture
def migration():
    spec = importlib.util.spec_from_file_location("initial_migration", MIGRATION_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def connection():
    engine = create_engine("sqlite://")
    with engine.begin() as conn:
        yield conn
    engine.dispose()


def test_upgrade_matches_models(migration, connection):
    with Operations.context(MigrationContext.configure(connection)):
        migration.upgrade()

    inspector = inspect(connection)
    assert set(inspector.get_table_names()) == set(FulfillmentServiceBase.metadata.tables)
    for name, table in FulfillmentServiceBase.metadata.tables.items():
        migrated = {column["name"] for column in inspector.get_columns(name)}
        assert migrated == set(table.columns.keys()), name


def test_downgrade_drops_everything(migration, connection):
    with Operations.context(MigrationContext.configure(connection)):
        migration.upgrade()
        migration.downgrade()

    assert inspect(connection).get_table_names() == []
