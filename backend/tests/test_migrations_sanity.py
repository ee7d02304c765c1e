from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect, text

from backend.app import models  # noqa: F401
from backend.app.db import Base


ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def _config(database_url=None) -> Config:
    config = Config(str(ALEMBIC_INI))
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)
    return config


def test_alembic_single_head():
    heads = ScriptDirectory.from_config(_config()).get_heads()
    assert len(heads) == 1


def test_upgrade_head_matches_models(tmp_path):
    database_url = f"sqlite:///{tmp_path / 'alembic.db'}"
    command.upgrade(_config(database_url), "head")

    engine = create_engine(database_url, future=True)
    try:
        inspector = inspect(engine)
        migrated = set(inspector.get_table_names()) - {"alembic_version"}
        assert migrated == set(Base.metadata.tables)
        for table in Base.metadata.sorted_tables:
            migrated_columns = {column["name"] for column in inspector.get_columns(table.name)}
            assert migrated_columns == {column.name for column in table.columns}, table.name
        with engine.connect() as conn:
            revision = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
    finally:
        engine.dispose()

    assert revision in ScriptDirectory.from_config(_config()).get_heads()


def test_upgrade_then_downgrade_is_clean(tmp_path):
    database_url = f"sqlite:///{tmp_path / 'roundtrip.db'}"
    command.upgrade(_config(database_url), "head")
    command.downgrade(_config(database_url), "base")

    engine = create_engine(database_url, future=True)
    try:
        assert set(inspect(engine).get_table_names()) <= {"alembic_version"}
    finally:
        engine.dispose()
