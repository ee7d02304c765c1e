import os
import sys
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from dotenv import load_dotenv
from sqlalchemy import create_engine, inspect, text

load_dotenv()

REQUIRED_TABLES = (
    "users",
    "cases",
    "case_participants",
    "case_collections",
    "case_timeline",
    "case_time_nodes",
    "case_hearings",
    "case_change_logs",
)


def main() -> int:
    database_url = os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL")
    if not database_url:
        print("DATABASE_URL is not set.")
        return 1

    script = ScriptDirectory.from_config(Config(str(Path(__file__).resolve().parent / "alembic.ini")))
    engine = create_engine(database_url, future=True)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in tables]
        revision = None
        if "alembic_version" in tables:
            with engine.connect() as conn:
                revision = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
        has_version_column = "cases" in tables and any(
            column["name"] == "version" for column in inspector.get_columns("cases")
        )
    finally:
        engine.dispose()

    print(f"alembic heads: {script.get_heads()}  db revision: {revision}")
    for name in REQUIRED_TABLES:
        print(f"{name} exists: {name not in missing}")
    print(f"cases.version column exists: {has_version_column}")
    return 0 if not missing and has_version_column and revision in script.get_heads() else 1


if __name__ == "__main__":
    sys.exit(main())
