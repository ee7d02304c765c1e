from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.orm import sessionmaker

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def _alembic_config(database_url: str) -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


def _resolve_database_url(cli_url: str | None) -> str:
    database_url = cli_url or os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL")
    if database_url:
        return database_url
    ini_url = Config(str(ALEMBIC_INI)).get_main_option("sqlalchemy.url")
    if not ini_url:
        raise RuntimeError("No DATABASE_URL or sqlalchemy.url configured.")
    return ini_url


def _drop_postgres(url: URL) -> None:
    if not url.database:
        raise RuntimeError("Postgres URL is missing a database name.")
    admin_engine = create_engine(url.set(database="postgres"), future=True, isolation_level="AUTOCOMMIT")
    try:
        with admin_engine.connect() as conn:
            conn.execute(
                text(
                    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                    "WHERE datname = :db_name AND pid <> pg_backend_pid()"
                ),
                {"db_name": url.database},
            )
            conn.execute(text(f'DROP DATABASE IF EXISTS "{url.database}"'))
            conn.execute(text(f'CREATE DATABASE "{url.database}"'))
    finally:
        admin_engine.dispose()


def _drop_sqlite(url: URL) -> None:
    if url.database and url.database != ":memory:":
        Path(url.database).unlink(missing_ok=True)


def _seed(database_url: str) -> None:
    os.environ.setdefault("DATABASE_URL", database_url)
    from backend.app.seed.run import seed_demo_data

    engine = create_engine(database_url, future=True)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    try:
        seed_demo_data(session)
    finally:
        session.close()
        engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Drop the case database, migrate it to head and optionally seed it.")
    parser.add_argument("--url", help="Database URL; defaults to DATABASE_URL, then alembic.ini.")
    parser.add_argument("--yes", action="store_true", help="Confirm the destructive reset.")
    parser.add_argument("--seed", action="store_true", help="Seed demo staff accounts and cases.")
    args = parser.parse_args()

    if not args.yes:
        print("Refusing to reset database without --yes.")
        return 1

    database_url = _resolve_database_url(args.url)
    url = make_url(database_url)
    backend = url.get_backend_name()
    if backend.startswith("postgres"):
        _drop_postgres(url)
    elif backend.startswith("sqlite"):
        _drop_sqlite(url)
    else:
        print(f"Unsupported database backend: {backend}")
        return 1

    command.upgrade(_alembic_config(database_url), "head")
    if args.seed:
        _seed(database_url)

    print(f"Reset complete: {url.render_as_string(hide_password=True)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
