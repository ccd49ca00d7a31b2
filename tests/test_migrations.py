from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

ROOT = Path(__file__).resolve().parents[1]


def test_upgrade_head_creates_jobs_table(tmp_path: Path) -> None:
    database_url = f"sqlite+pysqlite:///{tmp_path / 'migrated.db'}"
    config = Config(str(ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT / "migrations"))
    config.set_main_option("sqlalchemy.url", database_url)

    command.upgrade(config, "head")

    inspector = inspect(create_engine(database_url))
    columns = {column["name"] for column in inspector.get_columns("jobs")}
    assert {
        "id",
        "type",
        "status",
        "payload_json",
        "attempts",
        "max_attempts",
        "created_at",
        "updated_at",
        "started_at",
        "finished_at",
        "error",
        "result_json",
    } <= columns
    indexes = {index["name"] for index in inspector.get_indexes("jobs")}
    assert "ix_jobs_type_status_created_at" in indexes
