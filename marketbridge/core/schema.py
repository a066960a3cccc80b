"""Listings table setup and the single-image -> multi-image migration.

Each step checks whether its effect is already in place before applying it.
When a DDL statement fails anyway, the database is inspected again on a fresh
connection: if the effect is there now, another process won the race and the
failure is ignored. Anything else is a :class:`MigrationError`.

Check-then-apply still leaves a narrow window between two processes starting
at once; that window is what the re-inspection covers.
"""
import enum
import json
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    inspect,
    text,
)
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from marketbridge.core.database import Database
from marketbridge.core.exceptions import MigrationError

logger = logging.getLogger(__name__)

LISTINGS_TABLE = "listings"
LEGACY_IMAGE_COLUMN = "image_file_name"
IMAGE_LIST_COLUMN = "image_file_names"


class SchemaState(str, enum.Enum):
    ABSENT = "absent"
    MIGRATING = "migrating"
    PRESENT = "present"


def _legacy_listings_table() -> Table:
    # the table as it looked before listings could hold several images
    return Table(
        LISTINGS_TABLE,
        MetaData(),
        Column("id", Integer, primary_key=True, index=True),
        Column("title", String(255), nullable=False),
        Column("category", String(255), nullable=False),
        Column("condition", String(255), nullable=False),
        Column("size", String(255), nullable=False),
        Column("price", Numeric(10, 2), nullable=False),
        Column("description", Text, nullable=False),
        Column(LEGACY_IMAGE_COLUMN, String(255), nullable=False),
        Column("created_at", DateTime, nullable=False),
        Column("updated_at", DateTime, nullable=False),
    )


def table_exists(conn: Connection, table_name: str = LISTINGS_TABLE) -> bool:
    return inspect(conn).has_table(table_name)


def column_exists(conn: Connection, column_name: str, table_name: str = LISTINGS_TABLE) -> bool:
    columns = inspect(conn).get_columns(table_name)
    return any(c["name"] == column_name for c in columns)


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    is_applied: Callable[[Connection], bool]
    apply: Callable[[Connection], None]


def _create_listings_table(conn: Connection) -> None:
    _legacy_listings_table().create(conn)


def _add_image_list_column(conn: Connection) -> None:
    conn.execute(text(f"ALTER TABLE {LISTINGS_TABLE} ADD COLUMN {IMAGE_LIST_COLUMN} TEXT"))


def _has_unfilled_rows(conn: Connection) -> bool:
    row = conn.execute(
        text(f"SELECT 1 FROM {LISTINGS_TABLE} WHERE {IMAGE_LIST_COLUMN} IS NULL LIMIT 1")
    ).first()
    return row is not None


def _backfill_image_list(conn: Connection) -> None:
    rows = conn.execute(
        text(
            f"SELECT id, {LEGACY_IMAGE_COLUMN} FROM {LISTINGS_TABLE} "
            f"WHERE {IMAGE_LIST_COLUMN} IS NULL"
        )
    ).all()
    for listing_id, legacy_name in rows:
        conn.execute(
            text(
                f"UPDATE {LISTINGS_TABLE} SET {IMAGE_LIST_COLUMN} = :names "
                f"WHERE id = :id AND {IMAGE_LIST_COLUMN} IS NULL"
            ),
            {"names": json.dumps([legacy_name]), "id": listing_id},
        )
    logger.info("Backfilled %s on %d listing(s)", IMAGE_LIST_COLUMN, len(rows))


MIGRATIONS: List[Migration] = [
    Migration(
        version=1,
        name="create_listings_table",
        is_applied=table_exists,
        apply=_create_listings_table,
    ),
    Migration(
        version=2,
        name="add_image_file_names_column",
        is_applied=lambda conn: column_exists(conn, IMAGE_LIST_COLUMN),
        apply=_add_image_list_column,
    ),
    Migration(
        version=3,
        name="backfill_image_file_names",
        is_applied=lambda conn: not _has_unfilled_rows(conn),
        apply=_backfill_image_list,
    ),
]


class SchemaManager:
    def __init__(self, database: Database, migrations: Optional[List[Migration]] = None) -> None:
        self.database = database
        self.migrations = migrations if migrations is not None else MIGRATIONS
        self.state = SchemaState.ABSENT
        self._lock = threading.Lock()

    def ensure_schema(self) -> None:
        with self._lock:
            if self.state is SchemaState.PRESENT:
                return
            self.state = SchemaState.MIGRATING
            try:
                for migration in self.migrations:
                    self._run(migration)
            except Exception:
                self.state = SchemaState.ABSENT
                raise
            self.state = SchemaState.PRESENT
            logger.info("Database schema is up to date")

    def _run(self, migration: Migration) -> None:
        engine = self.database.engine
        try:
            with engine.begin() as conn:
                if migration.is_applied(conn):
                    return
                migration.apply(conn)
            logger.info("Applied migration %03d %s", migration.version, migration.name)
        except SQLAlchemyError as exc:
            # a concurrent migrator may have applied the same step first
            if self._applied_elsewhere(migration):
                logger.info(
                    "Migration %03d %s already applied by another process",
                    migration.version,
                    migration.name,
                )
                return
            raise MigrationError(
                f"Migration {migration.version:03d} {migration.name} failed: {exc}"
            ) from exc

    def _applied_elsewhere(self, migration: Migration) -> bool:
        try:
            with self.database.engine.connect() as conn:
                return migration.is_applied(conn)
        except SQLAlchemyError:
            logger.exception("Could not re-inspect schema after failed migration")
            return False
