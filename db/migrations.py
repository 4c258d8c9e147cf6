"""Schema versioning for the watch history store

The schema version lives in ``sync_meta`` under ``schema_version``. On startup
every migration step whose version is above the stored one is applied in
ascending order. Steps only create what is missing, so re-running one against
a partially migrated database is harmless.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

SCHEMA_VERSION_KEY = "schema_version"


@dataclass(frozen=True)
class Migration:
    """One ordered schema step"""
    version: int
    description: str
    upgrade: Callable[[Operations], None]


def _has_table(op: Operations, table_name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(table_name)


def _create_missing_indexes(op: Operations, table_name: str, indexes: List[tuple]) -> None:
    """Create each (name, columns, unique) index that the table does not have yet"""
    existing = {ix["name"] for ix in sa.inspect(op.get_bind()).get_indexes(table_name)}
    for name, columns, unique in indexes:
        if name not in existing:
            op.create_index(name, table_name, columns, unique=unique)


def _ensure_sync_meta(op: Operations) -> None:
    if not _has_table(op, "sync_meta"):
        op.create_table(
            "sync_meta",
            sa.Column("key", sa.String(100), primary_key=True),
            sa.Column("value", sa.Text(), nullable=True),
        )


def _upgrade_v1(op: Operations) -> None:
    """watch_history and sync_meta"""
    _ensure_sync_meta(op)

    if not _has_table(op, "watch_history"):
        op.create_table(
            "watch_history",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("video_id", sa.String(32), nullable=False),
            sa.Column("title", sa.Text(), nullable=False),
            sa.Column("channel_name", sa.Text(), nullable=True),
            sa.Column("channel_url", sa.Text(), nullable=True),
            sa.Column("watched_at", sa.String(40), nullable=False),
            sa.Column("thumbnail_url", sa.Text(), nullable=True),
            sa.Column("video_url", sa.Text(), nullable=False),
            sa.Column("is_ad", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("source", sa.String(20), nullable=False),
            sa.Column("created_at", sa.String(40), nullable=False),
            sa.Column("updated_at", sa.String(40), nullable=False),
            sa.UniqueConstraint("video_id", "watched_at", name="unique_video_watched"),
            sa.CheckConstraint(
                "source IN ('takeout', 'playwright')", name="ck_watch_history_source"
            ),
        )

    _create_missing_indexes(op, "watch_history", [
        ("idx_watch_history_watched_at", ["watched_at"], False),
        ("idx_watch_history_video_id", ["video_id"], False),
        ("idx_watch_history_title", ["title"], False),
        ("idx_watch_history_channel_name", ["channel_name"], False),
    ])


def _upgrade_v2(op: Operations) -> None:
    """notes, tags and video_tags"""
    if not _has_table(op, "notes"):
        op.create_table(
            "notes",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "watch_history_id",
                sa.Integer(),
                sa.ForeignKey("watch_history.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("created_at", sa.String(40), nullable=False),
            sa.Column("updated_at", sa.String(40), nullable=False),
        )
    _create_missing_indexes(op, "notes", [
        ("idx_notes_watch_history_id", ["watch_history_id"], False),
    ])

    if not _has_table(op, "tags"):
        op.create_table(
            "tags",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("name", sa.Text(), nullable=False, unique=True),
            sa.Column("color", sa.String(32), nullable=True),
            sa.Column("created_at", sa.String(40), nullable=False),
        )
    _create_missing_indexes(op, "tags", [
        ("idx_tags_name", ["name"], False),
    ])

    if not _has_table(op, "video_tags"):
        op.create_table(
            "video_tags",
            sa.Column(
                "watch_history_id",
                sa.Integer(),
                sa.ForeignKey("watch_history.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "tag_id",
                sa.Integer(),
                sa.ForeignKey("tags.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("created_at", sa.String(40), nullable=False),
            sa.PrimaryKeyConstraint("watch_history_id", "tag_id", name="pk_video_tags"),
        )
    _create_missing_indexes(op, "video_tags", [
        ("idx_video_tags_watch_history_id", ["watch_history_id"], False),
        ("idx_video_tags_tag_id", ["tag_id"], False),
    ])


MIGRATIONS: List[Migration] = [
    Migration(1, "watch history and sync metadata", _upgrade_v1),
    Migration(2, "notes, tags and video tags", _upgrade_v2),
]

TARGET_SCHEMA_VERSION = MIGRATIONS[-1].version


def _read_version(connection: Connection) -> int:
    value = connection.execute(
        sa.text("SELECT value FROM sync_meta WHERE key = :key"),
        {"key": SCHEMA_VERSION_KEY},
    ).scalar()
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid schema_version value in sync_meta: {value!r}, treating as 0")
        return 0


def _write_version(connection: Connection, version: int) -> None:
    connection.execute(
        sa.text(
            "INSERT INTO sync_meta (key, value) VALUES (:key, :value) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value"
        ),
        {"key": SCHEMA_VERSION_KEY, "value": str(version)},
    )


def apply_migrations(connection: Connection, migrations: List[Migration] = MIGRATIONS) -> int:
    """Apply pending migrations on a synchronous connection, returning the resulting version"""
    op = Operations(MigrationContext.configure(connection))

    _ensure_sync_meta(op)
    current = _read_version(connection)
    target = migrations[-1].version if migrations else 0

    if current > target:
        logger.warning(
            f"Stored schema version {current} is newer than this code's version {target}; "
            "leaving schema untouched"
        )
        return current

    for migration in sorted(migrations, key=lambda m: m.version):
        if migration.version <= current:
            continue
        logger.info(f"Applying schema migration v{migration.version}: {migration.description}")
        migration.upgrade(op)
        _write_version(connection, migration.version)
        current = migration.version

    return current


async def run_migrations(engine: AsyncEngine) -> int:
    """Bring the schema up to date in a single transaction"""
    async with engine.begin() as conn:
        version = await conn.run_sync(apply_migrations)
    logger.info(f"Schema at version {version}")
    return version
