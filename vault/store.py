"""
vault/store.py -- SQLAlchemy-backed persistence for attributes and data consumers.

Uses SQLAlchemy Core (not ORM) so the dataclasses in vault/models.py remain the
authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. VaultStore is the repository; the _row_to_*
functions are the mappers. Route handlers never touch SQL directly.

Ownership: every attribute read or mutation takes the caller's user_id and puts
it in the WHERE clause next to the row id. A row owned by someone else is
indistinguishable from a missing row, and a concurrent request can never update
or delete a row it does not own between a check and a write.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = VaultStore()
    attr_id = store.create_attribute(Attribute(user_id=1, key="email", value="a@x.com"))
    store.update_attribute(attr_id, user_id=1, value="b@x.com")
    store.list_visible_consumers(user_id=1)
    store.close()
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, or_, select, true
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.db import make_engine, now_iso
from core.normalize import decode_where_used, encode_where_used
from vault.models import Attribute, DataConsumer

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_attributes = Table(
    "attributes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("key", String(255), nullable=False),
    Column("value", Text, nullable=False),
    Column("where_used", Text, nullable=False, server_default="[]"),  # JSON array of strings
    Column("file_path", String(512)),
    Column("file_name", String(255)),
    Column("file_type", String(30)),
    Column("file_size", Integer),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_consumers = Table(
    "data_consumers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("description", Text),
    Column("created_by", Integer, nullable=False),
    Column("is_admin_defined", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("is_private", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_ATTRIBUTE_FIELDS = {"key", "value", "where_used", "file_path", "file_name", "file_type", "file_size"}
_CONSUMER_FIELDS = {"name", "description", "is_admin_defined", "is_private"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _consumer_permission(actor_id: int, actor_is_admin: bool):
    """WHERE fragment restricting consumer mutations to the creator or an admin."""
    if actor_is_admin:
        return true()
    return _consumers.c.created_by == actor_id


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class VaultStore:
    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    def create_attribute(self, attribute: Attribute) -> int:
        """Insert a new attribute and return its assigned database ID."""
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _attributes.insert().values(
                    user_id=attribute.user_id,
                    key=attribute.key,
                    value=attribute.value,
                    where_used=encode_where_used(attribute.where_used),
                    file_path=attribute.file_path,
                    file_name=attribute.file_name,
                    file_type=attribute.file_type,
                    file_size=attribute.file_size,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_attribute(self, attribute_id: int, user_id: int) -> Optional[Attribute]:
        """Fetch one attribute owned by user_id. Returns None if missing or not owned."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _attributes.select().where((_attributes.c.id == attribute_id) & (_attributes.c.user_id == user_id))
            ).fetchone()
        return _row_to_attribute(row) if row is not None else None

    def list_attributes(self, user_id: int) -> list[Attribute]:
        """Return all attributes owned by user_id, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _attributes.select()
                .where(_attributes.c.user_id == user_id)
                .order_by(_attributes.c.created_at.desc(), _attributes.c.id.desc())
            ).fetchall()
        return [_row_to_attribute(r) for r in rows]

    def update_attribute(self, attribute_id: int, user_id: int, **fields) -> bool:
        """Update fields on an attribute owned by user_id.

        Accepts any subset of: key, value, where_used, file_path, file_name,
        file_type, file_size. where_used is normalized and serialized here.
        File fields that are not passed keep their stored values.

        Returns True if a row was updated, False if the attribute does not
        exist or belongs to another user.
        """
        unknown = set(fields) - _ATTRIBUTE_FIELDS
        if unknown:
            raise ValueError(f"Unknown attribute fields: {unknown!r}")
        if "where_used" in fields:
            fields["where_used"] = encode_where_used(fields["where_used"])
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _attributes.update()
                .where((_attributes.c.id == attribute_id) & (_attributes.c.user_id == user_id))
                .values(**fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_attribute(self, attribute_id: int, user_id: int) -> bool:
        """Delete an attribute owned by user_id. Returns False if missing or not owned."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _attributes.delete().where((_attributes.c.id == attribute_id) & (_attributes.c.user_id == user_id))
            )
            conn.commit()
        return result.rowcount > 0

    def delete_attributes_for_user(self, user_id: int) -> list[str]:
        """Delete every attribute owned by user_id.

        Returns the file paths those rows referenced so the caller can remove
        the files once the delete has committed.
        """
        with self.engine.connect() as conn:
            paths = conn.execute(
                select(_attributes.c.file_path).where(
                    (_attributes.c.user_id == user_id) & (_attributes.c.file_path.is_not(None))
                )
            ).scalars().all()
            conn.execute(_attributes.delete().where(_attributes.c.user_id == user_id))
            conn.commit()
        return list(paths)

    # ------------------------------------------------------------------
    # Data consumers
    # ------------------------------------------------------------------

    def create_consumer(self, consumer: DataConsumer) -> int:
        """Insert a data consumer and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the name is already taken.
        """
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _consumers.insert().values(
                    name=consumer.name,
                    description=consumer.description,
                    created_by=consumer.created_by,
                    is_admin_defined=1 if consumer.is_admin_defined else 0,
                    is_private=1 if consumer.is_private else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_consumer(self, consumer_id: int) -> Optional[DataConsumer]:
        """Fetch a data consumer by ID regardless of visibility."""
        with self.engine.connect() as conn:
            row = conn.execute(_consumers.select().where(_consumers.c.id == consumer_id)).fetchone()
        return _row_to_consumer(row) if row is not None else None

    def get_consumer_by_name(self, name: str) -> Optional[DataConsumer]:
        with self.engine.connect() as conn:
            row = conn.execute(_consumers.select().where(_consumers.c.name == name)).fetchone()
        return _row_to_consumer(row) if row is not None else None

    def get_visible_consumer(self, consumer_id: int, user_id: int) -> Optional[DataConsumer]:
        """Fetch a consumer if user_id may read it (creator, or admin-defined)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _consumers.select().where(
                    (_consumers.c.id == consumer_id)
                    & or_(_consumers.c.is_admin_defined == 1, _consumers.c.created_by == user_id)
                )
            ).fetchone()
        return _row_to_consumer(row) if row is not None else None

    def list_visible_consumers(self, user_id: int, search: Optional[str] = None) -> list[DataConsumer]:
        """Return consumers visible to user_id, ordered by name.

        search, when given, is a case-insensitive substring match on name.
        LIKE wildcards in the search term are escaped.
        """
        query = _consumers.select().where(or_(_consumers.c.is_admin_defined == 1, _consumers.c.created_by == user_id))
        if search:
            query = query.where(_consumers.c.name.icontains(search, autoescape=True))
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_consumers.c.name)).fetchall()
        return [_row_to_consumer(r) for r in rows]

    def update_consumer(self, consumer_id: int, actor_id: int, actor_is_admin: bool, **fields) -> bool:
        """Update a consumer the actor created, or any consumer if the actor is an admin.

        Returns False when the row is missing or the actor lacks permission.
        Raises sqlalchemy.exc.IntegrityError on a duplicate name.
        """
        unknown = set(fields) - _CONSUMER_FIELDS
        if unknown:
            raise ValueError(f"Unknown data consumer fields: {unknown!r}")
        for flag in ("is_admin_defined", "is_private"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _consumers.update()
                .where((_consumers.c.id == consumer_id) & _consumer_permission(actor_id, actor_is_admin))
                .values(**fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_consumer(self, consumer_id: int, actor_id: int, actor_is_admin: bool) -> bool:
        """Delete a consumer the actor created, or any consumer if the actor is an admin."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _consumers.delete().where(
                    (_consumers.c.id == consumer_id) & _consumer_permission(actor_id, actor_is_admin)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_attribute(row) -> Attribute:
    return Attribute(
        id=row.id,
        user_id=row.user_id,
        key=row.key,
        value=row.value,
        where_used=decode_where_used(row.where_used),
        file_path=row.file_path,
        file_name=row.file_name,
        file_type=row.file_type,
        file_size=row.file_size,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_consumer(row) -> DataConsumer:
    return DataConsumer(
        id=row.id,
        name=row.name,
        description=row.description,
        created_by=row.created_by,
        is_admin_defined=bool(row.is_admin_defined),
        is_private=bool(row.is_private),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
