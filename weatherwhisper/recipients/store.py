"""Recipient persistence: the store protocol plus in-memory and SQL adapters."""

from __future__ import annotations

import datetime as dt
import threading
from typing import Dict, List, Mapping, Optional, Protocol

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    LargeBinary,
    MetaData,
    String,
    Table,
    create_engine,
    delete,
    insert,
    select,
)
from sqlalchemy.engine import Engine

from weatherwhisper.domain import Recipient
from utils.logging_utils import get_tagged_logger, mask_db_url

logger = get_tagged_logger(__name__, tag="recipients/store")


class RecipientStore(Protocol):
    """Protocol for recipient storage backends."""

    def list_recipients(self) -> List[Recipient]:
        """Return all recipients, most recently updated first."""

    def get(self, recipient_id: str) -> Optional[Recipient]:
        """Fetch a recipient by id, or None if absent."""

    def upsert(self, recipient: Recipient) -> None:
        """Insert or replace the record with the same id."""

    def delete(self, recipient_id: str) -> bool:
        """Remove a recipient; returns False when nothing was stored under the id."""


def _newest_first(recipients) -> List[Recipient]:
    return sorted(recipients, key=lambda r: r.updated_at, reverse=True)


class InMemoryRecipientStore(RecipientStore):
    """Thread-safe in-memory store (dev/test)."""

    def __init__(self) -> None:
        self._recipients: Dict[str, Recipient] = {}
        self._lock = threading.Lock()

    def list_recipients(self) -> List[Recipient]:
        with self._lock:
            return _newest_first(self._recipients.values())

    def get(self, recipient_id: str) -> Optional[Recipient]:
        with self._lock:
            return self._recipients.get(recipient_id)

    def upsert(self, recipient: Recipient) -> None:
        with self._lock:
            self._recipients[recipient.id] = recipient

    def delete(self, recipient_id: str) -> bool:
        with self._lock:
            return self._recipients.pop(recipient_id, None) is not None


class SqlRecipientStore(RecipientStore):
    """SQLAlchemy Core store; the table is created on first use."""

    def __init__(self, engine: Engine, *, table_name: str = "recipients") -> None:
        self.engine = engine
        self._metadata = MetaData()
        self.table = Table(
            table_name,
            self._metadata,
            Column("id", String(36), primary_key=True),
            Column("nickname", String(200), nullable=False),
            Column("avatar", LargeBinary, nullable=True),
            Column("city_name", String(200), nullable=False, default=""),
            Column("latitude", Float, nullable=False, default=0.0),
            Column("longitude", Float, nullable=False, default=0.0),
            Column("relation_type", String(32), nullable=False),
            Column("updated_at", DateTime(timezone=True), nullable=False),
        )
        self._ready = False
        self._ready_lock = threading.Lock()

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlRecipientStore":
        """Create an engine from a URL and build the store."""
        logger.info("Using SqlRecipientStore at %s", mask_db_url(database_url))
        engine = create_engine(database_url, future=True)
        return cls(engine, **kwargs)

    def _ensure_table(self) -> None:
        if self._ready:
            return
        with self._ready_lock:
            if not self._ready:
                self._metadata.create_all(self.engine)
                self._ready = True

    @staticmethod
    def _row_to_recipient(row: Mapping) -> Recipient:
        updated_at: dt.datetime = row["updated_at"]
        # sqlite hands back naive timestamps
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=dt.timezone.utc)
        return Recipient(
            id=row["id"],
            nickname=row["nickname"],
            avatar=row["avatar"],
            city_name=row["city_name"] or "",
            latitude=row["latitude"] or 0.0,
            longitude=row["longitude"] or 0.0,
            relation_type=row["relation_type"],
            updated_at=updated_at,
        )

    def list_recipients(self) -> List[Recipient]:
        self._ensure_table()
        query = select(self.table).order_by(self.table.c.updated_at.desc())
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [self._row_to_recipient(row) for row in rows]

    def get(self, recipient_id: str) -> Optional[Recipient]:
        self._ensure_table()
        query = select(self.table).where(self.table.c.id == recipient_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        return self._row_to_recipient(row) if row else None

    def upsert(self, recipient: Recipient) -> None:
        self._ensure_table()
        values = {
            "id": recipient.id,
            "nickname": recipient.nickname,
            "avatar": recipient.avatar,
            "city_name": recipient.city_name,
            "latitude": recipient.latitude,
            "longitude": recipient.longitude,
            "relation_type": recipient.relation_type.value,
            "updated_at": recipient.updated_at,
        }
        with self.engine.begin() as conn:
            conn.execute(delete(self.table).where(self.table.c.id == recipient.id))
            conn.execute(insert(self.table).values(**values))
        logger.debug("Upserted recipient %s", recipient.id)

    def delete(self, recipient_id: str) -> bool:
        self._ensure_table()
        with self.engine.begin() as conn:
            result = conn.execute(delete(self.table).where(self.table.c.id == recipient_id))
        return bool(result.rowcount)


def build_recipient_store(database_url: str | None = None) -> RecipientStore:
    """SQL store when a database URL is configured, else in-memory."""
    if database_url:
        return SqlRecipientStore.from_url(database_url)
    logger.info("Using InMemoryRecipientStore")
    return InMemoryRecipientStore()
