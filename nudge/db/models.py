from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""


class Document(Base):
    """One JSON document addressed by a hierarchical path.

    Paths follow a collection/document layout:
    - athletes/{athlete_id}: athlete root (profile, stats, syncStatus keys)
    - athletes/{athlete_id}/activities/{activity_id}: one activity

    Stores:
    - path: full document path (primary key)
    - collection: parent collection path, used for listing
    - order_key: normalized start_date for activities, used for ordering and range queries
    - data: document body, merged at the top level on every write
    """

    __tablename__ = "documents"

    path: Mapped[str] = mapped_column(String, primary_key=True)
    collection: Mapped[str] = mapped_column(String, nullable=False, index=True)
    order_key: Mapped[str | None] = mapped_column(String, nullable=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (Index("idx_documents_collection_order", "collection", "order_key"),)
