from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from cardgather.database import Base


class EventRecord(Base):
    """Stored canonical event. ``protected`` is set by human editors only."""

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    dedup_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True, index=True)
    base_key: Mapped[str] = mapped_column(Text, nullable=False, default="", index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # "Jan 4, 2026"
    venue: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    promotion_id: Mapped[str] = mapped_column(Text, nullable=False)
    promotion_name: Mapped[str] = mapped_column(Text, nullable=False)
    is_periodic_broadcast: Mapped[bool] = mapped_column(Boolean, default=False)
    is_special_event: Mapped[bool] = mapped_column(Boolean, default=True)
    matches: Mapped[list] = mapped_column(JSON, default=list)
    protected: Mapped[bool] = mapped_column(Boolean, default=False)
    last_edited_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_tag: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_refs: Mapped[dict] = mapped_column(JSON, default=dict)  # {source: external_id}
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    scraped_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class PromotionRecord(Base):
    __tablename__ = "promotions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)  # canonical id, e.g. "aew"
    name: Mapped[str] = mapped_column(Text, nullable=False)
    cagematch_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    logo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Scan(Base):
    __tablename__ = "scans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(Text, default="pending")
    sources: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # comma-separated keys
    events_found: Mapped[int] = mapped_column(Integer, default=0)
    events_new: Mapped[int] = mapped_column(Integer, default=0)
    events_updated: Mapped[int] = mapped_column(Integer, default=0)
    events_protected: Mapped[int] = mapped_column(Integer, default=0)
    pages_fetched: Mapped[int] = mapped_column(Integer, default=0)
    pages_failed: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
