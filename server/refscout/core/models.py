from __future__ import annotations

import datetime as dt

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from server.refscout.core.db import Base


class CacheEntry(Base):
    __tablename__ = "provider_cache_entries"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider: Mapped[str] = mapped_column(String(64), index=True)
    kind: Mapped[str] = mapped_column(String(32))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    value_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_provider_cache_entries_expires_at", "expires_at"),)
