"""Durable key-value table backing the session store."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from fertisense.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class KeyValueEntry(Base):
    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True, index=True)
    value = Column(Text, nullable=False)  # JSON text
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
