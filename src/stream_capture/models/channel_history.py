"""Per-channel capture history model."""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import Column, Integer, String, Float, DateTime
from .base import Base, get_session

class ChannelHistory(Base):
    """How well a channel has behaved across capture sessions."""

    __tablename__ = "channel_history"

    channel = Column(String(50), primary_key=True)
    recordings_attempted = Column(Integer, default=0, nullable=False)
    errors = Column(Integer, default=0, nullable=False)
    hours_recorded = Column(Float, default=0.0, nullable=False)
    last_attempt = Column(DateTime)
    last_success = Column(DateTime)

    def __repr__(self):
        return f"<ChannelHistory(channel='{self.channel}', attempts={self.recordings_attempted}, errors={self.errors})>"


@dataclass
class ChannelHistoryEntry:
    """Detached, in-memory copy of one channel history row."""

    channel: str
    recordings_attempted: int = 0
    errors: int = 0
    hours_recorded: float = 0.0
    last_attempt: Optional[datetime] = None
    last_success: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "recordings_attempted": self.recordings_attempted,
            "errors": self.errors,
            "hours_recorded": round(self.hours_recorded, 3),
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "last_success": self.last_success.isoformat() if self.last_success else None,
        }


def load_channel_history() -> Dict[str, ChannelHistoryEntry]:
    """Read the whole channel history table."""
    with get_session() as session:
        rows = session.query(ChannelHistory).all()
        return {
            row.channel: ChannelHistoryEntry(
                channel=row.channel,
                recordings_attempted=row.recordings_attempted or 0,
                errors=row.errors or 0,
                hours_recorded=row.hours_recorded or 0.0,
                last_attempt=row.last_attempt,
                last_success=row.last_success,
            )
            for row in rows
        }


def save_channel_history(table: Dict[str, ChannelHistoryEntry]):
    """Write the whole channel history table back."""
    with get_session() as session:
        for entry in table.values():
            session.merge(ChannelHistory(
                channel=entry.channel,
                recordings_attempted=entry.recordings_attempted,
                errors=entry.errors,
                hours_recorded=entry.hours_recorded,
                last_attempt=entry.last_attempt,
                last_success=entry.last_success,
            ))
