"""Capture session logging model."""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from .base import Base

class CaptureLog(Base):
    """Log of capture sessions."""

    __tablename__ = "capture_logs"

    id = Column(Integer, primary_key=True)
    title = Column(String(500))
    file_name = Column(String(500))
    channel = Column(String(50))
    started_at = Column(DateTime, server_default=func.now())
    ended_at = Column(DateTime)
    status = Column(String(50))  # capturing, completed, abandoned, failed
    segments = Column(Integer, default=0)
    error_message = Column(String(1000))

    def __repr__(self):
        return f"<CaptureLog(title='{self.title}', status={self.status})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "file_name": self.file_name,
            "channel": self.channel,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "status": self.status,
            "segments": self.segments,
            "error_message": self.error_message,
        }
