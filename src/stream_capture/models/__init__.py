"""Database models for Stream Capture."""

from .base import Base, get_session, init_db
from .channel_history import ChannelHistory, load_channel_history, save_channel_history
from .capture_log import CaptureLog

__all__ = [
    "Base",
    "get_session",
    "init_db",
    "ChannelHistory",
    "load_channel_history",
    "save_channel_history",
    "CaptureLog",
]
