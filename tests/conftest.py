"""
Pytest configuration and shared fixtures for test suite

Points the database at in-memory SQLite and provides a controllable clock
plus helpers for building capture records.
"""
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Add src directory to path so we can import the package without installing it
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Set test database URI BEFORE importing the package
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'

from stream_capture.models import Base
from stream_capture.models.base import engine
from stream_capture.recordings import CaptureRecord, ChannelOption


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def sleep(self, seconds):
        self.advance(seconds=seconds)


@pytest.fixture(autouse=True)
def db():
    """Fresh tables for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 18, 10, 0, 0))


@pytest.fixture
def make_record():
    """Factory for capture records: make_record("A", "10:00", 60, pos=0)."""

    def _make(title, start, minutes, pos=0, channels=("01",), day=datetime(2026, 10, 18)):
        hour, minute = (int(part) for part in start.split(":"))
        start_dt = day.replace(hour=hour, minute=minute)
        return CaptureRecord(
            description=title,
            str_start=start_dt.strftime("%Y-%m-%d %H:%M:%S"),
            start_dt=start_dt,
            duration_minutes=minutes,
            keyword_pos=pos,
            channels=[ChannelOption(number=c) for c in channels],
            file_name=title.replace(" ", "_"),
        )

    return _make
