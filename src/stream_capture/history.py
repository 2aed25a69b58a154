"""Serialized access to the shared channel history table.

Capture sessions run concurrently and may touch the same channel number, so
they never read-modify-write the table themselves. A single worker thread owns
the in-memory copy; sessions send it update requests over a queue and every
applied update is followed by a full write back to storage.
"""

import copy
import logging
import queue
import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from .models import load_channel_history, save_channel_history
from .models.channel_history import ChannelHistoryEntry

logger = logging.getLogger(__name__)

_STOP = object()

class ChannelHistoryService:
    """Single owner of the channel history table."""

    def __init__(self, load: Callable = load_channel_history, save: Callable = save_channel_history):
        self._load = load
        self._save = save
        self._table: Dict[str, ChannelHistoryEntry] = {}
        self._requests: queue.Queue = queue.Queue()
        self.thread: Optional[threading.Thread] = None
        self.running = False

    def start(self):
        """Load the table and start the worker thread."""
        if self.running:
            logger.warning("Channel history service already running")
            return

        try:
            self._table = self._load()
        except Exception as e:
            logger.error(f"Could not load channel history, starting empty: {e}")
            self._table = {}

        self.running = True
        self.thread = threading.Thread(target=self._run, name="channel-history", daemon=True)
        self.thread.start()
        logger.info(f"Channel history service started ({len(self._table)} channels)")

    def stop(self):
        """Apply pending updates, then stop the worker."""
        if not self.running:
            return
        self._requests.put(_STOP)
        if self.thread:
            self.thread.join(timeout=5)
        self.running = False
        logger.info("Channel history service stopped")

    def _run(self):
        while True:
            request = self._requests.get()
            try:
                if request is _STOP:
                    return
                self._apply(*request)
            finally:
                self._requests.task_done()

    def _apply(self, channel, mutate, reply):
        entry = self._table.get(channel)
        if entry is None:
            entry = self._table[channel] = ChannelHistoryEntry(channel=channel)

        if mutate is not None:
            mutate(entry)
            try:
                self._save(self._table)
            except Exception as e:
                logger.error(f"Failed to save channel history for channel {channel}: {e}")

        if reply is not None:
            reply.put(copy.copy(entry))

    def update(self, channel: str, mutate: Callable[[ChannelHistoryEntry], None]):
        """Queue a mutation of one channel's entry."""
        self._requests.put((str(channel), mutate, None))

    def get(self, channel: str, timeout: float = 5) -> ChannelHistoryEntry:
        """Read a copy of one channel's entry, after queued updates have applied."""
        reply = queue.Queue(maxsize=1)
        self._requests.put((str(channel), None, reply))
        return reply.get(timeout=timeout)

    def snapshot(self) -> Dict[str, ChannelHistoryEntry]:
        """Copy of the whole table once pending updates have applied."""
        self.flush()
        return {channel: copy.copy(entry) for channel, entry in list(self._table.items())}

    def flush(self):
        """Block until every queued update has been applied."""
        if self.running:
            self._requests.join()

    def record_attempt(self, channel: str, when: Optional[datetime] = None):
        when = when or datetime.now()

        def mutate(entry):
            entry.recordings_attempted += 1
            entry.last_attempt = when
        self.update(channel, mutate)

    def record_error(self, channel: str):
        def mutate(entry):
            entry.errors += 1
        self.update(channel, mutate)

    def add_hours(self, channel: str, hours: float):
        def mutate(entry):
            entry.hours_recorded += hours
        self.update(channel, mutate)

    def record_success(self, channel: str, when: Optional[datetime] = None):
        when = when or datetime.now()

        def mutate(entry):
            entry.last_success = when
        self.update(channel, mutate)
