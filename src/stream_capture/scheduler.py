"""Schedule polling and capture session management for Stream Capture."""

import logging
import schedule
import threading
import time
import traceback
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .config import config
from .exceptions import KeywordLoadError, ScheduleFeedError
from .feed import fetch_schedule
from .history import ChannelHistoryService
from .keywords import load_keywords
from .mailer import Mailer
from .recorder import CaptureSupervisor
from .recordings import CaptureRecord, Recordings

logger = logging.getLogger(__name__)

class StreamCaptureScheduler:
    """Polls the schedule feed and starts a capture session for each admitted show."""

    def __init__(self, recordings: Optional[Recordings] = None,
                 history: Optional[ChannelHistoryService] = None,
                 mailer: Optional[Mailer] = None,
                 keyword_loader: Callable = load_keywords,
                 schedule_fetcher: Callable = fetch_schedule,
                 supervisor_factory: Callable = CaptureSupervisor,
                 clock: Callable[[], datetime] = datetime.now):
        self.recordings = recordings or Recordings()
        self.history = history or ChannelHistoryService()
        self.mailer = mailer or Mailer()
        self.keyword_loader = keyword_loader
        self.schedule_fetcher = schedule_fetcher
        self.supervisor_factory = supervisor_factory
        self.clock = clock

        self.queue: List[CaptureRecord] = []
        self.active: Dict[str, CaptureSupervisor] = {}
        self.running = False
        self.last_check: Optional[datetime] = None
        self._lock = threading.Lock()

    def setup_schedule(self):
        """Register the daily check times and run a first check right away."""
        schedule.clear()

        logger.info("Setting up schedule checks")
        for hour in config.SCHEDULE_CHECK:
            at = f"{hour:02d}:00"
            schedule.every().day.at(at).do(self.check_schedule)
            logger.info(f"Scheduled schedule check at {at}")

        self.check_schedule()

    def check_schedule(self) -> List[CaptureRecord]:
        """One poll cycle: rules + feed -> candidates -> queue -> capture sessions."""
        logger.info("Checking schedule for shows to capture")

        try:
            rules = self.keyword_loader(config.KEYWORDS_FILE)
        except KeywordLoadError as e:
            logger.error(f"Keyword load failed: {e}")
            self.mailer.send_error_mail(
                f"keywords.json Exception ({e})",
                f"Keyword load failed with Exception {e}\n{self._details(e)}{traceback.format_exc()}",
            )
            return []

        try:
            entries = self.schedule_fetcher()
        except ScheduleFeedError as e:
            logger.error(f"Schedule fetch failed: {e}")
            self.mailer.send_error_mail(
                f"Schedule feed Exception ({e})",
                f"Schedule fetch failed with Exception {e}\n{self._details(e)}{traceback.format_exc()}",
            )
            return []

        with self._lock:
            matched = self.recordings.reconcile(entries, rules)
            now = self.clock()
            result = self.recordings.get_shows_to_queue(now=now, mailer=self.mailer)
            self.queue = result.queue
            self.last_check = now
        logger.info(f"{matched} schedule entries matched keywords, {len(result.queue)} shows queued")

        for record in result.queue:
            if not record.spawned:
                self.spawn(record)

        return result.queue

    @staticmethod
    def _details(error) -> str:
        return f"Details: {error.details}\n" if error.details else ""

    def spawn(self, record: CaptureRecord) -> threading.Thread:
        """Start a capture session for record in its own thread."""
        record.spawned = True
        supervisor = self.supervisor_factory(record, self.history)
        with self._lock:
            self.active[record.key] = supervisor

        logger.info(f"Queueing capture: {record.description} at {record.start_dt} on {record.channel_string()}")
        thread = threading.Thread(
            target=self._run_supervisor,
            args=(record.key, supervisor),
            name=f"capture-{record.file_name}",
            daemon=True,
        )
        thread.start()
        return thread

    def _run_supervisor(self, key: str, supervisor: CaptureSupervisor):
        try:
            supervisor.run()
        except Exception as e:
            logger.error(f"Capture session crashed for {key}: {e}", exc_info=True)
        finally:
            with self._lock:
                self.active.pop(key, None)

    def get_status(self) -> dict:
        with self._lock:
            next_run = schedule.next_run()
            return {
                "running": self.running,
                "last_check": self.last_check.isoformat() if self.last_check else None,
                "next_check": next_run.isoformat() if next_run else None,
                "queue": [r.to_dict() for r in self.queue],
                "active": [
                    {
                        "key": key,
                        "description": s.record.description,
                        "state": s.state.value,
                        "channel": s.current_channel.number if s.current_channel else None,
                        "segments": len(s.segments),
                    }
                    for key, s in self.active.items()
                ],
            }

    def get_recordings(self) -> List[dict]:
        with self._lock:
            return [r.to_dict() for r in self.recordings.values()]

    def run(self):
        """Run the scheduler."""
        logger.info("Stream Capture scheduler started")
        self.running = True

        while self.running:
            try:
                schedule.run_pending()
                time.sleep(config.SCHEDULER_TICK_SECONDS)

            except KeyboardInterrupt:
                logger.info("Scheduler interrupted")
                break
            except Exception as e:
                logger.error(f"Scheduler error: {e}", exc_info=True)
                time.sleep(30)  # Wait before retrying

        self.running = False

    def stop(self):
        self.running = False
