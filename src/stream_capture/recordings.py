"""Candidate recordings and admission into the capture queue.

``Recordings`` owns the long-lived map of every show that matched a keyword
rule (the candidate map). Each poll cycle reconciles fresh feed entries into
it and then builds the queue of shows that will actually be captured:
candidates are offered in keyword priority order and admitted only while the
number of overlapping captures stays within the configured limit. The queue
itself is always kept in start-time order.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from .config import config
from .feed import ScheduleEntry, parse_feed_time
from .keywords import KeywordRule, find_match

logger = logging.getLogger(__name__)

# Characters stripped from show titles before they become file names
UNSAFE_FILENAME_CHARS = "|'/\\ ,<>#@!+&^*()~`;" + ':"?' + "".join(chr(c) for c in range(32))

STARRED_PREFIX = "+_"


@dataclass
class ChannelOption:
    """A channel a show airs on, plus its failover quality ratio."""

    number: str
    quality: str = ""
    language: str = ""
    ratio: float = 0.0


@dataclass
class CaptureRecord:
    """One show occurrence we are interested in capturing."""

    description: str
    str_start: str
    id: str = ""
    str_end: str = ""
    str_duration: str = ""
    start_dt: Optional[datetime] = None
    duration_minutes: int = 0
    pre_minutes: int = 0
    post_minutes: int = 0
    channels: List[ChannelOption] = field(default_factory=list)
    keyword_pos: Optional[int] = None
    starred: bool = False
    email: bool = False
    spawned: bool = False
    best_channel_set: bool = False
    file_name: str = ""
    category: str = ""
    quality_pref: Optional[str] = None
    category_pref: Optional[str] = None
    lang_pref: Optional[str] = None
    channel_pref: Optional[str] = None

    @property
    def key(self) -> str:
        return build_record_key(self.str_start, self.description)

    @property
    def end_dt(self) -> datetime:
        return self.start_dt + timedelta(minutes=self.duration_minutes)

    def add_update_channel(self, number: str, quality: str = "", language: str = ""):
        """Add a channel option, or refresh an existing one with the same number."""
        for option in self.channels:
            if option.number == number:
                option.quality = quality
                option.language = language
                return option
        option = ChannelOption(number=number, quality=quality, language=language)
        self.channels.append(option)
        return option

    def sorted_channels(self) -> List[ChannelOption]:
        """Channel options in failover order, preferred channel/quality/language first."""
        def matches(value, pref):
            return bool(pref) and str(value).lower() == str(pref).lower()

        return sorted(
            self.channels,
            key=lambda c: (
                not matches(c.number, self.channel_pref),
                not matches(c.quality, self.quality_pref),
                not matches(c.language, self.lang_pref),
            ),
        )

    def channel_string(self) -> str:
        return ", ".join(f"{c.number} ({c.quality}/{c.language})" for c in self.sorted_channels())

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "id": self.id,
            "description": self.description,
            "start": self.start_dt.isoformat() if self.start_dt else None,
            "end": self.end_dt.isoformat() if self.start_dt else None,
            "duration_minutes": self.duration_minutes,
            "channels": [c.__dict__.copy() for c in self.sorted_channels()],
            "keyword_pos": self.keyword_pos,
            "starred": self.starred,
            "email": self.email,
            "spawned": self.spawned,
            "file_name": self.file_name,
            "category": self.category,
        }


@dataclass
class AdmissionResult:
    """Outcome of one admission pass."""

    queue: List[CaptureRecord] = field(default_factory=list)
    too_many: List[CaptureRecord] = field(default_factory=list)
    too_far: List[CaptureRecord] = field(default_factory=list)
    finished: List[CaptureRecord] = field(default_factory=list)


def build_record_key(str_start: str, description: str) -> str:
    return f"{str_start}{description}"


def sanitize_file_name(title: str, starred: bool = False) -> str:
    """Turn a show title into a file system and shell safe base name."""
    file_name = title.replace(" ", "_")
    for c in UNSAFE_FILENAME_CHARS:
        file_name = file_name.replace(c, "")
    if starred:
        file_name = STARRED_PREFIX + file_name
    return file_name


def compute_timing(entry: ScheduleEntry, rule: KeywordRule, offset_hours: float):
    """Padded start instant and duration in minutes for a feed entry."""
    start = parse_feed_time(entry.time) + timedelta(hours=offset_hours)
    try:
        runtime = int(float(entry.runtime))
    except (TypeError, ValueError):
        end = parse_feed_time(entry.end_time) + timedelta(hours=offset_hours)
        runtime = int((end - start).total_seconds() // 60)

    start = start - timedelta(minutes=rule.pre_minutes)
    duration = runtime + rule.pre_minutes + rule.post_minutes
    return start, duration


def add_to_sorted_list(record: CaptureRecord, records: List[CaptureRecord]) -> List[CaptureRecord]:
    """Insert record before the first entry whose start is not earlier than its own."""
    for idx, existing in enumerate(records):
        if existing.start_dt >= record.start_dt:
            records.insert(idx, record)
            return records
    records.append(record)
    return records


def is_concurrency_ok(record: CaptureRecord, queue: List[CaptureRecord], max_concurrent: int) -> bool:
    """Would adding record to queue keep overlapping captures within max_concurrent?"""
    trial = add_to_sorted_list(record, list(queue))

    active_ends = []
    concurrent = 0
    for candidate in trial:
        concurrent += 1
        for end in list(active_ends):
            if candidate.start_dt >= end:
                concurrent -= 1
                active_ends.remove(end)
        active_ends.append(candidate.end_dt)

        if concurrent > max_concurrent:
            return False
    return True


def sort_by_keyword_pos(records: Iterable[CaptureRecord]) -> List[CaptureRecord]:
    """Stable sort, best (lowest) keyword position first."""
    return sorted(records, key=lambda r: r.keyword_pos)


class Recordings:
    """Owns the candidate map and derives the capture queue from it."""

    def __init__(self):
        self._records: Dict[str, CaptureRecord] = {}

    def __len__(self):
        return len(self._records)

    def __contains__(self, key):
        return key in self._records

    def get(self, key: str) -> Optional[CaptureRecord]:
        return self._records.get(key)

    def values(self) -> List[CaptureRecord]:
        return list(self._records.values())

    def remove(self, record: CaptureRecord):
        self._records.pop(record.key, None)

    def reconcile(self, entries: Iterable[ScheduleEntry], rules: List[KeywordRule],
                  offset_hours: Optional[float] = None) -> int:
        """Fold matching feed entries into the candidate map. Returns the match count."""
        if offset_hours is None:
            offset_hours = config.SCHED_TIME_OFFSET

        matched = 0
        for entry in entries:
            match = find_match(rules, entry.name)
            if match is None:
                continue
            rule, pos = match

            try:
                start_dt, duration = compute_timing(entry, rule, offset_hours)
            except ValueError as e:
                logger.warning(f"Skipping '{entry.name}': bad time data ({e})")
                continue

            key = build_record_key(entry.time, entry.name)
            record = self._records.get(key)
            if record is None:
                record = CaptureRecord(description=entry.name, str_start=entry.time, keyword_pos=pos)
                self._records[key] = record
                logger.info(f"New match for '{rule.name}': {entry.name} at {start_dt}")

            record.add_update_channel(entry.channel, entry.quality, entry.language)
            record.id = entry.id
            record.str_end = entry.end_time
            record.str_duration = entry.runtime
            record.start_dt = start_dt
            record.duration_minutes = duration
            record.pre_minutes = rule.pre_minutes
            record.post_minutes = rule.post_minutes
            record.starred = rule.starred
            record.email = rule.email
            record.quality_pref = rule.quality_pref
            record.category_pref = rule.category_pref
            record.lang_pref = rule.lang_pref
            record.channel_pref = rule.channel_pref
            record.category = entry.category
            record.file_name = sanitize_file_name(entry.name, rule.starred)
            matched += 1

        return matched

    def get_shows_to_queue(self, now: Optional[datetime] = None, hours_in_future: Optional[int] = None,
                           max_concurrent: Optional[int] = None, mailer=None) -> AdmissionResult:
        """Build the capture queue, pruning shows that have already finished."""
        now = now or datetime.now()
        if hours_in_future is None:
            hours_in_future = config.HOURS_IN_FUTURE
        if max_concurrent is None:
            max_concurrent = config.CONCURRENT_CAPTURES
        horizon = now + timedelta(hours=hours_in_future)

        result = AdmissionResult()

        for record in sort_by_keyword_pos(self._records.values()):
            if record.end_dt <= now:
                logger.info(f"Show already finished: {record.description} at {record.start_dt}")
                result.finished.append(record)
                self.remove(record)

        # Shows already handed to a capture session keep their slot
        remaining = sort_by_keyword_pos(self._records.values())
        for record in remaining:
            if record.spawned:
                logger.info(f"Show already queued: {record.description} at {record.start_dt}")
                add_to_sorted_list(record, result.queue)

        for record in remaining:
            if record.spawned:
                continue
            if record.start_dt > horizon:
                logger.info(f"Show too far away: {record.description} at {record.start_dt}")
                result.too_far.append(record)
            elif not is_concurrency_ok(record, result.queue, max_concurrent):
                logger.info(f"Too many at once: {record.description} at {record.start_dt} - {record.end_dt}")
                result.too_many.append(record)
            else:
                add_to_sorted_list(record, result.queue)

        logger.info("Current Schedule ==================")
        for record in result.queue:
            logger.info(f"{record.description} at {record.start_dt} - {record.end_dt}")
        logger.info("===================================")

        if mailer is not None and (result.queue or result.too_many):
            mailer.send_schedule_mail(result.queue, result.too_many)

        return result
