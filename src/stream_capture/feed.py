"""Schedule feed fetching and stream authentication."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import requests

from .config import config
from .exceptions import AuthenticationError, ScheduleFeedError

logger = logging.getLogger(__name__)

FEED_TIME_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M:%S")

@dataclass(frozen=True)
class ScheduleEntry:
    """One show as published by the schedule feed."""

    name: str
    channel: str
    quality: str = ""
    language: str = ""
    id: str = ""
    category: str = ""
    time: str = ""
    end_time: str = ""
    runtime: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ScheduleEntry":
        return cls(
            name=str(data.get("name") or "").strip(),
            channel=str(data.get("channel") or "").strip(),
            quality=str(data.get("quality") or ""),
            language=str(data.get("language") or ""),
            id=str(data.get("id") or ""),
            category=str(data.get("category") or ""),
            time=str(data.get("time") or ""),
            end_time=str(data.get("end_time") or ""),
            runtime=str(data.get("runtime") or ""),
        )


def parse_feed_time(value: str) -> datetime:
    """Parse a feed timestamp, e.g. '2017-01-20 18:00:00'."""
    value = (value or "").strip()
    for fmt in FEED_TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return datetime.fromisoformat(value)


def parse_entries(payload) -> List[ScheduleEntry]:
    """Flatten a feed payload into schedule entries.

    The feed is either a list of show objects or a mapping of channel id to
    ``{"items": [...]}``. Items that are not objects are skipped.
    """
    if isinstance(payload, dict):
        items = []
        for channel_id, channel_data in payload.items():
            if not channel_data:
                continue
            if not isinstance(channel_data, dict) or not isinstance(channel_data.get("items") or [], list):
                raise ScheduleFeedError(f"Unexpected schedule data for channel {channel_id}",
                                        details=repr(channel_data)[:200])
            for item in channel_data.get("items") or []:
                if isinstance(item, dict):
                    item = dict(item)
                    item.setdefault("channel", channel_id)
                items.append(item)
    elif isinstance(payload, list):
        items = payload
    else:
        raise ScheduleFeedError(f"Unexpected schedule payload type: {type(payload).__name__}",
                                details=repr(payload)[:200])

    entries = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning(f"Skipping schedule item that is not an object: {item!r}")
            continue
        entry = ScheduleEntry.from_dict(item)
        if entry.name and entry.channel and entry.time:
            entries.append(entry)
        else:
            logger.debug(f"Skipping incomplete schedule item: {item}")
    return entries


def fetch_schedule(url: Optional[str] = None, timeout: int = 30) -> List[ScheduleEntry]:
    """Fetch whatever the schedule feed currently publishes."""
    url = url or config.SCHEDULE_URL
    if not url:
        raise ScheduleFeedError("No schedule URL configured")

    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as e:
        raise ScheduleFeedError(f"Problem fetching schedule from {url}: {e}", details=url) from e

    entries = parse_entries(payload)
    logger.info(f"Fetched {len(entries)} schedule entries")
    return entries


def authenticate(timeout: int = 30) -> str:
    """Get the auth token the capture command needs."""
    if not config.AUTH_URL:
        raise AuthenticationError("No auth URL configured")

    url = config.AUTH_URL.replace("[USERNAME]", config.USERNAME).replace("[PASSWORD]", config.PASSWORD)
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        token = response.json().get("hash")
    except (requests.RequestException, ValueError, AttributeError) as e:
        raise AuthenticationError(f"Authentication request failed: {e}") from e

    if not token:
        raise AuthenticationError("Authentication response had no hash")
    return str(token)
