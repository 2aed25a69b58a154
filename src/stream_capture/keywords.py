"""Keyword rules deciding which shows are worth capturing."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .exceptions import KeywordLoadError

logger = logging.getLogger(__name__)

@dataclass
class KeywordRule:
    """A named rule: AND-groups that must match and AND-groups that veto."""

    name: str
    keywords: List[List[str]] = field(default_factory=list)
    exclude: List[List[str]] = field(default_factory=list)
    pre_minutes: int = 0
    post_minutes: int = 0
    starred: bool = False
    email: bool = False
    quality_pref: Optional[str] = None
    category_pref: Optional[str] = None
    lang_pref: Optional[str] = None
    channel_pref: Optional[str] = None

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "KeywordRule":
        """Build a rule from its keywords.json body."""
        return cls(
            name=name,
            keywords=[split_group(row) for row in _group_list(data, "keywords")],
            exclude=[split_group(row) for row in _group_list(data, "exclude")],
            pre_minutes=int(data.get("preMinutes") or 0),
            post_minutes=int(data.get("postMinutes") or 0),
            starred=bool(data.get("starredFlag", False)),
            email=bool(data.get("emailFlag", False)),
            quality_pref=data.get("qualityPref"),
            category_pref=data.get("categoryPref"),
            lang_pref=data.get("langPref"),
            channel_pref=data.get("channelPref"),
        )


def _group_list(data: dict, key: str) -> list:
    rows = data.get(key) or []
    if not isinstance(rows, list):
        raise ValueError(f"\"{key}\" must be a list of groups, got {type(rows).__name__}")
    return rows


def split_group(row) -> List[str]:
    """Split a comma separated AND-group ("news,tonight") into its terms."""
    if isinstance(row, (list, tuple)):
        return [str(term) for term in row]
    return str(row).split(",")


def group_matches(group: List[str], title: str) -> bool:
    """True if every regex term in the AND-group matches the title."""
    return all(re.search(term, title, re.IGNORECASE) for term in group)


def check_for_match(groups: List[List[str]], title: str) -> bool:
    """True if any AND-group fully matches. An empty list never matches."""
    return any(group_matches(group, title) for group in groups)


def find_match(rules: List[KeywordRule], title: str) -> Optional[Tuple[KeywordRule, int]]:
    """Return the first rule matching title with its position, or None."""
    for pos, rule in enumerate(rules):
        if check_for_match(rule.keywords, title) and not check_for_match(rule.exclude, title):
            return rule, pos
    return None


def load_keywords(path) -> List[KeywordRule]:
    """Load rules from a keywords.json file, keeping file order."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("expected an object of rule name to rule body")
        rules = [KeywordRule.from_dict(name, body) for name, body in data.items()]
        for rule in rules:
            for term in (t for group in rule.keywords + rule.exclude for t in group):
                re.compile(term)
    except (OSError, ValueError, TypeError, AttributeError, re.error) as e:
        raise KeywordLoadError(f"Problem loading keywords from {path}: {e}", details=str(path)) from e

    logger.info(f"Loaded {len(rules)} keyword rules from {path}")
    return rules
