"""Heuristic line parser: raw text -> :class:`Entry`.

Plain lines go through an ordered extraction (timestamp, level, tags). A line
that is, or contains, a JSON object is read from its fields instead. Matchers
return ``None`` for "no match"; only truly unexpected failures reach the
fallback in :func:`parse_line`.
"""
from __future__ import annotations

import json
import re
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .entry import DEFAULT_LEVEL, LEVELS, Entry, utcnow
from .logutil import get_logger

_log = get_logger("parsers")

_ISO = r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:Z|[+-]\d{2}:?\d{2})?"

# Order matters: the first pattern producing a valid instant wins.
_BRACKETED_ISO_RE = re.compile(rf"^\[({_ISO})\]\s*")
_ISO_RE = re.compile(rf"^({_ISO})\s*")
_SPACED_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2}(?:[.,]\d+)?)\s*")
_TIME_ONLY_RE = re.compile(r"^(\d{2}:\d{2}:\d{2}(?:\.\d+)?)\s*")
_SYSLOG_RE = re.compile(r"^([A-Z][a-z]{2})\s+(\d{1,2})\s+(\d{2}:\d{2}:\d{2})\s*")

_TIMESTAMP_PATTERNS = (_BRACKETED_ISO_RE, _ISO_RE, _SPACED_RE, _TIME_ONLY_RE, _SYSLOG_RE)

_MONTHS = {
    name: idx
    for idx, name in enumerate(
        ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"], start=1
    )
}

_LEVEL_PREFIX_RE = re.compile(r"^\[?(\w+)\]?\s*")
_LEVEL_LEAD_RE = re.compile(r"^\[?(\w+)\]?\s+")
_LEVEL_WORD_RES = [(lvl, re.compile(rf"\b{lvl}\b", re.IGNORECASE)) for lvl in LEVELS]
_TAG_RE = re.compile(r"^\[([^\]]+)\]\s*")
_OFFSET_RE = re.compile(r"([+-])(\d{2})(\d{2})$")

_JSON_TIMESTAMP_KEYS = ("timestamp", "time", "@timestamp")
_JSON_LEVEL_KEYS = ("level", "severity", "priority")
_JSON_MESSAGE_KEYS = ("message", "msg", "text")
_JSON_TAG_KEYS = ("tags", "labels", "component", "service", "module")

Matcher = Callable[[str], Optional[Tuple[int, datetime]]]


def _iso_instant(text: str) -> Optional[datetime]:
    s = " ".join(text.strip().split()).replace(",", ".")
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    else:
        s = _OFFSET_RE.sub(r"\1\2:\3", s)
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        # Naive wall-clock time is local time
        dt = dt.astimezone()
    return dt


def _iso_matcher(pattern: "re.Pattern[str]") -> Matcher:
    def match(text: str) -> Optional[Tuple[int, datetime]]:
        m = pattern.match(text)
        if m is None:
            return None
        instant = _iso_instant(m.group(1))
        if instant is None:
            return None
        return m.end(), instant

    return match


def _match_time_only(text: str) -> Optional[Tuple[int, datetime]]:
    m = _TIME_ONLY_RE.match(text)
    if m is None:
        return None
    try:
        clock = time.fromisoformat(m.group(1))
    except ValueError:
        return None
    return m.end(), datetime.combine(date.today(), clock).astimezone()


def _match_syslog(text: str) -> Optional[Tuple[int, datetime]]:
    m = _SYSLOG_RE.match(text)
    if m is None:
        return None
    month = _MONTHS.get(m.group(1))
    if month is None:
        return None
    try:
        clock = time.fromisoformat(m.group(3))
        day = datetime(date.today().year, month, int(m.group(2)))
    except ValueError:
        return None
    return m.end(), datetime.combine(day.date(), clock).astimezone()


_TIMESTAMP_MATCHERS: List[Matcher] = [
    _iso_matcher(_BRACKETED_ISO_RE),
    _iso_matcher(_ISO_RE),
    _iso_matcher(_SPACED_RE),
    _match_time_only,
    _match_syslog,
]


def extract_timestamp(text: str) -> Optional[Tuple[datetime, str]]:
    """Return ``(instant, text_without_prefix)`` for the first valid timestamp prefix."""
    for matcher in _TIMESTAMP_MATCHERS:
        found = matcher(text)
        if found is not None:
            end, instant = found
            return instant, text[end:]
    return None


def extract_level(text: str) -> Optional[Tuple[str, str]]:
    """Leading level token is consumed; a level word elsewhere is detected but kept."""
    m = _LEVEL_PREFIX_RE.match(text)
    if m is not None and m.group(1).upper() in LEVELS:
        return m.group(1).upper(), text[m.end():]
    for level, pattern in _LEVEL_WORD_RES:
        if pattern.search(text):
            return level, text
    return None


def extract_tags(text: str) -> Tuple[List[str], str]:
    tags: List[str] = []
    m = _TAG_RE.match(text)
    while m is not None:
        tags.append(m.group(1))
        text = text[m.end():]
        m = _TAG_RE.match(text)
    return tags, text


def _first_balanced_object(text: str) -> Optional[str]:
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        obj = json.loads(text)
    except ValueError:
        return None
    return obj if isinstance(obj, dict) else None


def find_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """Parse the whole line as a JSON object, else the first balanced ``{...}`` in it."""
    text = raw.strip()
    obj = _loads_object(text)
    if obj is not None:
        return obj
    candidate = _first_balanced_object(text)
    if candidate is None:
        return None
    return _loads_object(candidate)


def _first_present(obj: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = obj.get(key)
        if value:
            return value
    return None


def _json_instant(value: Any) -> Optional[datetime]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Numeric timestamps are epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        return _iso_instant(value)
    return None


def entry_from_json(obj: Dict[str, Any], source: Optional[str] = None) -> Entry:
    timestamp = _json_instant(_first_present(obj, _JSON_TIMESTAMP_KEYS)) or utcnow()

    level = DEFAULT_LEVEL
    raw_level = _first_present(obj, _JSON_LEVEL_KEYS)
    if raw_level is not None and str(raw_level).upper() in LEVELS:
        level = str(raw_level).upper()

    raw_message = _first_present(obj, _JSON_MESSAGE_KEYS)
    if isinstance(raw_message, str):
        message = raw_message
    elif raw_message is not None:
        message = json.dumps(raw_message, ensure_ascii=False)
    else:
        message = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))

    tags: List[str] = []
    for key in _JSON_TAG_KEYS:
        value = obj.get(key)
        items = value if isinstance(value, list) else [value]
        for item in items:
            if item is None or isinstance(item, (dict, list)):
                continue
            tag = str(item)
            if tag not in tags:
                tags.append(tag)

    return Entry(timestamp=timestamp, level=level, message=message, tags=tags, source=source, metadata=obj)


def _parse(raw: str, source: Optional[str]) -> Entry:
    # Structured lines win outright over the plain-text heuristics
    obj = find_json_object(raw)
    if obj is not None:
        return entry_from_json(obj, source)

    text = raw.strip()
    timestamp = utcnow()
    found = extract_timestamp(text)
    if found is not None:
        timestamp, text = found

    level = DEFAULT_LEVEL
    leveled = extract_level(text)
    if leveled is not None:
        level, text = leveled

    tags, text = extract_tags(text)
    return Entry(timestamp=timestamp, level=level, message=text, tags=tags, source=source)


def parse_line(raw: str, source: Optional[str] = None) -> Optional[Entry]:
    """Parse one raw line. Returns ``None`` for blank input, never raises."""
    if not raw or not raw.strip():
        return None
    try:
        return _parse(raw, source)
    except Exception as exc:  # noqa: BLE001 - a bad line must not stop the pipeline
        _log.warning("parse failed for line from %s, using raw text: %s", source, exc)
        return Entry(timestamp=utcnow(), message=raw, source=source)


def is_new_entry(line: str) -> bool:
    """True when ``line`` starts a record; False marks a continuation line."""
    text = line.strip()
    if not text:
        return False
    for pattern in _TIMESTAMP_PATTERNS:
        if pattern.match(text):
            return True
    m = _LEVEL_LEAD_RE.match(text)
    if m is not None and m.group(1).upper() in LEVELS:
        return True
    # JSON-lines logs: every complete object is its own record
    return text.startswith("{") and text.endswith("}") and _loads_object(text) is not None


__all__ = [
    "parse_line",
    "is_new_entry",
    "extract_timestamp",
    "extract_level",
    "extract_tags",
    "find_json_object",
    "entry_from_json",
]
