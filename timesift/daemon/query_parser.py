"""
Query language parser.

Turns a raw query string such as::

    xcode "pull request" -slack app:xcode after:2024-01-01 mindur:30m

into a ParsedQuery of free-text terms, exclusions and typed filters, and
validates query syntax. Parsing never raises: malformed filter values are
dropped from the parsed query and reported through ``problems``, which is
also what ``validate`` reads, so the two always agree.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional, Tuple


class DateFilterKind(Enum):
    AFTER = "after"
    BEFORE = "before"
    ON = "on"


class DurationFilterKind(Enum):
    GREATER_THAN = "gt"
    LESS_THAN = "lt"
    EQUAL_TO = "eq"


@dataclass(frozen=True)
class DateFilter:
    """Date constraint on a record's start time; ``date`` is a day start."""
    kind: DateFilterKind
    date: datetime

    def matches(self, start_time: datetime) -> bool:
        if self.kind is DateFilterKind.AFTER:
            return start_time >= self.date
        if self.kind is DateFilterKind.BEFORE:
            return start_time < self.date
        return self.date <= start_time < self.date + timedelta(days=1)


@dataclass(frozen=True)
class DurationFilter:
    """Duration constraint in seconds."""
    kind: DurationFilterKind
    seconds: float

    def matches(self, duration: float) -> bool:
        if self.kind is DurationFilterKind.GREATER_THAN:
            return duration > self.seconds
        if self.kind is DurationFilterKind.LESS_THAN:
            return duration < self.seconds
        # Equality is judged at whole-minute resolution
        return int(duration // 60) == int(self.seconds // 60)


@dataclass
class ParsedQuery:
    """Structured form of a query string."""
    text_terms: List[str] = field(default_factory=list)
    exclude_terms: List[str] = field(default_factory=list)
    app_filters: List[str] = field(default_factory=list)
    project_filters: List[str] = field(default_factory=list)
    date_filters: List[DateFilter] = field(default_factory=list)
    duration_filters: List[DurationFilter] = field(default_factory=list)
    problems: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.text_terms or self.exclude_terms or self.app_filters
            or self.project_filters or self.date_filters or self.duration_filters
        )

    @property
    def has_filters(self) -> bool:
        return bool(
            self.app_filters or self.project_filters
            or self.date_filters or self.duration_filters
        )


@dataclass(frozen=True)
class QueryValidation:
    """Validity verdict for a query string."""
    is_valid: bool
    error_message: Optional[str] = None

    @classmethod
    def valid(cls) -> "QueryValidation":
        return cls(True)

    @classmethod
    def invalid(cls, reason: str) -> "QueryValidation":
        return cls(False, reason)


APP_KEYS = {"app", "application"}
PROJECT_KEYS = {"project", "proj"}
DATE_KEYS = {
    "after": DateFilterKind.AFTER,
    "since": DateFilterKind.AFTER,
    "before": DateFilterKind.BEFORE,
    "until": DateFilterKind.BEFORE,
    "on": DateFilterKind.ON,
    "date": DateFilterKind.ON,
}
DURATION_KEYS = {
    "duration": DurationFilterKind.EQUAL_TO,
    "dur": DurationFilterKind.EQUAL_TO,
    "minduration": DurationFilterKind.GREATER_THAN,
    "mindur": DurationFilterKind.GREATER_THAN,
    "maxduration": DurationFilterKind.LESS_THAN,
    "maxdur": DurationFilterKind.LESS_THAN,
}

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%d-%m-%Y",
)

RELATIVE_UNITS = {"d": 1, "w": 7, "m": 30, "y": 365}

# Digit runs are bounded so int() and timedelta() stay within range
_RELATIVE_RE = re.compile(r"^(\d{1,9})([dwmy])$", re.IGNORECASE)
_COMPOUND_DURATION_RE = re.compile(r"^(\d{1,9})h(\d{1,9})m$")
_UNIT_DURATION_RE = re.compile(r"^(\d{1,9}(?:\.\d{0,9})?)([hms])$")
_BARE_NUMBER_RE = re.compile(r"^\d{1,9}(?:\.\d{1,9})?$")
_DURATION_COMPARISON_RE = re.compile(r"^(duration|dur)([<>])(.*)$", re.IGNORECASE)

DURATION_UNITS = {"h": 3600, "m": 60, "s": 1}


def split_query(query: str) -> List[str]:
    """
    Split on whitespace, keeping double-quoted spans inside one token.

    An unclosed quote swallows the rest of the input.
    """
    tokens: List[str] = []
    current: List[str] = []
    in_quotes = False

    for char in query:
        if char == '"':
            in_quotes = not in_quotes
            current.append(char)
        elif char.isspace() and not in_quotes:
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)

    if current:
        tokens.append("".join(current))
    return tokens


def strip_quotes(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    if value.startswith('"'):
        return value[1:]
    return value


def parse_duration(value: str) -> Optional[float]:
    """Parse ``1h30m``, ``90m``, ``1.5h``, ``45s`` or bare minutes into seconds."""
    text = value.strip().lower()

    match = _COMPOUND_DURATION_RE.match(text)
    if match:
        return float(int(match.group(1)) * 3600 + int(match.group(2)) * 60)

    match = _UNIT_DURATION_RE.match(text)
    if match:
        return float(match.group(1)) * DURATION_UNITS[match.group(2)]

    if _BARE_NUMBER_RE.match(text):
        return float(text) * 60

    return None


class QueryParser:
    """Parser and validator for the search query mini-language."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or datetime.now

    def parse(self, query: str) -> ParsedQuery:
        """Parse a raw query string. Never raises."""
        return self._classify(split_query(query or ""), query or "")

    def validate(self, query: str) -> QueryValidation:
        """Validate query syntax and return a verdict with a specific reason."""
        if not query or not query.strip():
            return QueryValidation.invalid("Query cannot be empty")

        parsed = self.parse(query)
        if parsed.problems:
            return QueryValidation.invalid(parsed.problems[0])
        if parsed.is_empty:
            return QueryValidation.invalid("Query cannot be empty")
        return QueryValidation.valid()

    def parse_date(self, value: str) -> Optional[datetime]:
        """Parse an absolute, named or relative date into a day start."""
        text = value.strip()

        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue

        today = self._clock().replace(hour=0, minute=0, second=0, microsecond=0)
        named = text.lower()
        if named == "today":
            return today
        if named == "yesterday":
            return today - timedelta(days=1)
        if named == "tomorrow":
            return today + timedelta(days=1)
        if named == "thisweek":
            return today - timedelta(days=today.weekday())
        if named == "lastweek":
            return today - timedelta(days=today.weekday() + 7)
        if named == "thismonth":
            return today.replace(day=1)
        if named == "lastmonth":
            first = today.replace(day=1)
            return (first - timedelta(days=1)).replace(day=1)

        match = _RELATIVE_RE.match(text)
        if match:
            days = int(match.group(1)) * RELATIVE_UNITS[match.group(2).lower()]
            try:
                return today - timedelta(days=days)
            except OverflowError:
                return None

        return None

    def _classify(self, tokens: List[str], raw: str) -> ParsedQuery:
        parsed = ParsedQuery()

        for token in tokens:
            if token.startswith("-"):
                term = token[1:]
                if term:
                    parsed.exclude_terms.append(term)
            elif ":" in token:
                self._classify_filter(token, parsed)
            elif _DURATION_COMPARISON_RE.match(token):
                self._classify_duration_comparison(token, parsed)
            elif token.startswith('"'):
                phrase = strip_quotes(token)
                if phrase:
                    parsed.text_terms.append(phrase)
            else:
                parsed.text_terms.append(token)

        if raw.count('"') % 2 != 0:
            parsed.problems.append("Unmatched quotation marks")

        return parsed

    def _classify_filter(self, token: str, parsed: ParsedQuery) -> None:
        key, value = token.split(":", 1)
        key = key.lower()
        value = strip_quotes(value)

        known = key in APP_KEYS or key in PROJECT_KEYS or key in DATE_KEYS or key in DURATION_KEYS
        if not known:
            # Unknown key: the whole token is plain text
            parsed.text_terms.append(token)
            return

        if not value:
            parsed.problems.append(f"Invalid filter syntax: {token}")
            return

        if key in APP_KEYS:
            parsed.app_filters.append(value)
        elif key in PROJECT_KEYS:
            parsed.project_filters.append(value)
        elif key in DATE_KEYS:
            date = self.parse_date(value)
            if date is None:
                parsed.problems.append(f"Invalid date format in filter: {token}")
            else:
                parsed.date_filters.append(DateFilter(DATE_KEYS[key], date))
        else:
            seconds = parse_duration(value)
            if seconds is None:
                parsed.problems.append(f"Invalid duration format in filter: {token}")
            else:
                parsed.duration_filters.append(DurationFilter(DURATION_KEYS[key], seconds))

    def _classify_duration_comparison(self, token: str, parsed: ParsedQuery) -> None:
        match = _DURATION_COMPARISON_RE.match(token)
        operator, value = match.group(2), match.group(3)
        seconds = parse_duration(value) if value else None
        if seconds is None:
            parsed.problems.append(f"Invalid duration format in filter: {token}")
            return
        kind = DurationFilterKind.GREATER_THAN if operator == ">" else DurationFilterKind.LESS_THAN
        parsed.duration_filters.append(DurationFilter(kind, seconds))


def describe(parsed: ParsedQuery) -> List[Tuple[str, str]]:
    """Flatten a parsed query into (kind, value) rows for display."""
    rows: List[Tuple[str, str]] = []
    rows.extend(("text", term) for term in parsed.text_terms)
    rows.extend(("exclude", term) for term in parsed.exclude_terms)
    rows.extend(("app", value) for value in parsed.app_filters)
    rows.extend(("project", value) for value in parsed.project_filters)
    rows.extend(
        (f"date:{f.kind.value}", f.date.strftime("%Y-%m-%d")) for f in parsed.date_filters
    )
    rows.extend(
        (f"duration:{f.kind.value}", f"{f.seconds:g}s") for f in parsed.duration_filters
    )
    rows.extend(("problem", problem) for problem in parsed.problems)
    return rows
