"""
Data types for the content vault.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional


class ProcessingStatus(str, Enum):
    """Chunking/embedding status of a document."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


# Statuses a worker may claim from (the Tier 3 handoff queue)
CLAIMABLE_STATUSES = (ProcessingStatus.PENDING.value, ProcessingStatus.FAILED.value)

# Content types that carry a publication date (extracted library content)
LIBRARY_TYPES = frozenset({"transcript", "article", "pdf", "video"})
LIBRARY_PREFIX = "library/"


def utc_now() -> str:
    """Current UTC timestamp with microseconds: YYYY-MM-DDTHH:MM:SS.ffffff.

    All timestamps in recall are UTC, stored without timezone suffix.
    Microsecond precision keeps updated_at ordering meaningful for
    back-to-back status transitions.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")


def format_utc(dt: datetime) -> str:
    """Format a datetime in the canonical stored form."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Handles the canonical format (no suffix) and ISO strings that include
    'Z' or '+00:00' suffixes.
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_date_param(value: str) -> str:
    """
    Parse a date/duration parameter and return a YYYY-MM-DD date.

    Accepts:
    - ISO 8601 duration: P3D (3 days), P1W (1 week), PT1H (1 hour), P1DT12H, etc.
    - ISO date: 2026-01-15
    - Date with slashes: 2026/01/15

    Returns:
        YYYY-MM-DD string
    """
    since = value.strip()

    if since.upper().startswith("P"):
        duration_str = since.upper()
        years = months = weeks = days = hours = minutes = seconds = 0

        if "T" in duration_str:
            date_part, time_part = duration_str.split("T", 1)
        else:
            date_part = duration_str
            time_part = ""

        for match in re.finditer(r"(\d+)([YMWD])", date_part[1:]):
            amount, unit = int(match.group(1)), match.group(2)
            if unit == "Y":
                years = amount
            elif unit == "M":
                months = amount
            elif unit == "W":
                weeks = amount
            elif unit == "D":
                days = amount

        for match in re.finditer(r"(\d+)([HMS])", time_part):
            amount, unit = int(match.group(1)), match.group(2)
            if unit == "H":
                hours = amount
            elif unit == "M":
                minutes = amount
            elif unit == "S":
                seconds = amount

        # Months and years are approximate
        total_days = years * 365 + months * 30 + weeks * 7 + days
        delta = timedelta(days=total_days, hours=hours, minutes=minutes, seconds=seconds)
        cutoff = datetime.now(timezone.utc) - delta
        return cutoff.strftime("%Y-%m-%d")

    date_str = since.replace("/", "-").split("T")[0]
    try:
        parsed = datetime.strptime(date_str, "%Y-%m-%d")
        return parsed.strftime("%Y-%m-%d")
    except ValueError:
        pass

    raise ValueError(
        f"Invalid date/duration format: {value}. "
        "Use ISO duration (P3D, PT1H, P1W) or date (2026-01-15)"
    )


def _as_list(value: Any) -> list[str]:
    """Normalize a frontmatter field that may be a scalar or a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    return [str(value)]


@dataclass
class DocumentRecord:
    """
    A stored document: the full raw body plus its processing state.

    The body is immutable once chunked; re-ingestion with a new body
    starts a fresh processing cycle.
    """
    id: str
    path: str
    body: str
    frontmatter: dict[str, Any]
    status: str
    content_hash: str
    created_at: str
    updated_at: str
    attempts: int = 0
    last_error: Optional[str] = None

    @property
    def content_type(self) -> Optional[str]:
        value = self.frontmatter.get("type")
        return str(value) if value is not None else None

    @property
    def tags(self) -> list[str]:
        return _as_list(self.frontmatter.get("tags"))

    @property
    def is_library_item(self) -> bool:
        """Extracted library content is dated by publication, not creation."""
        return self.path.startswith(LIBRARY_PREFIX) or self.content_type in LIBRARY_TYPES


@dataclass
class Chunk:
    """A bounded-length, independently embeddable slice of a document."""
    document_id: str
    chunk_index: int
    text: str
    embedding: Optional[list[float]] = None
    score: Optional[float] = None


@dataclass(frozen=True)
class SearchFilters:
    """
    Structural filters recognized by search and browse.

    Attributes:
        file_type: Match frontmatter ``type`` exactly
        tags: Match when any tag overlaps the document's tag list
        author: Case-insensitive match on ``source_author`` OR any ``guests`` entry
        source: Case-insensitive match on ``source`` or substring of ``source_url``
        after: Include documents dated on/after (ISO date or duration like P7D)
        before: Include documents dated before (ISO date or duration)

    Dates use ``published_date`` for library items and ``created_at`` otherwise.
    """
    file_type: Optional[str] = None
    tags: tuple[str, ...] = ()
    author: Optional[str] = None
    source: Optional[str] = None
    after: Optional[str] = None
    before: Optional[str] = None

    def __post_init__(self):
        # Accept any iterable of tags but store a tuple (hashable, immutable)
        if isinstance(self.tags, str):
            object.__setattr__(self, "tags", (self.tags,))
        else:
            object.__setattr__(self, "tags", tuple(self.tags or ()))
        if self.after:
            parse_date_param(self.after)
        if self.before:
            parse_date_param(self.before)

    def is_empty(self) -> bool:
        return not (
            self.file_type or self.tags or self.author
            or self.source or self.after or self.before
        )


@dataclass
class RankedResult:
    """A fused search hit. Transient, never stored."""
    document_id: str
    path: str
    score: Optional[float]
    snippet: str
    tags: list[str] = field(default_factory=list)
    updated_at: str = ""
    status: str = ProcessingStatus.PENDING.value


class ChunkLabel(str, Enum):
    """Positional label attached to a sampled chunk."""
    INTRODUCTION = "Introduction"
    MIDDLE = "Middle Section"
    END = "End Section"
    RELEVANT = "Relevant Match"
    # Included only because the whole document fits in the budget
    CONTEXT = "Context"


@dataclass
class SampledChunk:
    chunk_index: int
    text: str
    label: str
    score: Optional[float] = None


@dataclass
class SampleResult:
    """
    Chunks chosen from one document, in document order.

    ``total_chunks`` and ``shown_indices`` let a caller ask for a different
    neighborhood on the next call.
    """
    document_id: str
    path: str
    total_chunks: int
    chunks: list[SampledChunk]
    status: str = ProcessingStatus.COMPLETE.value

    @property
    def shown_indices(self) -> list[int]:
        return [c.chunk_index for c in self.chunks]


@dataclass
class GrepMatch:
    """A line match inside a document body, with surrounding lines."""
    line_number: int
    line: str
    context: list[str]


@dataclass
class SectionSearch:
    """
    Matches for a query inside one document.

    Small bodies are searched line by line (``mode == "grep"``); large ones
    through their chunks (``mode == "chunks"``).
    """
    path: str
    query: str
    mode: str
    total_matches: int = 0
    lines: list[GrepMatch] = field(default_factory=list)
    chunks: list[Chunk] = field(default_factory=list)
