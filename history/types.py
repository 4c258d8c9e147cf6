"""Record and option types shared by the watch history repositories"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Dict, Any

from db.exceptions import RecordValidationError
from db.models import Tag


class EntrySource(str, Enum):
    """Where a watch history entry came from"""
    TAKEOUT = "takeout"        # bulk historical export
    PLAYWRIGHT = "playwright"  # incremental browser scrape


ORDER_COLUMNS = ("watched_at", "title", "channel_name")
ORDER_DIRECTIONS = ("asc", "desc")
TAG_LOGIC = ("AND", "OR")

# portable/camelCase key -> attribute name
_CAMEL_KEYS = {
    "videoId": "video_id",
    "channelName": "channel_name",
    "channelUrl": "channel_url",
    "thumbnailUrl": "thumbnail_url",
    "watchedAt": "watched_at",
    "isAd": "is_ad",
}


def _parse_flag(value: Any) -> bool:
    """Booleans as given; 0/1 accepted; anything else (including "false") is rejected"""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise RecordValidationError(f"isAd must be a boolean, got {value!r}")


@dataclass
class WatchHistoryEntry:
    """Normalized candidate record handed to the repository by an ingestor"""
    video_id: str
    title: str
    url: str
    watched_at: str
    source: EntrySource
    channel_name: Optional[str] = None
    channel_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    is_ad: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[EntrySource] = None) -> "WatchHistoryEntry":
        """Build an entry from snake_case or camelCase keys; ``source`` overrides the record's own"""
        values = {_CAMEL_KEYS.get(key, key): value for key, value in data.items()}
        raw_source = source or values.get("source")
        return cls(
            video_id=values.get("video_id"),
            title=values.get("title"),
            url=values.get("url") or values.get("video_url"),
            watched_at=values.get("watched_at"),
            source=EntrySource(raw_source) if raw_source is not None else None,
            channel_name=values.get("channel_name"),
            channel_url=values.get("channel_url"),
            thumbnail_url=values.get("thumbnail_url"),
            is_ad=_parse_flag(values.get("is_ad")),
        )


@dataclass
class QueryOptions:
    """Filter, sort and pagination options for watch history queries"""
    limit: Optional[int] = 50
    offset: int = 0
    order_by: str = "watched_at"
    order_dir: str = "desc"
    search: Optional[str] = None
    date_from: Optional[str] = None  # inclusive ISO-8601
    date_to: Optional[str] = None    # inclusive ISO-8601
    include_ads: bool = True
    tag_ids: Optional[List[int]] = None
    tag_logic: str = "OR"

    def __post_init__(self):
        if self.order_by not in ORDER_COLUMNS:
            raise ValueError(f"order_by must be one of {ORDER_COLUMNS}, got {self.order_by!r}")
        self.order_dir = (self.order_dir or "desc").lower()
        if self.order_dir not in ORDER_DIRECTIONS:
            raise ValueError(f"order_dir must be one of {ORDER_DIRECTIONS}, got {self.order_dir!r}")
        self.tag_logic = (self.tag_logic or "OR").upper()
        if self.tag_logic not in TAG_LOGIC:
            raise ValueError(f"tag_logic must be one of {TAG_LOGIC}, got {self.tag_logic!r}")
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be non-negative")
        if self.offset < 0:
            raise ValueError("offset must be non-negative")

    def filters_only(self) -> "QueryOptions":
        """Same filters without pagination or sort, for count()"""
        return QueryOptions(
            limit=None,
            search=self.search,
            date_from=self.date_from,
            date_to=self.date_to,
            include_ads=self.include_ads,
            tag_ids=self.tag_ids,
            tag_logic=self.tag_logic,
        )


@dataclass
class BulkInsertResult:
    inserted: int = 0
    duplicates: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TagWithCount:
    """A tag plus the number of entries it is assigned to"""
    tag: Tag
    video_count: int

    @property
    def id(self) -> int:
        return self.tag.id

    @property
    def name(self) -> str:
        return self.tag.name

    @property
    def color(self) -> Optional[str]:
        return self.tag.color


@dataclass
class ExportStats:
    total_entries: int = 0
    entries_with_notes: int = 0
    entries_with_tags: int = 0
    total_notes: int = 0
    total_tags: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalEntries": self.total_entries,
            "entriesWithNotes": self.entries_with_notes,
            "entriesWithTags": self.entries_with_tags,
            "totalNotes": self.total_notes,
            "totalTags": self.total_tags,
        }


@dataclass
class ExportResult:
    entries: List[Dict[str, Any]]
    stats: ExportStats


@dataclass
class ImportResult:
    imported: int = 0
    duplicates: int = 0
    notes_created: int = 0
    tags_created: int = 0
    tag_assignments: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imported": self.imported,
            "duplicates": self.duplicates,
            "notesCreated": self.notes_created,
            "tagsCreated": self.tags_created,
            "tagAssignments": self.tag_assignments,
            "errors": self.errors,
        }
