"""Normalization of raw watch records into WatchHistoryEntry

Ingestors (the Takeout parser, the scrape feed) run records through these
helpers before handing them to the repository. The repository itself never
re-derives titles, ids or the ad flag.
"""

import json
import logging
import re
from typing import Optional, List, Dict, Any, Tuple

from db.exceptions import RecordValidationError
from history.types import WatchHistoryEntry, EntrySource

logger = logging.getLogger(__name__)

TITLE_PREFIX = "Watched "
AD_DETAIL_NAME = "From Google Ads"
THUMBNAIL_URL_TEMPLATE = "https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"

VIDEO_ID_PATTERNS = [
    # youtube.com/watch?v=ID or youtube.com/watch?...&v=ID
    re.compile(r"(?:youtube\.com/watch\?v=|youtube\.com/watch\?.+&v=)([a-zA-Z0-9_-]{11})"),
    # youtu.be/ID
    re.compile(r"youtu\.be/([a-zA-Z0-9_-]{11})"),
    # youtube.com/embed/ID
    re.compile(r"youtube\.com/embed/([a-zA-Z0-9_-]{11})"),
    # youtube.com/shorts/ID
    re.compile(r"youtube\.com/shorts/([a-zA-Z0-9_-]{11})"),
    # youtube.com/live/ID
    re.compile(r"youtube\.com/live/([a-zA-Z0-9_-]{11})"),
]


def extract_video_id(url: Optional[str]) -> Optional[str]:
    """Extract the 11-character video id from any recognized URL shape"""
    if not url:
        return None
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def thumbnail_url(video_id: str) -> str:
    return THUMBNAIL_URL_TEMPLATE.format(video_id=video_id)


def clean_title(raw_title: Optional[str]) -> str:
    """Strip the export's leading "Watched " marker"""
    if raw_title is None:
        return ""
    if raw_title.startswith(TITLE_PREFIX):
        return raw_title[len(TITLE_PREFIX):]
    return raw_title


def is_ad_entry(raw: Dict[str, Any]) -> bool:
    details = raw.get("details") or []
    return any(isinstance(d, dict) and d.get("name") == AD_DETAIL_NAME for d in details)


def normalize_takeout_entry(
    raw: Dict[str, Any],
    index: Optional[int] = None,
    source: EntrySource = EntrySource.TAKEOUT,
) -> WatchHistoryEntry:
    """
    Normalize one raw Takeout-style record

    Args:
        raw: Record with titleUrl, title, time, optional subtitles/details
        index: Position in the batch, carried on validation errors
        source: Provenance to stamp on the entry

    Raises:
        RecordValidationError: Missing URL or timestamp, or unrecognized URL
    """
    if not isinstance(raw, dict):
        raise RecordValidationError("Record is not an object", index)

    title_url = raw.get("titleUrl")
    if not title_url:
        raise RecordValidationError("Missing titleUrl", index)

    video_id = extract_video_id(title_url)
    if not video_id:
        raise RecordValidationError(f"Could not extract video ID from URL: {title_url}", index)

    watched_at = raw.get("time")
    if not watched_at:
        raise RecordValidationError("Missing time", index)

    subtitles = raw.get("subtitles") or []
    channel = subtitles[0] if subtitles and isinstance(subtitles[0], dict) else {}

    return WatchHistoryEntry(
        video_id=video_id,
        title=clean_title(raw.get("title")),
        url=title_url,
        watched_at=watched_at,
        source=source,
        channel_name=channel.get("name"),
        channel_url=channel.get("url"),
        thumbnail_url=thumbnail_url(video_id),
        is_ad=is_ad_entry(raw),
    )


def normalize_takeout_entries(
    raw_entries: List[Dict[str, Any]],
    source: EntrySource = EntrySource.TAKEOUT,
) -> Tuple[List[WatchHistoryEntry], List[Dict[str, Any]], Dict[str, int]]:
    """
    Normalize a batch, dropping in-batch repeats of the same (video_id, watched_at)

    Returns:
        (entries, errors, stats) where errors are {index, message} dicts
    """
    entries: List[WatchHistoryEntry] = []
    errors: List[Dict[str, Any]] = []
    seen = set()
    duplicates = 0

    for i, raw in enumerate(raw_entries):
        try:
            entry = normalize_takeout_entry(raw, i, source)
        except RecordValidationError as e:
            errors.append(e.to_dict())
            continue

        key = (entry.video_id, entry.watched_at)
        if key in seen:
            duplicates += 1
            continue
        seen.add(key)
        entries.append(entry)

    if errors:
        logger.warning(f"Skipped {len(errors)} of {len(raw_entries)} records during normalization")

    stats = {
        "total": len(raw_entries),
        "parsed": len(entries),
        "skipped": len(errors),
        "duplicates": duplicates,
    }
    return entries, errors, stats


def parse_takeout_json(
    content: str,
) -> Tuple[List[WatchHistoryEntry], List[Dict[str, Any]], Dict[str, int]]:
    """Decode a Takeout watch-history JSON array and normalize it"""
    empty_stats = {"total": 0, "parsed": 0, "skipped": 0, "duplicates": 0}
    try:
        raw_entries = json.loads(content)
    except json.JSONDecodeError as e:
        return [], [{"index": -1, "message": f"Invalid JSON: {e}"}], empty_stats

    if not isinstance(raw_entries, list):
        return [], [{"index": -1, "message": "Expected JSON array at root"}], empty_stats

    return normalize_takeout_entries(raw_entries)
