"""SQLAlchemy database models"""

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Boolean,
    ForeignKey,
    Index,
    UniqueConstraint,
    CheckConstraint,
    PrimaryKeyConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone

Base = declarative_base()


def utc_now_iso() -> str:
    """Current UTC time as a fixed-width ISO-8601 string with millisecond precision"""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class WatchHistory(Base):
    """One observed viewing of one video at one instant"""

    __tablename__ = "watch_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_id = Column(String(32), nullable=False)
    title = Column(Text, nullable=False)
    channel_name = Column(Text, nullable=True)
    channel_url = Column(Text, nullable=True)
    watched_at = Column(String(40), nullable=False)  # ISO-8601, compared lexicographically
    thumbnail_url = Column(Text, nullable=True)
    video_url = Column(Text, nullable=False)
    is_ad = Column(Boolean, nullable=False, default=False)
    source = Column(String(20), nullable=False)  # 'takeout' or 'playwright'
    created_at = Column(String(40), nullable=False, default=utc_now_iso)
    updated_at = Column(String(40), nullable=False, default=utc_now_iso)

    notes = relationship(
        "Note", back_populates="watch_history", passive_deletes=True, order_by="Note.id"
    )
    video_tags = relationship("VideoTag", back_populates="watch_history", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("video_id", "watched_at", name="unique_video_watched"),
        CheckConstraint("source IN ('takeout', 'playwright')", name="ck_watch_history_source"),
        Index("idx_watch_history_watched_at", "watched_at"),
        Index("idx_watch_history_video_id", "video_id"),
        Index("idx_watch_history_title", "title"),
        Index("idx_watch_history_channel_name", "channel_name"),
    )

    @property
    def url(self) -> str:
        return self.video_url

    def __repr__(self) -> str:
        return f"WatchHistory(id={self.id!r}, video_id={self.video_id!r}, watched_at={self.watched_at!r})"


class Note(Base):
    """Free-form note attached to a watch history entry"""

    __tablename__ = "notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    watch_history_id = Column(
        Integer, ForeignKey("watch_history.id", ondelete="CASCADE"), nullable=False
    )
    content = Column(Text, nullable=False)
    created_at = Column(String(40), nullable=False, default=utc_now_iso)
    updated_at = Column(String(40), nullable=False, default=utc_now_iso)

    watch_history = relationship("WatchHistory", back_populates="notes")

    __table_args__ = (
        Index("idx_notes_watch_history_id", "watch_history_id"),
    )


class Tag(Base):
    """User-defined label, shared across all entries"""

    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    color = Column(String(32), nullable=True)  # optional hex color for UI
    created_at = Column(String(40), nullable=False, default=utc_now_iso)

    video_tags = relationship("VideoTag", back_populates="tag", passive_deletes=True)

    __table_args__ = (
        Index("idx_tags_name", "name"),
    )

    def __repr__(self) -> str:
        return f"Tag(id={self.id!r}, name={self.name!r})"


class VideoTag(Base):
    """Association between a watch history entry and a tag"""

    __tablename__ = "video_tags"

    watch_history_id = Column(
        Integer, ForeignKey("watch_history.id", ondelete="CASCADE"), nullable=False
    )
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(String(40), nullable=False, default=utc_now_iso)

    watch_history = relationship("WatchHistory", back_populates="video_tags")
    tag = relationship("Tag", back_populates="video_tags")

    __table_args__ = (
        PrimaryKeyConstraint("watch_history_id", "tag_id", name="pk_video_tags"),
        Index("idx_video_tags_watch_history_id", "watch_history_id"),
        Index("idx_video_tags_tag_id", "tag_id"),
    )


class SyncMeta(Base):
    """Key/value sync state (watermarks, schema version)"""

    __tablename__ = "sync_meta"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
