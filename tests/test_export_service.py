import json

import pytest
from sqlalchemy import event

from db.database import Database
from history import ExportService, WatchHistoryRepository, NotesRepository, VideoTagsRepository
from conftest import make_entry, db_url


@pytest.fixture
async def annotated(repo, notes, tags, video_tags):
    """One entry with two notes and two tags, plus an unannotated entry"""
    await repo.insert(make_entry(video_id="aaaaaaaaaaa", watched_at="2024-01-15T10:30:00.000Z",
                                 title="Café tour ☕"))
    await repo.insert(make_entry(video_id="bbbbbbbbbbb", watched_at="2024-01-14T10:30:00.000Z",
                                 is_ad=True))
    entry = await repo.get_by_natural_key("aaaaaaaaaaa", "2024-01-15T10:30:00.000Z")
    await notes.add(entry.id, "older note")
    await notes.add(entry.id, "newer note")
    for name in ("travel", "coffee"):
        await video_tags.assign(entry.id, (await tags.create(name)).id)
    return entry


async def test_export_all(export_service, annotated):
    result = await export_service.export_all()
    assert [e["videoId"] for e in result.entries] == ["aaaaaaaaaaa", "bbbbbbbbbbb"]

    first = result.entries[0]
    assert first["notes"] == ["newer note", "older note"]
    assert first["tags"] == ["coffee", "travel"]
    assert first["title"] == "Café tour ☕"
    assert result.entries[1]["isAd"] is True
    assert result.entries[1]["notes"] == []

    assert result.stats.to_dict() == {
        "totalEntries": 2,
        "entriesWithNotes": 1,
        "entriesWithTags": 1,
        "totalNotes": 2,
        "totalTags": 2,
    }


async def test_export_batches_cover_every_entry(db, repo):
    await repo.bulk_insert([
        make_entry(video_id=f"vid{i:08d}", watched_at=f"2024-01-{i + 1:02d}T00:00:00.000Z")
        for i in range(7)
    ])
    result = await ExportService(db, batch_size=3).export_all()
    assert len(result.entries) == 7
    assert len({e["videoId"] for e in result.entries}) == 7


async def test_jsonl_format(export_service, annotated):
    text = await export_service.export_to_jsonl()
    assert text.endswith("\n")
    lines = text.splitlines()
    assert len(lines) == 2
    record = json.loads(lines[0])
    assert set(record) == {
        "videoId", "title", "url", "channelName", "channelUrl", "thumbnailUrl",
        "watchedAt", "isAd", "source", "notes", "tags",
    }
    # non-ASCII kept as UTF-8
    assert "☕" in lines[0]


async def test_export_empty_store(export_service):
    assert await export_service.export_to_jsonl() == ""
    assert (await export_service.export_all()).stats.total_entries == 0


async def test_round_trip_into_fresh_store(tmp_path, export_service, annotated):
    text = await export_service.export_to_jsonl()

    async with Database(db_url(tmp_path / "fresh.db")) as fresh:
        result = await ExportService(fresh).import_from_jsonl(text)
        assert result.to_dict() == {
            "imported": 2,
            "duplicates": 0,
            "notesCreated": 2,
            "tagsCreated": 2,
            "tagAssignments": 2,
            "errors": [],
        }

        imported = await WatchHistoryRepository(fresh).get_by_natural_key(
            "aaaaaaaaaaa", "2024-01-15T10:30:00.000Z"
        )
        for attr in ("video_id", "title", "video_url", "channel_name", "channel_url",
                     "thumbnail_url", "watched_at", "is_ad", "source"):
            assert getattr(imported, attr) == getattr(annotated, attr)

        notes = await NotesRepository(fresh).get_by_event(imported.id)
        assert [n.content for n in notes] == ["newer note", "older note"]
        tags = await VideoTagsRepository(fresh).get_tags_for_video(imported.id)
        assert {t.name for t in tags} == {"travel", "coffee"}

        assert await ExportService(fresh).export_to_jsonl() == text


async def test_reimport_duplicates_notes_not_tags(export_service, notes, video_tags, annotated):
    text = await export_service.export_to_jsonl()
    result = await export_service.import_from_jsonl(text)

    assert result.imported == 0
    assert result.duplicates == 2
    assert result.notes_created == 2
    assert result.tags_created == 0
    assert result.tag_assignments == 0
    assert await notes.count_for_event(annotated.id) == 4
    assert len(await video_tags.get_tags_for_video(annotated.id)) == 2


async def test_reimport_skipping_existing_notes(export_service, notes, annotated):
    text = await export_service.export_to_jsonl()
    result = await export_service.import_from_jsonl(text, skip_existing_notes=True)
    assert result.notes_created == 0
    assert await notes.count_for_event(annotated.id) == 2


async def test_malformed_lines_do_not_abort(export_service, repo):
    good = json.dumps({
        "videoId": "aaaaaaaaaaa",
        "title": "Good",
        "url": "https://www.youtube.com/watch?v=aaaaaaaaaaa",
        "watchedAt": "2024-01-15T10:30:00.000Z",
        "isAd": False,
        "source": "playwright",
        "notes": ["hello"],
        "tags": ["new-tag"],
    })
    missing_title = json.dumps({
        "videoId": "bbbbbbbbbbb",
        "url": "https://www.youtube.com/watch?v=bbbbbbbbbbb",
        "watchedAt": "2024-01-15T10:30:00.000Z",
        "source": "takeout",
    })
    text = "\n".join(["{not json", good, "", "[1, 2]", missing_title, '{"source": "fax"}']) + "\n"

    result = await export_service.import_from_jsonl(text)

    assert result.imported == 1
    assert result.notes_created == 1
    assert result.tags_created == 1
    assert result.tag_assignments == 1
    assert [e["index"] for e in result.errors] == [0, 3, 4, 5]
    assert await repo.count() == 1


def _line(video_id, **overrides):
    record = {
        "videoId": video_id,
        "title": f"Video {video_id}",
        "url": f"https://www.youtube.com/watch?v={video_id}",
        "watchedAt": "2024-01-15T10:30:00.000Z",
        "isAd": False,
        "source": "takeout",
        "notes": [],
        "tags": [],
    }
    record.update(overrides)
    return json.dumps(record)


async def test_wrongly_typed_line_does_not_abort(export_service, repo):
    text = "\n".join([
        _line("aaaaaaaaaaa"),
        _line("bbbbbbbbbbb", title={"nested": 1}),
        _line("ccccccccccc", channelName=["x"]),
        _line("ddddddddddd"),
    ])

    result = await export_service.import_from_jsonl(text)

    assert result.imported == 2
    assert [e["index"] for e in result.errors] == [1, 2]
    assert {e.video_id for e in await repo.query()} == {"aaaaaaaaaaa", "ddddddddddd"}


async def test_ad_flag_strings_are_rejected(export_service, repo):
    text = "\n".join([
        _line("aaaaaaaaaaa", isAd="false"),
        _line("bbbbbbbbbbb", isAd="0"),
        _line("ccccccccccc", isAd=0),
        _line("ddddddddddd", isAd=1),
    ])

    result = await export_service.import_from_jsonl(text)

    assert [e["index"] for e in result.errors] == [0, 1]
    assert "isAd" in result.errors[0]["message"]
    assert await repo.get_by_natural_key("aaaaaaaaaaa", "2024-01-15T10:30:00.000Z") is None
    not_ad = await repo.get_by_natural_key("ccccccccccc", "2024-01-15T10:30:00.000Z")
    ad = await repo.get_by_natural_key("ddddddddddd", "2024-01-15T10:30:00.000Z")
    assert not_ad.is_ad is False
    assert ad.is_ad is True


async def test_export_loads_annotations_per_batch(db, repo, notes, tags, video_tags):
    await repo.bulk_insert([
        make_entry(video_id=f"vid{i:08d}", watched_at=f"2024-01-{i + 1:02d}T00:00:00.000Z")
        for i in range(6)
    ])
    tag = await tags.create("all")
    for entry in await repo.query():
        await notes.add(entry.id, f"note on {entry.video_id}")
        await video_tags.assign(entry.id, tag.id)

    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement.lower())

    event.listen(db.engine.sync_engine, "before_cursor_execute", record)
    try:
        result = await ExportService(db, batch_size=3).export_all()
    finally:
        event.remove(db.engine.sync_engine, "before_cursor_execute", record)

    assert len(result.entries) == 6
    assert all(e["notes"] and e["tags"] == ["all"] for e in result.entries)
    # two full batches, each with one notes query and one tags query
    assert len([s for s in statements if "from notes" in s]) == 2
    assert len([s for s in statements if "video_tags" in s]) == 2


async def test_file_round_trip(tmp_path, export_service, annotated):
    path = tmp_path / "export.jsonl"
    stats = await export_service.export_to_file(path)
    assert stats.total_entries == 2
    assert path.read_text(encoding="utf-8") == await export_service.export_to_jsonl()

    async with Database(db_url(tmp_path / "fresh.db")) as fresh:
        result = await ExportService(fresh).import_from_file(path)
    assert result.imported == 2
