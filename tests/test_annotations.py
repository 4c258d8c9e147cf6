import pytest
from sqlalchemy.exc import IntegrityError

from db.exceptions import DuplicateTagError
from conftest import make_entry


@pytest.fixture
async def entry_id(repo):
    await repo.insert(make_entry())
    return (await repo.query())[0].id


@pytest.fixture
async def second_entry_id(repo):
    await repo.insert(make_entry(video_id="bbbbbbbbbbb"))
    return (await repo.get_by_video_id("bbbbbbbbbbb"))[0].id


class TestNotes:
    async def test_add_and_list(self, notes, entry_id):
        first = await notes.add(entry_id, "first note")
        second = await notes.add(entry_id, "second note")
        listed = await notes.get_by_event(entry_id)
        assert [n.id for n in listed] == [second.id, first.id]
        assert listed[0].content == "second note"
        assert await notes.count_for_event(entry_id) == 2

    async def test_add_to_missing_entry(self, notes):
        assert await notes.add(999, "orphan") is None

    async def test_empty_content_rejected(self, notes, entry_id):
        with pytest.raises(ValueError):
            await notes.add(entry_id, "   ")

    async def test_update(self, notes, entry_id):
        note = await notes.add(entry_id, "draft")
        updated = await notes.update(note.id, "final")
        assert updated.content == "final"
        assert updated.updated_at >= note.created_at
        assert (await notes.get_by_id(note.id)).content == "final"

    async def test_update_missing(self, notes):
        assert await notes.update(999, "text") is None

    async def test_delete(self, notes, entry_id):
        note = await notes.add(entry_id, "gone soon")
        assert await notes.delete(note.id) is True
        assert await notes.delete(note.id) is False
        assert await notes.get_by_id(note.id) is None

    async def test_delete_all_for_event(self, notes, entry_id, second_entry_id):
        await notes.add(entry_id, "one")
        await notes.add(entry_id, "two")
        await notes.add(second_entry_id, "other")
        assert await notes.delete_all_for_event(entry_id) == 2
        assert await notes.count_for_event(entry_id) == 0
        assert await notes.count_for_event(second_entry_id) == 1


class TestTags:
    async def test_create(self, tags):
        tag = await tags.create("music", color="#ff0000")
        assert tag.id is not None
        assert tag.color == "#ff0000"
        assert (await tags.get_by_name("music")).id == tag.id

    async def test_duplicate_name(self, tags):
        await tags.create("music")
        with pytest.raises(DuplicateTagError):
            await tags.create("music")

    async def test_names_are_case_sensitive(self, tags):
        await tags.create("Music")
        assert (await tags.create("music")).name == "music"

    async def test_empty_name_rejected(self, tags):
        with pytest.raises(ValueError):
            await tags.create("  ")

    async def test_get_or_create_is_idempotent(self, tags):
        first = await tags.get_or_create("later")
        second = await tags.get_or_create("later")
        assert first.id == second.id
        assert len(await tags.list()) == 1

    async def test_exists(self, tags):
        await tags.create("music")
        assert await tags.exists("music")
        assert not await tags.exists("cooking")

    async def test_list_is_alphabetical(self, tags):
        for name in ("zeta", "alpha", "mid"):
            await tags.create(name)
        assert [t.name for t in await tags.list()] == ["alpha", "mid", "zeta"]

    async def test_search_ignores_case(self, tags):
        await tags.create("Music")
        await tags.create("podcast")
        assert [t.name for t in await tags.search("MUS")] == ["Music"]
        assert await tags.search("nothing") == []

    async def test_list_with_counts(self, tags, video_tags, entry_id, second_entry_id):
        popular = await tags.create("popular")
        single = await tags.create("single")
        await tags.create("unused")
        await video_tags.assign(entry_id, popular.id)
        await video_tags.assign(second_entry_id, popular.id)
        await video_tags.assign(entry_id, single.id)

        counts = {t.name: t.video_count for t in await tags.list_with_counts()}
        assert counts == {"popular": 2, "single": 1, "unused": 0}

    async def test_rename(self, tags):
        tag = await tags.create("old")
        renamed = await tags.rename(tag.id, "new")
        assert renamed.name == "new"
        assert await tags.get_by_name("old") is None

    async def test_rename_collision(self, tags):
        await tags.create("taken")
        tag = await tags.create("free")
        with pytest.raises(DuplicateTagError):
            await tags.rename(tag.id, "taken")
        assert (await tags.get_by_id(tag.id)).name == "free"

    async def test_update_color(self, tags):
        tag = await tags.create("music")
        assert (await tags.update_color(tag.id, "#00ff00")).color == "#00ff00"
        assert await tags.update_color(999, "#00ff00") is None

    async def test_delete_cascades_assignments(self, tags, video_tags, entry_id):
        tag = await tags.create("temp")
        await video_tags.assign(entry_id, tag.id)
        assert await tags.delete(tag.id) is True
        assert await video_tags.get_tags_for_video(entry_id) == []
        assert await tags.delete(tag.id) is False


class TestVideoTags:
    async def test_assign_is_idempotent(self, tags, video_tags, entry_id):
        tag = await tags.create("music")
        assert await video_tags.assign(entry_id, tag.id) is True
        assert await video_tags.assign(entry_id, tag.id) is True
        assert await video_tags.count_by_tag(tag.id) == 1
        assert await video_tags.has_tag(entry_id, tag.id)

    async def test_assign_unknown_ids(self, tags, video_tags, entry_id):
        tag = await tags.create("music")
        assert await video_tags.assign(999, tag.id) is False
        assert await video_tags.assign(entry_id, 999) is False

    async def test_remove(self, tags, video_tags, entry_id):
        tag = await tags.create("music")
        await video_tags.assign(entry_id, tag.id)
        assert await video_tags.remove(entry_id, tag.id) is True
        assert await video_tags.remove(entry_id, tag.id) is False
        assert not await video_tags.has_tag(entry_id, tag.id)

    async def test_tags_for_video_are_alphabetical(self, tags, video_tags, entry_id):
        for name in ("zeta", "alpha"):
            await video_tags.assign(entry_id, (await tags.create(name)).id)
        assert [t.name for t in await video_tags.get_tags_for_video(entry_id)] == ["alpha", "zeta"]

    async def test_set_video_tags_replaces(self, tags, video_tags, entry_id):
        a = await tags.create("a")
        b = await tags.create("b")
        c = await tags.create("c")
        await video_tags.set_video_tags(entry_id, [a.id, b.id])
        await video_tags.set_video_tags(entry_id, [b.id, c.id, c.id])
        assert [t.name for t in await video_tags.get_tags_for_video(entry_id)] == ["b", "c"]

        await video_tags.set_video_tags(entry_id, [])
        assert await video_tags.get_tags_for_video(entry_id) == []

    async def test_set_video_tags_unknown_tag_keeps_old_set(self, tags, video_tags, entry_id):
        a = await tags.create("a")
        await video_tags.set_video_tags(entry_id, [a.id])
        with pytest.raises(IntegrityError):
            await video_tags.set_video_tags(entry_id, [999])
        assert [t.name for t in await video_tags.get_tags_for_video(entry_id)] == ["a"]

    async def test_bulk_assign_and_remove(self, tags, video_tags, entry_id, second_entry_id):
        tag = await tags.create("batch")
        assert await video_tags.bulk_assign([entry_id, second_entry_id, 999], tag.id) == 2
        assert await video_tags.get_video_ids_for_tag(tag.id) == sorted([entry_id, second_entry_id])
        assert await video_tags.bulk_remove([entry_id, 999], tag.id) == 1
        assert await video_tags.get_video_ids_for_tag(tag.id) == [second_entry_id]
