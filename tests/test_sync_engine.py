"""End-to-end tests of the sync pipeline against in-memory fakes."""

import hashlib

import pytest
from PIL import Image

from anivia.config import Config
from anivia.errors import ConfigurationError, DatabaseError, ImageFetchError, StorageAuthError
from anivia.log_setup import console
from anivia.sync_engine import SyncEngine, write_github_output
from conftest import PUBLIC_URL, files_prop, image_block, make_page, make_png, paragraph_block, ts

PAGE_ID = "0123456789abcdef0123456789abcdef"
IMAGE_URL = "https://img.example.com/diagram.png"


@pytest.fixture
def png():
    return make_png()


@pytest.fixture
def page_with_image(notion, fetcher, png):
    fetcher.payloads[IMAGE_URL] = png
    return notion.add(make_page(), [paragraph_block("Intro"), image_block(IMAGE_URL, "Diagram")])


class TestNotionPage:
    def test_image_is_rehosted_and_body_rewritten(self, engine, page_with_image, post_store, object_store, png):
        outcome = engine.sync_notion_page(PAGE_ID)

        key = f"embedded/{hashlib.md5(png).hexdigest()}.webp"
        assert outcome.success
        assert outcome.decision == "create"
        assert outcome.images_processed == 1
        assert object_store.put_calls == [key]
        assert len(post_store.inserts) == 1
        row = post_store.inserts[0]
        assert row["content"] == f"Intro\n\n![Diagram]({PUBLIC_URL}/{key})\n"
        assert row["notion_page_id"] == PAGE_ID
        assert row["title"] == "Hello"
        assert row["last_edited_time"] == ts("2024-05-01T10:00:00")

    def test_second_run_is_a_no_op(self, engine, page_with_image, notion, post_store, object_store, fetcher):
        engine.sync_notion_page(PAGE_ID)
        fetches, puts = len(fetcher.calls), len(object_store.put_calls)

        outcome = engine.sync_notion_page(PAGE_ID)

        assert outcome.skipped
        assert outcome.decision == "skip_unchanged"
        assert len(fetcher.calls) == fetches
        assert len(object_store.put_calls) == puts
        assert len(post_store.inserts) == 1
        assert post_store.updates == []
        # blocks are only read for pages that get written
        assert notion.block_fetches == [PAGE_ID]

    def test_edited_page_reuses_stored_image(self, engine, page_with_image, notion, post_store, object_store):
        engine.sync_notion_page(PAGE_ID)
        page_with_image.last_edited_time = ts("2024-06-01T00:00:00")

        outcome = engine.sync_notion_page(PAGE_ID)

        assert outcome.decision == "update"
        assert len(object_store.put_calls) == 1
        assert post_store.updates[0][0] == 1

    def test_force_from_config(self, engine, page_with_image, post_store):
        engine.sync_notion_page(PAGE_ID)
        engine.config.force_sync = True
        assert engine.sync_notion_page(PAGE_ID).decision == "update"

    def test_failed_image_keeps_original_url(self, engine, notion, fetcher, post_store, png):
        bad_url = "https://img.example.com/missing.png"
        fetcher.payloads[IMAGE_URL] = png
        fetcher.payloads[bad_url] = ImageFetchError(bad_url, "HTTP 404", status=404)
        notion.add(make_page(), [image_block(IMAGE_URL), image_block(bad_url)])

        outcome = engine.sync_notion_page(PAGE_ID)

        assert outcome.success
        assert outcome.images_processed == 1
        content = post_store.inserts[0]["content"]
        assert f"![]({bad_url})" in content
        assert IMAGE_URL not in content

    def test_unpublished_page_is_not_read_or_written(self, engine, notion, post_store):
        notion.add(make_page(published=False), [image_block(IMAGE_URL)])

        outcome = engine.sync_notion_page(PAGE_ID)

        assert outcome.skipped
        assert outcome.decision == "skip_unpublished"
        assert notion.block_fetches == []
        assert post_store.lookups == 0

    def test_missing_page_is_a_failed_outcome(self, engine):
        outcome = engine.sync_notion_page("ffffffffffffffffffffffffffffffff")
        assert not outcome.success
        assert "not found" in outcome.message

    def test_storage_auth_failure_aborts(self, engine, page_with_image, object_store, post_store):
        object_store.auth_failure = True
        with pytest.raises(StorageAuthError):
            engine.sync_notion_page(PAGE_ID)
        assert post_store.inserts == []

    def test_cover_and_gallery(self, engine, notion, fetcher, post_store):
        cover, gallery = make_png((0, 255, 0)), make_png((0, 0, 255))
        fetcher.payloads.update({"https://x.test/cover.png": cover, "https://x.test/g.png": gallery})
        notion.add(make_page(Cover=files_prop("https://x.test/cover.png"), Gallery=files_prop("https://x.test/g.png")))

        engine.sync_notion_page(PAGE_ID)

        row = post_store.inserts[0]
        assert row["featured_img"] == f"{PUBLIC_URL}/cover/{hashlib.md5(cover).hexdigest()}.webp"
        assert row["gallery_imgs"] == [f"{PUBLIC_URL}/gallery/{hashlib.md5(gallery).hexdigest()}.webp"]


class TestNotionDatabase:
    def test_batch_continues_past_failures(self, engine, notion, post_store, tmp_path, monkeypatch):
        output = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_OUTPUT", str(output))
        notion.add(make_page(page_id="a" * 32, title="Good"), [paragraph_block("ok")])
        notion.add(make_page(page_id="b" * 32, title="Broken"), [paragraph_block("never read")])
        notion.add(make_page(page_id="c" * 32, title="Draft", published=False))
        notion.failing_blocks.add("b" * 32)

        report = engine.sync_notion_database("d" * 32, ts("2024-01-01T00:00:00"), ts("2024-12-31T00:00:00"))

        assert (report.created, report.updated, report.skipped, report.failed) == (1, 0, 1, 1)
        assert not report.success
        assert report.failures == ["b" * 32 + ": Notion API rate limit exceeded"]
        assert post_store.sync_time_touches == 1
        assert output.read_text() == "has_updates=true\n"

    def test_window_excludes_pages_outside_range(self, engine, notion, post_store):
        notion.add(make_page(last_edited="2023-01-01T00:00:00"))
        report = engine.sync_notion_database("d" * 32, ts("2024-01-01T00:00:00"), ts("2024-12-31T00:00:00"))
        assert report.total == 0
        assert post_store.inserts == []

    def test_no_updates(self, engine, notion, tmp_path, monkeypatch):
        output = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_OUTPUT", str(output))
        notion.add(make_page(published=False))

        report = engine.sync_notion_database("d" * 32, ts("2024-01-01T00:00:00"), ts("2024-12-31T00:00:00"))

        assert report.success
        assert not report.has_updates
        assert output.read_text() == "has_updates=false\n"

    def test_oversized_image_keeps_original_url(self, engine, notion, fetcher, post_store, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 50)
        huge_url = "https://img.example.com/huge.png"
        fetcher.payloads[huge_url] = make_png(size=(16, 16))
        fetcher.payloads[IMAGE_URL] = make_png()
        notion.add(make_page(page_id="a" * 32, title="Huge"), [image_block(huge_url)])
        notion.add(make_page(page_id="b" * 32, title="Small"), [image_block(IMAGE_URL)])

        report = engine.sync_notion_database("d" * 32, ts("2024-01-01T00:00:00"), ts("2024-12-31T00:00:00"))

        assert (report.created, report.failed) == (2, 0)
        rows = {row["title"]: row for row in post_store.inserts}
        assert rows["Huge"]["content"] == f"![]({huge_url})\n"
        assert rows["Small"]["content"].startswith(f"![]({PUBLIC_URL}/embedded/")

    def test_summary_reports_notion_requests(self, engine, notion):
        notion.add(make_page(page_id="a" * 32, title="Good"), [paragraph_block("ok")])
        notion.add(make_page(page_id="c" * 32, title="Draft", published=False))

        with console.capture() as capture:
            engine.sync_notion_database("d" * 32, ts("2024-01-01T00:00:00"), ts("2024-12-31T00:00:00"))

        # one query plus the block read of the published page
        assert notion.request_count == 2
        assert "Notion API requests" in capture.get()


class TestLocal:
    def test_directory_sync(self, engine, tmp_path, fetcher, post_store, object_store, png):
        (tmp_path / "pic.png").write_bytes(png)
        fetcher.payloads[str((tmp_path / "pic.png").resolve())] = png
        (tmp_path / "a.md").write_text("---\nslug: a\npublished: true\ntitle: A\n---\nSee ![[pic.png]]\n")
        (tmp_path / "b.md").write_text("---\nslug: b\n---\nUnpublished\n")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "c.md").write_text("---\ntitle: No slug\npublished: true\n---\n")
        (tmp_path / ".obsidian").mkdir()
        (tmp_path / ".obsidian" / "ignored.md").write_text("---\nslug: x\npublished: true\n---\n")

        report = engine.sync_local_path(tmp_path)

        assert report.total == 3
        assert (report.created, report.skipped, report.failed) == (1, 1, 1)
        row = post_store.inserts[0]
        key = f"embedded/{hashlib.md5(png).hexdigest()}.webp"
        assert row["slug"] == "a"
        assert row["notion_page_id"] == ""
        assert row["post_origin"] == "obsidian"
        assert row["content"] == f"See ![]({PUBLIC_URL}/{key})\n"
        assert object_store.put_calls == [key]

    def test_non_recursive(self, engine, tmp_path, post_store):
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "c.md").write_text("---\nslug: c\npublished: true\n---\n")
        assert engine.sync_local_path(tmp_path, recursive=False).total == 0

    def test_single_file_rerun_is_skipped(self, engine, tmp_path, post_store):
        note = tmp_path / "n.md"
        note.write_text("---\nslug: n\npublished: true\n---\nBody\n")

        assert engine.sync_local_file(note).decision == "create"
        assert engine.sync_local_file(note).decision == "skip_unchanged"

    def test_invalid_front_matter_is_a_failed_outcome(self, engine, tmp_path):
        note = tmp_path / "bad.md"
        note.write_text("---\nslug: [oops\n---\n")
        outcome = engine.sync_local_file(note)
        assert not outcome.success
        assert outcome.title == "bad.md"

    def test_write_failure_reports_the_note(self, engine, tmp_path, post_store, monkeypatch):
        def refuse(record):
            raise DatabaseError("connection lost")

        monkeypatch.setattr(post_store, "insert", refuse)
        note = tmp_path / "n.md"
        note.write_text("---\nslug: n\ntitle: Note\npublished: true\n---\nBody\n")

        outcome = engine.sync_local_file(note)

        assert not outcome.success
        assert outcome.natural_key == "n"
        assert outcome.title == "Note"
        assert outcome.message == "connection lost"


class TestCollaborators:
    def test_missing_settings_raise_configuration_error(self):
        engine = SyncEngine(Config())
        with pytest.raises(ConfigurationError):
            engine.notion_api
        with pytest.raises(ConfigurationError):
            engine.store
        with pytest.raises(ConfigurationError):
            engine.deduplicator


def test_write_github_output_outside_actions(monkeypatch):
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
    assert write_github_output("has_updates", "true") is False
