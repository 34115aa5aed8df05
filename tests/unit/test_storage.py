"""Tests for imageforge.core.storage — two-tier artifact store.

Tests cover:
- save/get consistency and the on-disk layout.
- Remote upload failures falling back to the local tier.
- Both filename policies.
- Listing order, limits and corrupt record handling.
- Best-effort cascading delete.
- Count-based and age-based retention cleanup.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from imageforge.core.artifacts import NamingPolicy
from imageforge.core.local_tier import LocalTier
from imageforge.core.storage import ArtifactStore, DeleteStatus, LocalWriteError


def _save_sequence(store, wall_clock, count: int) -> list:
    descriptors = []
    for i in range(count):
        descriptors.append(store.save(f"image-{i}".encode(), prompt=f"prompt {i}"))
        wall_clock.advance(seconds=1)
    return descriptors


# ---------------------------------------------------------------------------
# save / get
# ---------------------------------------------------------------------------


class TestSave:
    """Verify save writes both tiers and the metadata record."""

    def test_save_then_get_round_trips(self, store: ArtifactStore, png_bytes: bytes):
        saved = store.save(png_bytes, prompt="a lighthouse", mime_type="image/png")
        loaded = store.get(saved.id)

        assert loaded is not None
        assert loaded.id == saved.id
        assert loaded.filename == saved.filename
        assert loaded.mime_type == saved.mime_type
        assert loaded.size == saved.size == len(png_bytes)
        assert loaded.created_at == saved.created_at

    def test_save_writes_local_binary(self, store: ArtifactStore, png_bytes: bytes):
        saved = store.save(png_bytes, prompt="a lighthouse")
        assert store.local_tier.path_for(saved.filename).read_bytes() == png_bytes

    def test_save_writes_camel_case_record(self, store: ArtifactStore, png_bytes: bytes):
        saved = store.save(png_bytes, prompt="a lighthouse")
        record = json.loads((store.metadata_dir / f"{saved.id}.json").read_text())

        assert set(record) == {"id", "prompt", "createdAt", "filename", "mimeType", "size", "url"}
        assert record["prompt"] == "a lighthouse"
        assert record["mimeType"] == "image/png"

    def test_save_uploads_to_remote_with_metadata(
        self, store: ArtifactStore, remote_tier, png_bytes: bytes
    ):
        saved = store.save(png_bytes, prompt="a lighthouse", mime_type="image/png")

        assert remote_tier.objects[saved.filename] == png_bytes
        assert remote_tier.content_types[saved.filename] == "image/png"
        assert remote_tier.metadata[saved.filename]["prompt"] == "a lighthouse"
        assert remote_tier.metadata[saved.filename]["id"] == saved.id
        assert saved.url == f"https://storage.googleapis.com/test-bucket/{saved.filename}"

    def test_remote_failure_falls_back_to_local_url(self, store: ArtifactStore, remote_tier, png_bytes: bytes):
        remote_tier.fail_uploads = True

        saved = store.save(png_bytes, prompt="a lighthouse")

        assert saved.url == f"/files/{saved.filename}"
        assert store.get(saved.id) == saved
        assert store.local_tier.path_for(saved.filename).exists()
        assert saved.filename not in remote_tier.objects

    def test_no_remote_tier_uses_local_url(self, temp_dir: Path, png_bytes: bytes):
        store = ArtifactStore(temp_dir / "metadata", LocalTier(temp_dir / "images", url_prefix="/media/"))
        saved = store.save(png_bytes)
        assert saved.url == f"/media/{saved.filename}"

    def test_local_write_failure_raises(self, store: ArtifactStore, monkeypatch, png_bytes: bytes):
        def broken_write(filename, data):
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr(store.local_tier, "write", broken_write)

        with pytest.raises(LocalWriteError):
            store.save(png_bytes, prompt="a lighthouse")
        assert store.list() == []

    def test_ids_are_unique(self, store: ArtifactStore, png_bytes: bytes):
        ids = {store.save(png_bytes).id for _ in range(5)}
        assert len(ids) == 5


class TestNamingPolicies:
    """Content-hash uploads deduplicate, prompt-timestamp generations do not."""

    def test_content_hash_is_deterministic(self, store: ArtifactStore, wall_clock, png_bytes: bytes):
        first = store.save(png_bytes, mime_type="image/png", naming=NamingPolicy.CONTENT_HASH)
        wall_clock.advance(minutes=5)
        second = store.save(png_bytes, prompt="other", mime_type="image/png", naming=NamingPolicy.CONTENT_HASH)

        assert first.filename == second.filename
        assert first.id != second.id
        assert first.filename.endswith(".png")

    def test_prompt_timestamp_differs_over_time(self, store: ArtifactStore, wall_clock, png_bytes: bytes):
        first = store.save(png_bytes, prompt="same", naming=NamingPolicy.PROMPT_TIMESTAMP)
        wall_clock.advance(milliseconds=1)
        second = store.save(png_bytes, prompt="same", naming=NamingPolicy.PROMPT_TIMESTAMP)

        assert first.filename != second.filename

    def test_same_prompt_same_millisecond_shares_filename(self, store: ArtifactStore, png_bytes: bytes):
        first = store.save(png_bytes, prompt="same")
        second = store.save(b"different bytes", prompt="same")

        assert first.filename == second.filename
        assert first.id != second.id
        # Last writer wins on the shared binary.
        assert store.read_bytes(first) == b"different bytes"

    def test_jpeg_extension(self, store: ArtifactStore, jpeg_bytes: bytes):
        saved = store.save(jpeg_bytes, mime_type="image/jpeg", naming=NamingPolicy.CONTENT_HASH)
        assert saved.filename.endswith(".jpg")


class TestGet:
    def test_unknown_id_returns_none(self, store: ArtifactStore):
        assert store.get("5b0a5a4e-1f4e-4d8a-9c1d-3f1f9b7c2a10") is None

    def test_non_uuid_id_returns_none(self, store: ArtifactStore):
        assert store.get("../../etc/passwd") is None

    def test_corrupt_record_returns_none(self, store: ArtifactStore, png_bytes: bytes):
        saved = store.save(png_bytes)
        (store.metadata_dir / f"{saved.id}.json").write_text("{not json")
        assert store.get(saved.id) is None


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


class TestList:
    def test_newest_first_and_limit(self, store: ArtifactStore, wall_clock):
        t1, t2, t3 = _save_sequence(store, wall_clock, 3)

        assert [d.id for d in store.list(2)] == [t3.id, t2.id]
        assert [d.id for d in store.list()] == [t3.id, t2.id, t1.id]

    def test_newer_artifact_is_listed_first(self, store: ArtifactStore, wall_clock):
        _save_sequence(store, wall_clock, 4)
        wall_clock.advance(hours=1)
        newest = store.save(b"newest", prompt="latest")

        assert store.list(1)[0].id == newest.id

    def test_limit_larger_than_store(self, store: ArtifactStore, wall_clock):
        _save_sequence(store, wall_clock, 2)
        assert len(store.list(50)) == 2

    def test_non_positive_limit_returns_empty(self, store: ArtifactStore, wall_clock):
        _save_sequence(store, wall_clock, 2)
        assert store.list(0) == []

    def test_empty_store(self, store: ArtifactStore):
        assert store.list() == []

    def test_corrupt_records_are_skipped(self, store: ArtifactStore, wall_clock, caplog):
        saved = _save_sequence(store, wall_clock, 2)
        (store.metadata_dir / "broken.json").write_text('{"id": "broken", "size": ')
        (store.metadata_dir / "partial.json").write_text(json.dumps({"id": "partial"}))

        with caplog.at_level("WARNING"):
            listed = store.list()

        assert [d.id for d in listed] == [saved[1].id, saved[0].id]
        assert "broken" in caplog.text
        assert "partial" in caplog.text

    def test_temporary_files_are_ignored(self, store: ArtifactStore, wall_clock):
        _save_sequence(store, wall_clock, 1)
        (store.metadata_dir / ".abc.json.tmp").write_text("{")
        assert len(store.list()) == 1


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------


class TestDelete:
    def test_delete_unknown_returns_not_found(self, store: ArtifactStore):
        assert store.delete("5b0a5a4e-1f4e-4d8a-9c1d-3f1f9b7c2a10") is DeleteStatus.NOT_FOUND
        assert store.delete("not-an-id") is DeleteStatus.NOT_FOUND

    def test_delete_removes_all_tiers(
        self, store: ArtifactStore, remote_tier, png_bytes: bytes
    ):
        saved = store.save(png_bytes, prompt="gone soon")

        assert store.delete(saved.id) is DeleteStatus.DELETED
        assert store.get(saved.id) is None
        assert not store.local_tier.path_for(saved.filename).exists()
        assert saved.filename not in remote_tier.objects
        assert store.delete(saved.id) is DeleteStatus.NOT_FOUND

    def test_remote_delete_failure_does_not_block(self, store: ArtifactStore, remote_tier, png_bytes: bytes):
        saved = store.save(png_bytes)
        remote_tier.fail_deletes = True

        assert store.delete(saved.id) is DeleteStatus.DELETED
        assert store.get(saved.id) is None
        assert not store.local_tier.path_for(saved.filename).exists()

    def test_missing_local_binary_does_not_block(self, store: ArtifactStore, png_bytes: bytes):
        saved = store.save(png_bytes)
        store.local_tier.path_for(saved.filename).unlink()

        assert store.delete(saved.id) is DeleteStatus.DELETED
        assert store.get(saved.id) is None

    def test_metadata_delete_failure_reports_failed(self, store: ArtifactStore, monkeypatch, png_bytes: bytes):
        saved = store.save(png_bytes)
        record_path = store.metadata_dir / f"{saved.id}.json"
        original_unlink = Path.unlink

        def failing_unlink(self, missing_ok=False):
            if self == record_path:
                raise PermissionError("locked")
            return original_unlink(self, missing_ok=missing_ok)

        monkeypatch.setattr(Path, "unlink", failing_unlink)

        assert store.delete(saved.id) is DeleteStatus.FAILED

    def test_shared_binary_survives_until_last_reference(
        self, store: ArtifactStore, remote_tier, png_bytes: bytes
    ):
        first = store.save(png_bytes, naming=NamingPolicy.CONTENT_HASH)
        second = store.save(png_bytes, naming=NamingPolicy.CONTENT_HASH)
        assert first.filename == second.filename

        assert store.delete(first.id) is DeleteStatus.DELETED
        assert store.read_bytes(store.get(second.id)) == png_bytes
        assert second.filename in remote_tier.objects

        assert store.delete(second.id) is DeleteStatus.DELETED
        assert not store.local_tier.path_for(second.filename).exists()
        assert second.filename not in remote_tier.objects

    def test_cleanup_of_both_twins_removes_shared_binary(
        self, store: ArtifactStore, wall_clock, png_bytes: bytes
    ):
        first = store.save(png_bytes, naming=NamingPolicy.CONTENT_HASH)
        wall_clock.advance(seconds=1)
        store.save(png_bytes, naming=NamingPolicy.CONTENT_HASH)

        assert store.cleanup(0) == 2
        assert not store.local_tier.path_for(first.filename).exists()


# ---------------------------------------------------------------------------
# cleanup
# ---------------------------------------------------------------------------


class TestCleanup:
    def test_keeps_newest(self, store: ArtifactStore, wall_clock):
        saved = _save_sequence(store, wall_clock, 5)

        assert store.cleanup(2) == 3

        remaining = store.list()
        assert [d.id for d in remaining] == [saved[4].id, saved[3].id]
        for descriptor in saved[:3]:
            assert store.get(descriptor.id) is None
        for descriptor in saved[3:]:
            assert store.get(descriptor.id) is not None

    def test_nothing_to_delete(self, store: ArtifactStore, wall_clock):
        _save_sequence(store, wall_clock, 2)
        assert store.cleanup(5) == 0
        assert len(store.list()) == 2

    def test_zero_retention_deletes_everything(self, store: ArtifactStore, wall_clock):
        _save_sequence(store, wall_clock, 3)
        assert store.cleanup(0) == 3
        assert store.list() == []

    def test_negative_retention_rejected(self, store: ArtifactStore):
        with pytest.raises(ValueError):
            store.cleanup(-1)

    def test_partial_failures_still_counted(self, store: ArtifactStore, remote_tier, wall_clock):
        _save_sequence(store, wall_clock, 4)
        remote_tier.fail_deletes = True

        assert store.cleanup(1) == 3
        assert len(store.list()) == 1

    def test_cleanup_older_than(self, store: ArtifactStore, wall_clock):
        old = store.save(b"old")
        wall_clock.advance(days=8)
        recent = store.save(b"recent")
        wall_clock.advance(days=1)

        assert store.cleanup_older_than(timedelta(days=7)) == 1
        assert store.get(old.id) is None
        assert store.get(recent.id) is not None


# ---------------------------------------------------------------------------
# construction
# ---------------------------------------------------------------------------


class TestFromConfig:
    def test_local_only_when_remote_disabled(self, test_config):
        store = ArtifactStore.from_config(test_config)

        assert store.remote_tier is None
        assert store.metadata_dir == test_config.metadata_dir
        assert store.local_tier.root == test_config.images_dir

    def test_remote_tier_uses_configured_bucket(self, test_config, monkeypatch):
        built = []

        class FakeClient:
            def bucket(self, name):
                built.append(name)
                return object()

        monkeypatch.setattr(
            "imageforge.core.remote_tier.build_storage_client",
            lambda source, project=None: FakeClient(),
        )
        remote_config = test_config.model_copy(update={"remote_enabled": True, "remote_timeout_seconds": 5.0})

        store = ArtifactStore.from_config(remote_config)

        assert built == [remote_config.bucket_name]
        assert store.remote_tier.timeout == 5.0

    def test_unavailable_remote_client_falls_back_to_local(self, test_config, monkeypatch, png_bytes: bytes):
        def no_credentials(source, project=None):
            raise RuntimeError("Your default credentials were not found")

        monkeypatch.setattr("imageforge.core.remote_tier.build_storage_client", no_credentials)
        remote_config = test_config.model_copy(update={"remote_enabled": True})

        store = ArtifactStore.from_config(remote_config)

        assert store.remote_tier is None
        saved = store.save(png_bytes, prompt="offline")
        assert saved.url == f"/files/{saved.filename}"
        assert store.get(saved.id) == saved

    def test_directories_are_created(self, temp_dir: Path):
        ArtifactStore(temp_dir / "meta", LocalTier(temp_dir / "bin"))
        assert (temp_dir / "meta").is_dir()
        assert (temp_dir / "bin").is_dir()
