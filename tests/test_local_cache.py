"""Tests for the file-backed local cache."""

from transport_tracker.models import AppUser, DataSnapshot, UserRole
from transport_tracker.storage import LocalCache


def test_missing_slot_returns_default(cache):
    assert cache.read(LocalCache.RECORDS, []) == []
    assert cache.read("nothing") is None


def test_corrupt_slot_is_ignored(cache):
    (cache.cache_dir / "records.json").write_text("{not json", encoding="utf-8")

    assert cache.read(LocalCache.RECORDS, []) == []
    assert cache.load_snapshot().transports == []


def test_snapshot_survives_restart(tmp_path, payload):
    snapshot = DataSnapshot.from_payload(payload)
    LocalCache(tmp_path).save_snapshot(snapshot)

    restored = LocalCache(tmp_path).load_snapshot()
    assert restored == snapshot
    assert restored.factory_balances[0].opening_balance == 5
    assert "ذرة صفراء" in (tmp_path / "releases.json").read_text(encoding="utf-8")


def test_write_leaves_no_temp_file(cache):
    cache.write(LocalCache.MASTER_DATA, {"drivers": ["خالد"]})

    assert sorted(p.name for p in cache.cache_dir.iterdir()) == ["master_data.json"]


def test_session_user_is_saved_and_cleared(cache):
    user = AppUser(name="محرر", pin="2222", role=UserRole.EDITOR, allowed_materials="صويا")

    cache.save_user(user)
    assert cache.load_user() == user

    cache.save_user(None)
    assert cache.load_user() is None
    assert not (cache.cache_dir / "app_user.json").exists()


def test_invalid_session_user_is_dropped(cache):
    cache.write(LocalCache.APP_USER, ["not", "a", "user"])
    assert cache.load_user() is None
