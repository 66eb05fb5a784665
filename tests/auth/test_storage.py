"""Tests for key/value stores and the token record."""

import json
import logging

import pytest

from authgateway.oauth.storage import FileStore, MemoryStore, TokenRecord


class TestTokenRecord:
    """Tests for TokenRecord dataclass."""

    def test_from_dict_round_trip_keeps_extra_fields(self):
        """Unknown server fields should survive storage."""
        data = {
            "access_token": "access123",
            "refresh_token": "refresh456",
            "expires_in": 3600,
            "token_type": "bearer",
            "scope": None,
            "user_id": "1",
            "id_token": "jwt.payload.sig",
        }

        record = TokenRecord.from_dict(data)

        assert record.extra == {"id_token": "jwt.payload.sig"}
        assert record.to_dict() == data

    def test_access_token_required(self):
        """Should raise when access_token is missing."""
        with pytest.raises(ValueError):
            TokenRecord.from_dict({"refresh_token": "refresh456"})

    def test_access_token_not_empty(self):
        """Should raise when access_token is empty."""
        with pytest.raises(ValueError):
            TokenRecord(access_token="")

    def test_merge_keeps_omitted_fields(self):
        """Fields missing from the payload keep their value."""
        record = TokenRecord(access_token="old", refresh_token="refresh456", scope="read", user_id="1")

        merged = record.merge({"access_token": "new", "expires_in": 7200})

        assert merged.access_token == "new"
        assert merged.expires_in == 7200
        assert merged.refresh_token == "refresh456"
        assert merged.scope == "read"
        assert record.access_token == "old"

    def test_merge_overwrites_present_fields(self):
        """Fields present in the payload win, even when null."""
        record = TokenRecord(access_token="old", refresh_token="refresh456", scope="read")

        merged = record.merge({"access_token": "new", "scope": None})

        assert merged.scope is None

    def test_merge_rejects_empty_access_token(self):
        """A merge cannot produce a record without access token."""
        record = TokenRecord(access_token="old")

        with pytest.raises(ValueError):
            record.merge({"access_token": ""})

    def test_can_refresh(self):
        """can_refresh reflects whether a refresh token is present."""
        assert TokenRecord(access_token="a", refresh_token="r").can_refresh is True
        assert TokenRecord(access_token="a").can_refresh is False


class TestMemoryStore:
    """Tests for MemoryStore."""

    def test_get_missing_returns_none(self):
        assert MemoryStore().get("token") is None

    def test_values_are_copied(self):
        """Mutating a returned value must not change the stored one."""
        store = MemoryStore()
        value = {"access_token": "a"}
        store.set("token", value)
        value["access_token"] = "mutated"

        loaded = store.get("token")
        loaded["access_token"] = "mutated again"

        assert store.get("token") == {"access_token": "a"}

    def test_clear_removes_every_key(self):
        store = MemoryStore({"token": {"access_token": "a"}, "other": 1})

        store.clear()

        assert store.keys() == []


class TestFileStore:
    """Tests for FileStore class."""

    @pytest.fixture
    def path(self, tmp_path):
        return tmp_path / "nested" / "session.json"

    def test_get_when_file_missing(self, path):
        """Should return None when nothing was saved."""
        assert FileStore(path).get("token") is None

    def test_persists_across_instances(self, path):
        """Values written by one instance are visible to another."""
        FileStore(path).set("token", {"access_token": "a"})

        assert FileStore(path).get("token") == {"access_token": "a"}

    def test_set_preserves_other_keys(self, path):
        """Writing one key should not drop the others."""
        store = FileStore(path)
        store.set("preferences", {"theme": "dark"})
        store.set("token", {"access_token": "a"})

        assert store.get("preferences") == {"theme": "dark"}

    def test_file_permissions(self, path):
        """Session file should be readable by the owner only."""
        FileStore(path).set("token", {"access_token": "a"})

        assert path.stat().st_mode & 0o777 == 0o600

    def test_clear_wipes_everything(self, path):
        """clear() should leave an empty object on disk."""
        store = FileStore(path)
        store.set("token", {"access_token": "a"})
        store.set("preferences", {"theme": "dark"})

        store.clear()

        assert json.loads(path.read_text()) == {}
        assert store.get("preferences") is None

    def test_corrupt_file_loads_as_empty(self, path, caplog):
        """An unreadable file should be treated as empty and logged."""
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        with caplog.at_level(logging.WARNING):
            assert FileStore(path).get("token") is None

        assert "Could not load" in caplog.text

    def test_non_object_file_loads_as_empty(self, path):
        """A JSON file that is not an object should be ignored."""
        path.parent.mkdir(parents=True)
        path.write_text("[1, 2, 3]")

        assert FileStore(path).get("token") is None
