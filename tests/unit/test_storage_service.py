"""Unit tests for StorageService."""
import json
import os

import pytest

from confdesk.config import collection_path
from confdesk.services.storage_service import (
    ensure_collection,
    find_documents,
    find_one,
    insert_document,
    load_json,
    lock_file,
    next_sequence_id,
    read_collection,
    save_json,
    update_document,
    upsert_document,
)
from confdesk.utils.exceptions import ValidationError


@pytest.fixture
def temp_json_file(tmp_path):
    """Create a temporary JSON file for testing."""
    path = tmp_path / "test.json"
    path.write_text(json.dumps({"test": "data", "number": 42}), encoding="utf-8")
    return str(path)


class TestLoadJson:
    """Test load_json function."""

    def test_load_valid_json(self, temp_json_file):
        """Test loading valid JSON file."""
        data = load_json(temp_json_file)
        assert data["test"] == "data"
        assert data["number"] == 42

    def test_load_json_with_utf8(self, tmp_path):
        """Test loading JSON with non-ASCII names."""
        file_path = tmp_path / "names.json"
        file_path.write_text(json.dumps({"name": "Dr. Ánanya Śarma"}, ensure_ascii=False), encoding="utf-8")

        assert load_json(str(file_path))["name"] == "Dr. Ánanya Śarma"

    def test_load_nonexistent_file_raises_error(self):
        """Test loading non-existent file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="File not found"):
            load_json("/nonexistent/path/file.json")

    def test_load_malformed_json_raises_error(self, tmp_path):
        """Test loading malformed JSON raises JSONDecodeError."""
        file_path = tmp_path / "malformed.json"
        file_path.write_text("{invalid json", encoding="utf-8")

        with pytest.raises(json.JSONDecodeError):
            load_json(str(file_path))


class TestSaveJson:
    """Test save_json function."""

    def test_save_creates_directory(self, tmp_path):
        """Test save_json creates parent directory if needed."""
        file_path = str(tmp_path / "subdir" / "test.json")

        save_json(file_path, {"test": "data"}, backup=False)

        assert os.path.exists(file_path)

    def test_save_with_backup(self, tmp_path):
        """Test save_json keeps the previous version as a backup."""
        file_path = str(tmp_path / "test.json")

        save_json(file_path, {"version": 1}, backup=False)
        save_json(file_path, {"version": 2}, backup=True)

        assert load_json(f"{file_path}.backup")["version"] == 1
        assert load_json(file_path)["version"] == 2

    def test_save_without_backup(self, tmp_path):
        """Test save_json does not create backup when disabled."""
        file_path = str(tmp_path / "test.json")

        save_json(file_path, {"version": 1}, backup=False)
        save_json(file_path, {"version": 2}, backup=False)

        assert not os.path.exists(f"{file_path}.backup")

    def test_save_keeps_non_ascii_readable(self, tmp_path):
        """Test save_json writes UTF-8 text rather than escapes."""
        file_path = str(tmp_path / "names.json")

        save_json(file_path, {"institution": "Université de Genève"}, backup=False)

        with open(file_path, "r", encoding="utf-8") as f:
            assert "Université de Genève" in f.read()


class TestLockFile:
    """Test lock_file context manager."""

    def test_lock_file_releases_lock(self, temp_json_file):
        """Test lock is released after context exits."""
        with lock_file(temp_json_file):
            pass

        with lock_file(temp_json_file):
            assert "test" in load_json(temp_json_file)

    def test_lock_nonexistent_file_raises_error(self):
        """Test locking non-existent file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Cannot lock non-existent file"):
            with lock_file("/nonexistent/file.json"):
                pass


class TestCollections:
    """Test the document collection helpers."""

    def test_read_missing_collection_is_empty(self):
        assert read_collection("registrations") == []

    def test_ensure_collection_creates_file(self):
        path = ensure_collection("registrations")

        assert path == collection_path("registrations")
        assert load_json(path) == {"documents": []}

    def test_insert_and_find(self):
        insert_document("accounts", lambda docs: {"account_id": "ACC-1", "role": "admin"})
        insert_document("accounts", lambda docs: {"account_id": "ACC-2", "role": "reviewer"})

        assert find_one("accounts", "account_id", "ACC-2")["role"] == "reviewer"
        assert find_one("accounts", "account_id", "ACC-9") is None
        assert [d["account_id"] for d in find_documents("accounts", role="admin")] == ["ACC-1"]

    def test_insert_builder_sees_existing_documents(self):
        insert_document("registrations", lambda docs: {"registration_id": next_sequence_id(docs, "registration_id", "REG")})
        second = insert_document(
            "registrations",
            lambda docs: {"registration_id": next_sequence_id(docs, "registration_id", "REG")},
        )

        assert second["registration_id"] == "REG-0002"

    def test_insert_aborts_when_builder_raises(self):
        """Test nothing is written when the builder rejects the document."""
        def _reject(docs):
            raise ValidationError("duplicate")

        with pytest.raises(ValidationError):
            insert_document("registrations", _reject)

        assert read_collection("registrations") == []

    def test_update_document_mutates_in_place(self):
        insert_document("registrations", lambda docs: {"registration_id": "REG-0001", "status": "pending"})

        def _confirm(document):
            document["status"] = "confirmed"

        updated = update_document("registrations", "registration_id", "REG-0001", _confirm)

        assert updated["status"] == "confirmed"
        assert find_one("registrations", "registration_id", "REG-0001")["status"] == "confirmed"

    def test_update_missing_document_returns_none(self):
        assert update_document("registrations", "registration_id", "REG-0404", lambda d: None) is None

    def test_upsert_replaces_then_appends(self):
        upsert_document("settings", "key", "workshops", {"value": []})
        upsert_document("settings", "key", "workshops", {"value": [{"id": "ws-1"}]})
        upsert_document("settings", "key", "discounts", {"value": []})

        documents = read_collection("settings")
        assert len(documents) == 2
        assert find_one("settings", "key", "workshops")["value"] == [{"id": "ws-1"}]


class TestNextSequenceId:
    """Test sequential ID generation."""

    def test_first_id(self):
        assert next_sequence_id([], "registration_id", "REG") == "REG-0001"

    def test_uses_highest_existing_suffix(self):
        documents = [{"registration_id": "REG-0002"}, {"registration_id": "REG-0007"}]
        assert next_sequence_id(documents, "registration_id", "REG") == "REG-0008"

    def test_ignores_malformed_ids(self):
        documents = [{"registration_id": "REG-abc"}, {"registration_id": "OTHER-0099"}]
        assert next_sequence_id(documents, "registration_id", "REG") == "REG-0001"

    def test_custom_width(self):
        assert next_sequence_id([{"abstract_id": "ABS-009"}], "abstract_id", "ABS", width=3) == "ABS-010"
