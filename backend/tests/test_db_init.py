"""
Tests for the credits database init script.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import OperationFailure

from utils import environment
from credits.db_init import (
    REQUIRED_COLLECTIONS,
    REQUIRED_INDEXES,
    check_environment,
    create_index_if_not_exists,
    grant_admin_role,
    init_database,
)


@pytest.fixture
def mock_db():
    """Database mock where db[name] and db.<name> share one collection mock."""
    db = MagicMock()
    db.list_collection_names = AsyncMock(return_value=[])
    db.create_collection = AsyncMock()
    collection = db.__getitem__.return_value
    collection.index_information = AsyncMock(return_value={})
    collection.create_index = AsyncMock()
    db.user_roles.update_one = AsyncMock(return_value=MagicMock(upserted_id="new"))
    db.credits_meta.update_one = AsyncMock()
    return db


class TestEnvironmentGuard:

    def test_development_allowed(self, monkeypatch):
        monkeypatch.setattr(environment, "ENVIRONMENT", "development")
        allowed, _ = check_environment()
        assert allowed is True

    def test_production_needs_confirmation(self, monkeypatch):
        monkeypatch.setattr(environment, "ENVIRONMENT", "production")
        monkeypatch.delenv("CREDITS_INIT_CONFIRM", raising=False)

        allowed, message = check_environment()

        assert allowed is False
        assert "CREDITS_INIT_CONFIRM=YES" in message

    def test_production_confirmed(self, monkeypatch):
        monkeypatch.setattr(environment, "ENVIRONMENT", "production")
        monkeypatch.setenv("CREDITS_INIT_CONFIRM", "YES")

        assert check_environment()[0] is True


class TestIndexes:

    def test_passcode_code_is_unique(self):
        code_indexes = [
            options for collection, keys, options in REQUIRED_INDEXES
            if collection == "passcodes" and keys == [("code", 1)]
        ]
        assert code_indexes == [{"unique": True, "name": "idx_code_unique"}]

    @pytest.mark.asyncio
    async def test_existing_index_is_skipped(self, mock_db):
        mock_db["passcodes"].index_information.return_value = {"idx_code_unique": {}}

        result = await create_index_if_not_exists(
            mock_db, "passcodes", [("code", 1)], {"unique": True, "name": "idx_code_unique"}
        )

        assert result.startswith("[SKIP]")
        mock_db["passcodes"].create_index.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_creation_is_skipped(self, mock_db):
        mock_db["passcodes"].create_index.side_effect = OperationFailure("Index already exists")

        result = await create_index_if_not_exists(mock_db, "passcodes", [("code", 1)], {"name": "idx_code_unique"})

        assert "race" in result

    @pytest.mark.asyncio
    async def test_other_index_failures_propagate(self, mock_db):
        mock_db["passcodes"].create_index.side_effect = OperationFailure("not authorized")

        with pytest.raises(OperationFailure):
            await create_index_if_not_exists(mock_db, "passcodes", [("code", 1)], {"name": "idx_code_unique"})


class TestInitDatabase:

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, mock_db):
        results = await init_database(mock_db, dry_run=True, admin_user_id="admin-1")

        assert all(line.startswith("[DRY-RUN]") for line in results)
        assert len(results) == len(REQUIRED_COLLECTIONS) + len(REQUIRED_INDEXES) + 2
        mock_db.create_collection.assert_not_awaited()
        mock_db["passcodes"].create_index.assert_not_awaited()
        mock_db.user_roles.update_one.assert_not_awaited()
        mock_db.credits_meta.update_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_existing_collections_are_kept(self, mock_db):
        mock_db.list_collection_names.return_value = list(REQUIRED_COLLECTIONS)

        await init_database(mock_db)

        mock_db.create_collection.assert_not_awaited()
        assert mock_db["passcodes"].create_index.await_count == len(REQUIRED_INDEXES)
        mock_db.credits_meta.update_one.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_grant_is_idempotent_upsert(self, mock_db):
        mock_db.user_roles.update_one.return_value = MagicMock(upserted_id=None)

        result = await grant_admin_role(mock_db, "admin-1")

        assert result.startswith("[SKIP]")
        filter_doc = mock_db.user_roles.update_one.await_args.args[0]
        assert filter_doc == {"user_id": "admin-1", "role": "admin"}
        assert mock_db.user_roles.update_one.await_args.kwargs["upsert"] is True
