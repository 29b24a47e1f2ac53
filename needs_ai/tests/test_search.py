"""
Tests for the Provider Directory and Smart Search
=================================================

Verifies seeding, exact category lookup, and the two-stage smart search.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import provider, reply
from needs_ai import directory
from needs_ai.directory import (
    DEFAULT_PROVIDERS,
    InMemoryDirectoryStore,
    LakebaseDirectoryStore,
    find_providers_by_category,
    get_directory_store,
    seed_providers,
)
from needs_ai.config import Settings
from needs_ai.errors import DirectoryStoreError, FlowError
from needs_ai.search import find_providers_by_smart_search


def run_async(coro):
    """Helper to run async tests without pytest-asyncio."""
    return asyncio.run(coro)


def failing_store(**methods):
    store = MagicMock()
    for name in ("query", "get_all", "upsert_many"):
        setattr(store, name, AsyncMock(side_effect=methods.get(name)))
    return store


class TestSeeding:
    """Tests for seed_providers."""

    def test_seed_defaults(self):
        """Should write the nine default providers."""
        store = InMemoryDirectoryStore()
        result = run_async(seed_providers(store))

        assert result.success is True
        assert result.message == "Successfully seeded 9 providers."
        assert [p.id for p in run_async(store.get_all())] == [f"prov{i}" for i in range(1, 10)]

    def test_seed_is_idempotent(self):
        """Seeding twice should not duplicate entries."""
        store = InMemoryDirectoryStore()
        run_async(seed_providers(store))
        run_async(seed_providers(store))
        assert len(run_async(store.get_all())) == 9

    def test_seed_failure_reported(self):
        """Should report, not raise, a store failure."""
        result = run_async(seed_providers(failing_store(upsert_many=DirectoryStoreError("read-only"))))
        assert result.success is False
        assert result.message == "read-only"

    def test_default_providers(self):
        categories = sorted({p.category for p in DEFAULT_PROVIDERS})
        assert categories == ["Doctor", "Errands", "Events", "Moving", "Other", "Plumbing", "Tech Help", "Tutoring"]


class TestCategoryLookup:
    """Tests for find_providers_by_category."""

    def test_trims_category(self):
        """Should trim the category and return only available providers."""
        store = InMemoryDirectoryStore(DEFAULT_PROVIDERS)
        providers = run_async(find_providers_by_category("  Moving ", store))
        assert [p.id for p in providers] == ["prov1"]

    def test_blank_category(self):
        """Should return an empty list without querying."""
        store = failing_store()
        assert run_async(find_providers_by_category("   ", store)) == []
        store.query.assert_not_called()

    def test_store_failure(self):
        """Should raise a caller-safe FlowError."""
        store = failing_store(query=DirectoryStoreError("timeout"))
        with pytest.raises(FlowError, match="Could not fetch providers from the database."):
            run_async(find_providers_by_category("Moving", store))


class TestDirectoryStoreSelection:
    """Tests for the process directory store."""

    def test_in_memory_without_lakebase(self):
        """Should fall back to the in-memory store when LAKEBASE_HOST is unset."""
        assert isinstance(get_directory_store(), InMemoryDirectoryStore)
        assert get_directory_store() is get_directory_store()

    def test_lakebase_when_configured(self, monkeypatch):
        """Should use Lakebase when LAKEBASE_HOST is set."""
        monkeypatch.setenv("LAKEBASE_HOST", "instance.database.cloud.databricks.com")
        directory.get_settings.cache_clear()
        assert isinstance(get_directory_store(), LakebaseDirectoryStore)

    def test_lakebase_errors_wrapped(self):
        """Should surface driver errors as DirectoryStoreError."""
        import psycopg2

        store = LakebaseDirectoryStore(Settings(lakebase_host="h", lakebase_user="u", lakebase_password="p"))
        with patch("psycopg2.connect", side_effect=psycopg2.OperationalError("refused")):
            with pytest.raises(DirectoryStoreError):
                run_async(store.query("Moving"))


class TestSmartSearch:
    """Tests for find_providers_by_smart_search."""

    def test_empty_directory_is_seeded(self, make_engine):
        """Should seed an empty directory, then return matches."""
        store = InMemoryDirectoryStore()
        engine, client = make_engine(reply({"matchedCategory": "Plumbing"}), directory_store=store)

        providers = run_async(find_providers_by_smart_search("fix a leaky pipe", engine=engine, store=store))

        assert [p.id for p in providers] == ["prov8"]
        assert len(run_async(store.get_all())) == 9
        prompt = client.calls[0]["messages"][-1]["content"]
        assert "- Plumbing\n" in prompt

    def test_second_call_sees_categories(self, make_engine):
        """A repeated call after seeding should offer a non-empty category set."""
        store = InMemoryDirectoryStore()
        engine, client = make_engine(
            reply({"matchedCategory": "Moving"}),
            reply({"matchedCategory": "Tutoring"}),
            directory_store=store,
        )
        run_async(find_providers_by_smart_search("moving house", engine=engine, store=store))
        providers = run_async(find_providers_by_smart_search("algebra help", engine=engine, store=store))

        assert [p.id for p in providers] == ["prov3"]
        assert "- Tutoring\n" in client.calls[1]["messages"][-1]["content"]

    def test_only_available_returned(self, make_engine):
        """Should drop unavailable providers of the matched category."""
        store = InMemoryDirectoryStore([
            provider("a", "Plumbing"),
            provider("b", "Plumbing", available=False),
        ])
        engine, _ = make_engine(reply({"matchedCategory": "Plumbing"}), directory_store=store)

        providers = run_async(find_providers_by_smart_search("pipes", engine=engine, store=store))
        assert [p.id for p in providers] == ["a"]

    def test_no_match(self, make_engine, store):
        """Should return an empty list when no category fits."""
        engine, _ = make_engine(reply({"matchedCategory": ""}))
        assert run_async(find_providers_by_smart_search("underwater basket weaving", engine=engine, store=store)) == []

    def test_blank_description(self, make_engine, store):
        """Should return an empty list without calling the model."""
        engine, client = make_engine()
        assert run_async(find_providers_by_smart_search("  ", engine=engine, store=store)) == []
        assert client.calls == []

    def test_matcher_error_propagates(self, make_engine, store):
        """Should let the matcher's FlowError through unchanged."""
        engine, _ = make_engine(reply("not json"))
        with pytest.raises(FlowError, match="currently unavailable"):
            run_async(find_providers_by_smart_search("pipes", engine=engine, store=store))

    def test_store_failure(self, make_engine):
        """Should turn a store failure into a caller-safe FlowError."""
        engine, _ = make_engine()
        store = failing_store(get_all=DirectoryStoreError("down"))
        with pytest.raises(FlowError, match="Could not perform provider search."):
            run_async(find_providers_by_smart_search("pipes", engine=engine, store=store))

    def test_seed_failure_returns_empty(self, make_engine):
        """Should log a seeding failure and return an empty list."""
        engine, client = make_engine()
        store = MagicMock()
        store.get_all = AsyncMock(return_value=[])
        store.upsert_many = AsyncMock(side_effect=DirectoryStoreError("read-only"))

        assert run_async(find_providers_by_smart_search("pipes", engine=engine, store=store)) == []
        assert client.calls == []
