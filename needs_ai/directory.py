"""
Needs AI - Provider Directory
=============================

The directory store holds service providers queried by category and
availability. The orchestration layer only reads it, except for seeding the
default entries on an empty directory.

Implementations:
    - InMemoryDirectoryStore  → Local development and tests
    - LakebaseDirectoryStore  → Databricks Lakebase (PostgreSQL) `providers` table

Every store failure surfaces as `DirectoryStoreError`.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from needs_ai.config import Settings, get_settings
from needs_ai.errors import DirectoryStoreError, FlowError
from needs_ai.models import SeedResult, ServiceProvider

logger = logging.getLogger(__name__)


DEFAULT_PROVIDERS: List[ServiceProvider] = [
    ServiceProvider(id="prov1", name="Speedy Movers", category="Moving", phone_number="555-0101", avg_cost=150, available=True),
    ServiceProvider(id="prov2", name="Pro-Move Experts", category="Moving", phone_number="555-0102", avg_cost=200, available=False),
    ServiceProvider(id="prov3", name="Brainy Tutors", category="Tutoring", phone_number="555-0103", avg_cost=50, available=True),
    ServiceProvider(id="prov4", name="Tech Wizards", category="Tech Help", phone_number="555-0104", avg_cost=75, available=True),
    ServiceProvider(id="prov5", name="Go-Get-It Errands", category="Errands", phone_number="555-0105", avg_cost=30, available=True),
    ServiceProvider(id="prov6", name="Eventful Planners", category="Events", phone_number="555-0106", avg_cost=300, available=False),
    ServiceProvider(id="prov7", name="Dr. Wellness", category="Doctor", phone_number="555-0108", avg_cost=250, available=True),
    ServiceProvider(id="prov8", name="Fix-It-Fast", category="Plumbing", phone_number="555-0109", avg_cost=120, available=True),
    ServiceProvider(id="prov9", name="Anytime Helper", category="Other", phone_number="555-0107", avg_cost=40, available=True),
]


# =============================================================================
# Store interface
# =============================================================================

class DirectoryStore(ABC):
    """Query interface of the provider directory."""

    @abstractmethod
    async def query(self, category: str, available_only: bool = True) -> List[ServiceProvider]:
        """Entries whose category equals `category` exactly (case-sensitive)."""
        ...

    @abstractmethod
    async def get_all(self) -> List[ServiceProvider]:
        ...

    @abstractmethod
    async def upsert_many(self, entries: Iterable[ServiceProvider]) -> int:
        """Insert or replace entries by id. Returns the number written."""
        ...


class InMemoryDirectoryStore(DirectoryStore):
    """Dict-backed store. Insertion order is preserved in query results."""

    def __init__(self, entries: Optional[Iterable[ServiceProvider]] = None):
        self._entries: Dict[str, ServiceProvider] = {}
        for entry in entries or []:
            self._entries[entry.id] = entry

    async def query(self, category: str, available_only: bool = True) -> List[ServiceProvider]:
        return [
            entry for entry in self._entries.values()
            if entry.category == category and (entry.available or not available_only)
        ]

    async def get_all(self) -> List[ServiceProvider]:
        return list(self._entries.values())

    async def upsert_many(self, entries: Iterable[ServiceProvider]) -> int:
        count = 0
        for entry in entries:
            self._entries[entry.id] = entry
            count += 1
        return count


class LakebaseDirectoryStore(DirectoryStore):
    """
    Provider directory in a Lakebase (PostgreSQL) table.

    Connects with psycopg2. When no password is configured, a Databricks
    OAuth token for the current identity is used, the same way Databricks
    Apps authenticate to Lakebase. Blocking calls run in a worker thread.
    """

    TABLE = "providers"

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._workspace_client = None
        self._table_ready = False

    def _get_workspace_client(self):
        """Lazy-load the Databricks WorkspaceClient."""
        if self._workspace_client is None:
            from databricks.sdk import WorkspaceClient
            self._workspace_client = WorkspaceClient()
        return self._workspace_client

    def _get_password(self) -> str:
        if self.settings.lakebase_password:
            return self.settings.lakebase_password
        headers = self._get_workspace_client().config.authenticate()
        return headers.get("Authorization", "").replace("Bearer ", "", 1)

    def _connect(self):
        import psycopg2

        if not self.settings.lakebase_host:
            raise DirectoryStoreError("LAKEBASE_HOST not configured")

        return psycopg2.connect(
            host=self.settings.lakebase_host,
            port=self.settings.lakebase_port,
            database=self.settings.lakebase_database,
            user=self.settings.lakebase_user or self._get_workspace_client().current_user.me().user_name,
            password=self._get_password(),
            sslmode="require",
        )

    def _run(self, statement: str, params: Optional[Any] = None, many: bool = False) -> List[Dict[str, Any]]:
        """Run one statement in its own connection and return rows as dicts."""
        import psycopg2
        from databricks.sdk.errors import DatabricksError
        from psycopg2.extras import RealDictCursor

        try:
            conn = self._connect()
        except (psycopg2.Error, DatabricksError) as e:
            raise DirectoryStoreError("Could not connect to the provider directory", {"error": str(e)}) from e

        try:
            rows: List[Dict[str, Any]] = []
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    if not self._table_ready:
                        cursor.execute(self._create_table_sql())
                    if many:
                        cursor.executemany(statement, params or [])
                    else:
                        cursor.execute(statement, params)
                        if cursor.description:
                            rows = [dict(row) for row in cursor.fetchall()]
            self._table_ready = True
            return rows
        except psycopg2.Error as e:
            raise DirectoryStoreError("Provider directory query failed", {"error": str(e)}) from e
        finally:
            conn.close()

    def _qualified_table(self) -> str:
        return f'"{self.settings.lakebase_schema}"."{self.TABLE}"'

    def _create_table_sql(self) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {self._qualified_table()} ("
            "id TEXT PRIMARY KEY, "
            "name TEXT NOT NULL, "
            "category TEXT NOT NULL, "
            "phone_number TEXT NOT NULL, "
            "avg_cost NUMERIC NOT NULL CHECK (avg_cost >= 0), "
            "available BOOLEAN NOT NULL DEFAULT TRUE)"
        )

    async def query(self, category: str, available_only: bool = True) -> List[ServiceProvider]:
        statement = (
            f"SELECT id, name, category, phone_number, avg_cost, available "
            f"FROM {self._qualified_table()} WHERE category = %s"
        )
        if available_only:
            statement += " AND available = TRUE"
        rows = await asyncio.to_thread(self._run, statement + " ORDER BY id", (category,))
        return [ServiceProvider(**row) for row in rows]

    async def get_all(self) -> List[ServiceProvider]:
        statement = (
            f"SELECT id, name, category, phone_number, avg_cost, available "
            f"FROM {self._qualified_table()} ORDER BY id"
        )
        rows = await asyncio.to_thread(self._run, statement)
        return [ServiceProvider(**row) for row in rows]

    async def upsert_many(self, entries: Iterable[ServiceProvider]) -> int:
        params = [
            (e.id, e.name, e.category, e.phone_number, e.avg_cost, e.available)
            for e in entries
        ]
        statement = (
            f"INSERT INTO {self._qualified_table()} "
            "(id, name, category, phone_number, avg_cost, available) "
            "VALUES (%s, %s, %s, %s, %s, %s) "
            "ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, category = EXCLUDED.category, "
            "phone_number = EXCLUDED.phone_number, avg_cost = EXCLUDED.avg_cost, "
            "available = EXCLUDED.available"
        )
        await asyncio.to_thread(self._run, statement, params, True)
        return len(params)


# =============================================================================
# Singleton
# =============================================================================

_store: Optional[DirectoryStore] = None


def get_directory_store() -> DirectoryStore:
    """Get or create the process directory store."""
    global _store
    if _store is None:
        settings = get_settings()
        if settings.lakebase_host:
            logger.info(f"[Directory] Using Lakebase at {settings.lakebase_host}")
            _store = LakebaseDirectoryStore(settings)
        else:
            logger.warning("[Directory] LAKEBASE_HOST not set, using in-memory directory")
            _store = InMemoryDirectoryStore()
    return _store


def set_directory_store(store: Optional[DirectoryStore]) -> None:
    """Replace the process directory store (tests, alternative backends)."""
    global _store
    _store = store


# =============================================================================
# Directory operations
# =============================================================================

async def seed_providers(store: Optional[DirectoryStore] = None) -> SeedResult:
    """
    Write the default providers. Idempotent: entries are upserted by id.

    Returns:
        SeedResult; failures are reported, not raised.
    """
    store = store or get_directory_store()
    try:
        count = await store.upsert_many(DEFAULT_PROVIDERS)
    except DirectoryStoreError as e:
        logger.error(f"[Directory] Seeding failed: {e}")
        return SeedResult(success=False, message=e.message)

    logger.info(f"[Directory] Seeded {count} providers")
    return SeedResult(success=True, message=f"Successfully seeded {count} providers.")


async def find_providers_by_category(
    category: str, store: Optional[DirectoryStore] = None
) -> List[ServiceProvider]:
    """
    Available providers in exactly this category.

    Raises:
        FlowError: When the store cannot be read.
    """
    category = (category or "").strip()
    if not category:
        return []

    store = store or get_directory_store()
    try:
        return await store.query(category, available_only=True)
    except DirectoryStoreError as e:
        logger.error(f"[Directory] Category lookup failed for '{category}': {e}")
        raise FlowError("Could not fetch providers from the database.") from e
