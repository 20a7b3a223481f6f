"""
Unit tests for SQLite storage.

Tests cover:
- Database initialization
- Credential operations
- Policy operations (create, get, list, count)
- Scope filtering for list_policies
- Error wrapping
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from credproxy.errors import StoreConnectionError, StoreWriteError
from credproxy.interfaces import CredentialStore, PolicyStore
from credproxy.schema import Credential, Policy, PolicyScope, PolicyType
from credproxy.store import PolicyDB


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Path:
    """Create a temporary database path."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "credproxy.db"


@pytest.fixture
def db(temp_db_path: Path) -> PolicyDB:
    """Create a database instance with one ethereum credential."""
    database = PolicyDB(temp_db_path)
    database.save_credential(Credential(id="cred-1", type="Ethereum", name="Hot wallet"))
    yield database
    database.close()


def make_policy(policy_id: str, **fields) -> Policy:
    defaults = {
        "type": PolicyType.DENY_LIST,
        "name": policy_id,
        "credential_id": "cred-1",
        "config": {"operations": ["sendTransaction"]},
    }
    defaults.update(fields)
    return Policy(id=policy_id, **defaults)


# =============================================================================
# Initialization Tests
# =============================================================================


class TestInitialization:
    """Tests for schema setup."""

    def test_creates_file_and_schema(self, temp_db_path: Path) -> None:
        with PolicyDB(temp_db_path):
            pass

        assert temp_db_path.exists()
        conn = sqlite3.connect(temp_db_path)
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        version = conn.execute("SELECT version FROM schema_version").fetchall()
        conn.close()

        assert {"schema_version", "credentials", "policies"} <= tables
        assert version == [(1,)]

    def test_reopen_keeps_single_version_row(self, temp_db_path: Path) -> None:
        PolicyDB(temp_db_path).close()
        PolicyDB(temp_db_path).close()

        conn = sqlite3.connect(temp_db_path)
        count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
        conn.close()
        assert count == 1

    def test_unopenable_path(self, temp_dir: Path) -> None:
        with pytest.raises(StoreConnectionError):
            PolicyDB(temp_dir / "missing" / "dir" / "x.db")

    def test_implements_store_protocols(self, db: PolicyDB) -> None:
        assert isinstance(db, PolicyStore)
        assert isinstance(db, CredentialStore)


# =============================================================================
# Credential Tests
# =============================================================================


class TestCredentials:
    """Tests for credential metadata."""

    @pytest.mark.asyncio()
    async def test_get_credential(self, db: PolicyDB) -> None:
        credential = await db.get_credential("cred-1")
        assert credential == Credential(id="cred-1", type="Ethereum", name="Hot wallet")

    @pytest.mark.asyncio()
    async def test_missing_credential(self, db: PolicyDB) -> None:
        assert await db.get_credential("nope") is None

    @pytest.mark.asyncio()
    async def test_save_replaces(self, db: PolicyDB) -> None:
        db.save_credential(Credential(id="cred-1", type="ethereum", name="Renamed"))
        credential = await db.get_credential("cred-1")
        assert credential is not None
        assert credential.name == "Renamed"


# =============================================================================
# Policy Tests
# =============================================================================


class TestPolicies:
    """Tests for policy persistence."""

    @pytest.mark.asyncio()
    async def test_create_and_get(self, db: PolicyDB) -> None:
        policy = make_policy(
            "p1",
            priority=7,
            application_id="app-1",
            config={"operations": ["a"], "parameters": {"n": 1, "flag": True}},
        )

        created = await db.create_policy(policy)

        assert created == policy
        assert db.get_policy("p1") == policy
        assert db.get_policy("missing") is None

    @pytest.mark.asyncio()
    async def test_unknown_type_round_trips(self, db: PolicyDB) -> None:
        await db.create_policy(make_policy("p1", type="GEOFENCE"))
        stored = db.get_policy("p1")
        assert stored is not None
        assert stored.type == "GEOFENCE"

    @pytest.mark.asyncio()
    async def test_duplicate_id_rejected(self, db: PolicyDB) -> None:
        await db.create_policy(make_policy("p1"))
        with pytest.raises(StoreWriteError):
            await db.create_policy(make_policy("p1"))

    @pytest.mark.asyncio()
    async def test_count_policies(self, db: PolicyDB) -> None:
        assert await db.count_policies("cred-1") == 0
        await db.create_policy(make_policy("p1"))
        await db.create_policy(make_policy("p2", is_active=False))
        await db.create_policy(make_policy("p3", credential_id="cred-2"))
        assert await db.count_policies("cred-1") == 2

    @pytest.mark.asyncio()
    async def test_list_filters_by_application(self, db: PolicyDB) -> None:
        await db.create_policy(make_policy("any-app"))
        await db.create_policy(make_policy("app-1-only", application_id="app-1"))
        await db.create_policy(make_policy("app-2-only", application_id="app-2"))
        await db.create_policy(make_policy("other-cred", credential_id="cred-2"))

        for_app_1 = await db.list_policies("cred-1", "app-1")
        no_app = await db.list_policies("cred-1")

        assert [p.id for p in for_app_1] == ["any-app", "app-1-only"]
        assert [p.id for p in no_app] == ["any-app"]

    @pytest.mark.asyncio()
    async def test_list_includes_global_policies_for_type(self, db: PolicyDB) -> None:
        await db.create_policy(
            make_policy(
                "global-eth",
                scope=PolicyScope.GLOBAL,
                credential_id=None,
                credential_type_id="ethereum",
            )
        )
        await db.create_policy(
            make_policy(
                "global-oauth",
                scope=PolicyScope.GLOBAL,
                credential_id=None,
                credential_type_id="oauth",
            )
        )

        listed = await db.list_policies("cred-1", "app-1")

        assert [p.id for p in listed] == ["global-eth"]

    @pytest.mark.asyncio()
    async def test_list_includes_inactive(self, db: PolicyDB) -> None:
        await db.create_policy(make_policy("off", is_active=False))
        listed = await db.list_policies("cred-1")
        assert listed[0].is_active is False
