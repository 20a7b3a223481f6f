"""
SQLite storage for credproxy.

Reference implementation of the PolicyStore and CredentialStore protocols,
used by the CLI and suitable for single-process deployments. Production
deployments plug their own stores in behind the same protocols.

Tables:
    - credentials: Credential metadata (id, type, name); no secret material
    - policies: Policies with their JSON config

The protocol methods are async to match the store interfaces; the sqlite3
calls themselves run synchronously on the calling thread.
"""

import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from credproxy.errors import StoreConnectionError, StoreReadError, StoreWriteError
from credproxy.schema import Credential, Policy, PolicyScope

# Schema version for migrations
SCHEMA_VERSION = 1

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS credentials (
    credential_id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    name TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS policies (
    policy_id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    scope TEXT NOT NULL,
    application_id TEXT,
    credential_id TEXT,
    credential_type_id TEXT,
    config_json TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_policies_credential_id ON policies(credential_id);
CREATE INDEX IF NOT EXISTS idx_policies_credential_type_id ON policies(credential_type_id);
"""


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(UTC).isoformat()


class PolicyDB:
    """
    SQLite database holding credentials and policies.

    Usage:
        with PolicyDB("credproxy.db") as db:
            db.save_credential(Credential(id="cred-1", type="api-key"))
            policies = await db.list_policies("cred-1")
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file.
                     Will be created if it doesn't exist.
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise StoreConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            cursor = self._conn.executescript(CREATE_TABLES_SQL)
            cursor.close()

            cursor = self._conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()
            if row is None:
                self._conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, now_iso()),
                )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreWriteError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "PolicyDB":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # =========================================================================
    # Credential Operations
    # =========================================================================

    def save_credential(self, credential: Credential) -> None:
        """Insert or replace credential metadata."""
        try:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO credentials (credential_id, type, name, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (credential.id, credential.type, credential.name, now_iso()),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreWriteError(
                operation="save_credential",
                underlying_error=str(e),
            ) from e

    async def get_credential(self, credential_id: str) -> Credential | None:
        try:
            row = self._conn.execute(
                "SELECT * FROM credentials WHERE credential_id = ?",
                (credential_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreReadError(
                operation="get_credential",
                underlying_error=str(e),
            ) from e

        if row is None:
            return None
        return Credential(id=row["credential_id"], type=row["type"], name=row["name"])

    # =========================================================================
    # Policy Operations
    # =========================================================================

    async def create_policy(self, policy: Policy) -> Policy:
        """Persist a new policy. Fails if the ID already exists."""
        try:
            self._conn.execute(
                """
                INSERT INTO policies (
                    policy_id, type, name, description, scope, application_id,
                    credential_id, credential_type_id, config_json, priority,
                    is_active, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    policy.id,
                    _type_value(policy.type),
                    policy.name,
                    policy.description,
                    policy.scope.value,
                    policy.application_id,
                    policy.credential_id,
                    policy.credential_type_id,
                    json.dumps(policy.config, sort_keys=True, default=str),
                    policy.priority,
                    int(policy.is_active),
                    now_iso(),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreWriteError(
                operation="create_policy",
                underlying_error=str(e),
            ) from e
        return policy

    async def list_policies(
        self,
        credential_id: str,
        application_id: str | None = None,
    ) -> list[Policy]:
        """
        Return the policies that apply to a credential/application pair.

        Includes the credential's own policies that are unrestricted or
        restricted to `application_id`, plus GLOBAL policies for the
        credential's type. Inactive policies are included; the engine skips
        them.
        """
        credential = await self.get_credential(credential_id)
        credential_type = credential.type.lower() if credential else None

        try:
            rows = self._conn.execute(
                """
                SELECT * FROM policies
                WHERE (
                    credential_id = ?
                    AND (application_id IS NULL OR application_id = ?)
                ) OR (
                    scope = ? AND credential_type_id = ?
                )
                ORDER BY created_at, rowid
                """,
                (credential_id, application_id, PolicyScope.GLOBAL.value, credential_type),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreReadError(
                operation="list_policies",
                underlying_error=str(e),
            ) from e

        return [self._row_to_policy(row) for row in rows]

    async def count_policies(self, credential_id: str) -> int:
        try:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM policies WHERE credential_id = ?",
                (credential_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreReadError(
                operation="count_policies",
                underlying_error=str(e),
            ) from e
        return int(row["n"])

    def get_policy(self, policy_id: str) -> Policy | None:
        try:
            row = self._conn.execute(
                "SELECT * FROM policies WHERE policy_id = ?",
                (policy_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreReadError(
                operation="get_policy",
                underlying_error=str(e),
            ) from e
        return self._row_to_policy(row) if row else None

    def _row_to_policy(self, row: sqlite3.Row) -> Policy:
        return Policy(
            id=row["policy_id"],
            type=row["type"],
            name=row["name"],
            description=row["description"],
            scope=PolicyScope(row["scope"]),
            application_id=row["application_id"],
            credential_id=row["credential_id"],
            credential_type_id=row["credential_type_id"],
            config=json.loads(row["config_json"]),
            priority=row["priority"],
            is_active=bool(row["is_active"]),
        )


def _type_value(policy_type: Any) -> str:
    return policy_type.value if hasattr(policy_type, "value") else str(policy_type)
