"""
Integration tests: templates applied through the SQLite store, then
evaluated by the engine.

These tests wire the real components together:
1. Register a credential in PolicyDB
2. Apply templates with PolicyTemplateService
3. Load the credential's policies back from the store
4. Decide requests with RequestEvaluator
"""

from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from credproxy.policy import PolicyEvaluator, RequestEvaluator
from credproxy.schema import Credential, PolicyStatus, ProxyRequest
from credproxy.store import PolicyDB
from credproxy.templates import PolicyTemplateService


@pytest.fixture
def db(temp_dir: Path) -> PolicyDB:
    database = PolicyDB(temp_dir / "workflow.db")
    database.save_credential(Credential(id="db-1", type="database"))
    database.save_credential(Credential(id="eth-1", type="ethereum"))
    yield database
    database.close()


def request_for(credential_id: str, operation: str, **parameters) -> ProxyRequest:
    return ProxyRequest(
        id=f"req-{operation}",
        application_id="app-1",
        credential_id=credential_id,
        operation=operation,
        parameters=parameters,
        timestamp=datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
        ip="192.168.1.100",
    )


class TestTemplateToDecision:
    """End-to-end template application and evaluation."""

    @pytest.mark.asyncio()
    async def test_database_read_only(self, db: PolicyDB) -> None:
        service = PolicyTemplateService(db, db)
        created = await service.apply_template("database-read-only", "db-1")
        assert created is not None

        policies = await db.list_policies("db-1", "app-1")
        engine = RequestEvaluator()

        select = await engine.evaluate_request(
            request_for("db-1", "query", query="SELECT * FROM users"), policies
        )
        update = await engine.evaluate_request(
            request_for("db-1", "query", query="UPDATE users SET admin = 1"), policies
        )

        assert select.status == PolicyStatus.APPROVED
        assert update.status == PolicyStatus.DENIED
        assert update.policy_id == created.id
        assert update.reason.startswith(
            "Request denied by policy: Read-Only Database Access - Parameter query matches"
        )

    @pytest.mark.asyncio()
    async def test_application_scoped_template(self, db: PolicyDB) -> None:
        service = PolicyTemplateService(db, db)
        await service.apply_template("database-business-hours", "db-1", application_id="app-2")

        for_app_1 = await db.list_policies("db-1", "app-1")
        for_app_2 = await db.list_policies("db-1", "app-2")

        assert for_app_1 == []
        assert len(for_app_2) == 1

    @pytest.mark.asyncio()
    async def test_ethereum_defaults(self, db: PolicyDB) -> None:
        """Recommended ethereum templates: transactions escalate, reads pass."""
        metrics = AsyncMock()
        metrics.get_usage_metrics.return_value = 0.0
        service = PolicyTemplateService(db, db)

        created = await service.apply_default_policies("eth-1")
        again = await service.apply_default_policies("eth-1")

        assert len(created) == 5
        assert again == []

        policies = await db.list_policies("eth-1", "app-1")
        engine = RequestEvaluator(PolicyEvaluator(metrics=metrics))

        send = await engine.evaluate_request(request_for("eth-1", "sendTransaction"), policies)

        # Without plugin metadata the generic manual-approval template keeps
        # an empty operations list, so every operation escalates.
        assert send.status == PolicyStatus.PENDING
        assert send.requires_approval is True
