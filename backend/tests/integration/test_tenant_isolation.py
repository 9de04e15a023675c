"""
Integration tests for tenant isolation through the scoped storage client.

Runs every operation shape against a real SQLite database with two tenants
and checks that neither can read, change or delete the other's rows.
"""

import asyncio
from uuid import uuid4

import pytest

from saas_backend.core.context import tenant_scope
from saas_backend.models import AuditEvent, Tenant
from saas_backend.storage.exceptions import RecordNotFoundError
from saas_backend.storage.tenant_scope import create_scoped_client

pytestmark = pytest.mark.integration


@pytest.fixture
async def seeded(session_factory, registry, tenants):
    """Two audit rows for acme, one for globex, written through scoped clients."""
    acme, globex = tenants["acme"].id, tenants["globex"].id
    async with session_factory() as session:
        client = create_scoped_client(session, registry)
        with tenant_scope(acme, user_id="alice"):
            a1 = await client.create(AuditEvent, {"action": "login", "resource": "session", "user_id": "alice"})
            a2 = await client.create(AuditEvent, {"action": "logout", "resource": "session", "user_id": "alice"})
        with tenant_scope(globex, user_id="bob"):
            g1 = await client.create(AuditEvent, {"action": "login", "resource": "session", "user_id": "bob"})
        await session.commit()
    return {"acme": acme, "globex": globex, "a1": a1.id, "a2": a2.id, "g1": g1.id}


class TestScopedReads:
    @pytest.mark.asyncio
    async def test_find_many_returns_only_own_rows(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["globex"]):
                rows = await client.find_many(AuditEvent)

        assert [row.id for row in rows] == [seeded["g1"]]

    @pytest.mark.asyncio
    async def test_where_on_foreign_tenant_matches_nothing(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["globex"]):
                rows = await client.find_many(AuditEvent, {"tenant_id": seeded["acme"]})
                count = await client.count(AuditEvent, {"tenant_id": seeded["acme"]})

        assert rows == []
        assert count == 0

    @pytest.mark.asyncio
    async def test_count_and_find_first(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["acme"]):
                count = await client.count(AuditEvent)
                first = await client.find_first(AuditEvent, {"action": "login"})
            with tenant_scope(seeded["globex"]):
                none = await client.find_first(AuditEvent, {"action": "logout"})

        assert count == 2
        assert first.id == seeded["a1"]
        assert none is None

    @pytest.mark.asyncio
    async def test_find_unique_of_foreign_row_is_none(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["globex"]):
                foreign = await client.find_unique(AuditEvent, {"id": seeded["a1"]})
                missing = await client.find_unique(AuditEvent, {"id": uuid4()})
            with tenant_scope(seeded["acme"]):
                own = await client.find_unique(AuditEvent, {"id": seeded["a1"]})

        assert foreign is None
        assert missing is None
        assert own.id == seeded["a1"]

    @pytest.mark.asyncio
    async def test_find_unique_ignores_matching_foreign_rows(
        self, session_factory, registry, seeded
    ):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["globex"]):
                own = await client.find_unique(AuditEvent, {"action": "logout", "resource": "session"})
            with tenant_scope(seeded["acme"]):
                # "bob" only exists under globex
                foreign_only = await client.find_unique(AuditEvent, {"user_id": "bob"})
            with tenant_scope(seeded["globex"]):
                bob = await client.find_unique(AuditEvent, {"user_id": "bob"})

        assert own is None
        assert foreign_only is None
        assert bob.id == seeded["g1"]

    @pytest.mark.asyncio
    async def test_find_unique_with_same_value_in_both_tenants(
        self, session_factory, registry, seeded
    ):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["acme"]):
                created = await client.create(
                    AuditEvent, {"action": "export", "resource": "report", "user_id": "bob"}
                )
            await session.commit()

        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["acme"]):
                acme_bob = await client.find_unique(AuditEvent, {"user_id": "bob"})
            with tenant_scope(seeded["globex"]):
                globex_bob = await client.find_unique(AuditEvent, {"user_id": "bob"})

        assert acme_bob.id == created.id
        assert globex_bob.id == seeded["g1"]


class TestScopedWrites:
    @pytest.mark.asyncio
    async def test_create_ignores_caller_tenant(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["globex"]):
                row = await client.create(
                    AuditEvent,
                    {"action": "spoof", "resource": "x", "tenant_id": seeded["acme"]},
                )
            await session.commit()

        assert row.tenant_id == seeded["globex"]

    @pytest.mark.asyncio
    async def test_update_of_foreign_row_looks_missing(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["globex"]):
                with pytest.raises(RecordNotFoundError):
                    await client.update(AuditEvent, {"id": seeded["a1"]}, {"status": "failure"})
                with pytest.raises(RecordNotFoundError):
                    await client.update(AuditEvent, {"id": uuid4()}, {"status": "failure"})

    @pytest.mark.asyncio
    async def test_update_cannot_move_row_to_other_tenant(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["acme"]):
                row = await client.update(
                    AuditEvent,
                    {"id": seeded["a1"]},
                    {"status": "failure", "tenant_id": seeded["globex"]},
                )
            await session.commit()

        assert row.status == "failure"
        assert row.tenant_id == seeded["acme"]

    @pytest.mark.asyncio
    async def test_bulk_operations_only_touch_own_rows(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["globex"]):
                updated = await client.update_many(AuditEvent, {"action": "logout"}, {"status": "failure"})
                deleted = await client.delete_many(AuditEvent, {"action": "logout"})
                own_deleted = await client.delete_many(AuditEvent, {"action": "login"})
            await session.commit()

        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["acme"]):
                remaining = await client.count(AuditEvent)

        assert updated == 0
        assert deleted == 0
        assert own_deleted == 1
        assert remaining == 2

    @pytest.mark.asyncio
    async def test_delete_of_foreign_row_looks_missing(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["globex"]):
                with pytest.raises(RecordNotFoundError):
                    await client.delete(AuditEvent, {"id": seeded["a2"]})
            with tenant_scope(seeded["acme"]):
                deleted = await client.delete(AuditEvent, {"id": seeded["a2"]})
            await session.commit()

        assert deleted.id == seeded["a2"]

    @pytest.mark.asyncio
    async def test_upsert_creates_in_current_tenant(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["globex"]):
                # The acme row is invisible, so upsert creates instead of updating it
                created = await client.upsert(
                    AuditEvent,
                    where={"action": "logout"},
                    create={"action": "logout", "resource": "session"},
                    update={"status": "failure"},
                )
                updated = await client.upsert(
                    AuditEvent,
                    where={"action": "login"},
                    create={"action": "login", "resource": "session"},
                    update={"status": "failure"},
                )
            await session.commit()

        assert created.tenant_id == seeded["globex"]
        assert created.id != seeded["a2"]
        assert updated.id == seeded["g1"]
        assert updated.status == "failure"

    @pytest.mark.asyncio
    async def test_create_many(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["globex"]):
                created = await client.create_many(
                    AuditEvent,
                    [
                        {"action": "a", "resource": "r"},
                        {"action": "b", "resource": "r", "tenant_id": seeded["acme"]},
                    ],
                )
                count = await client.count(AuditEvent)
            await session.commit()

        assert created == 2
        assert count == 3


class TestNonTenantModels:
    @pytest.mark.asyncio
    async def test_tenant_table_is_not_filtered(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            with tenant_scope(seeded["acme"]):
                tenants = await client.find_many(Tenant, order_by={"slug": "asc"})

        assert [t.slug for t in tenants] == ["acme", "globex", "initech"]

    @pytest.mark.asyncio
    async def test_bypass_without_context_sees_all_rows(self, session_factory, registry, seeded):
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            count = await client.count(AuditEvent)

        assert count == 3


class TestConcurrentRequests:
    @pytest.mark.asyncio
    async def test_interleaved_requests_stay_isolated(self, session_factory, registry, seeded):
        """One shared client, two concurrent tasks with different tenants."""
        async with session_factory() as session:
            client = create_scoped_client(session, registry)
            lock = asyncio.Lock()

            async def request(tenant_id):
                with tenant_scope(tenant_id):
                    results = []
                    for _ in range(3):
                        await asyncio.sleep(0)
                        # An AsyncSession is not safe for concurrent use
                        async with lock:
                            rows = await client.find_many(AuditEvent)
                        results.append({row.tenant_id for row in rows})
                    return results

            acme_results, globex_results = await asyncio.gather(
                request(seeded["acme"]), request(seeded["globex"])
            )

        assert all(seen == {seeded["acme"]} for seen in acme_results)
        assert all(seen == {seeded["globex"]} for seen in globex_results)
