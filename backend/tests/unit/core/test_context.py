"""
Unit tests for the request-scoped tenant context.
"""

import asyncio
from uuid import uuid4

import pytest

from saas_backend.core.context import (
    clear_current_tenant,
    get_current_tenant,
    get_current_user,
    get_tenant_context,
    reset_tenant_context,
    set_current_tenant,
    tenant_scope,
)


@pytest.fixture(autouse=True)
def clean_context():
    clear_current_tenant()
    yield
    clear_current_tenant()


class TestTenantContext:
    def test_no_tenant_by_default(self):
        assert get_current_tenant() is None
        assert get_current_user() is None
        assert get_tenant_context() is None

    def test_set_and_reset(self):
        tenant_id = uuid4()
        token = set_current_tenant(tenant_id, user_id="user-1")

        assert get_current_tenant() == tenant_id
        assert get_current_user() == "user-1"

        reset_tenant_context(token)
        assert get_current_tenant() is None

    def test_tenant_scope_restores_previous_context(self):
        outer, inner = uuid4(), uuid4()

        with tenant_scope(outer):
            with tenant_scope(inner, user_id="worker"):
                assert get_current_tenant() == inner
                assert get_current_user() == "worker"
            assert get_current_tenant() == outer
            assert get_current_user() is None

        assert get_current_tenant() is None

    def test_tenant_scope_restores_on_exception(self):
        with pytest.raises(ValueError):
            with tenant_scope(uuid4()):
                raise ValueError("boom")

        assert get_current_tenant() is None


class TestContextIsolation:
    @pytest.mark.asyncio
    async def test_concurrent_tasks_see_their_own_tenant(self):
        """Interleaved tasks never observe each other's tenant."""
        tenant_ids = [uuid4() for _ in range(5)]

        async def run(tenant_id):
            with tenant_scope(tenant_id):
                seen = []
                for _ in range(3):
                    await asyncio.sleep(0)
                    seen.append(get_current_tenant())
                return tenant_id, seen

        results = await asyncio.gather(*(run(tenant_id) for tenant_id in tenant_ids))

        for tenant_id, seen in results:
            assert seen == [tenant_id, tenant_id, tenant_id]
        assert get_current_tenant() is None
