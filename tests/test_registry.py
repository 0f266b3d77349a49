import uuid

import pytest

from tenantdb.core.errors import (
    InvalidDatabaseName,
    InvalidTenantId,
    MissingDatabaseName,
    ProvisionFailed,
    TenantAlreadyExists,
    TenantNotFound,
)
from tenantdb.models.tenant import Tenant


def _insert_raw(tenancy, **fields):
    with tenancy.session_factory() as session:
        session.add(Tenant(**fields))
        session.commit()


class TestTenantRegistry:
    def test_create_and_find(self, tenancy):
        created = tenancy.registry.create("Acme", "tenant_acme", tenant_id="acme", data={"plan": "pro"})

        found = tenancy.registry.find("acme")
        assert found.id == created.id == "acme"
        assert found.name == "Acme"
        assert found.database_name == "tenant_acme"
        assert found.data == {"plan": "pro"}

    def test_generates_uuid_when_no_id_given(self, tenancy):
        created = tenancy.registry.create("Globex", "tenant_globex")
        assert str(uuid.UUID(created.id)) == created.id

    def test_find_is_deterministic(self, tenancy):
        tenancy.registry.create("Acme", "tenant_acme", tenant_id="acme")
        names = {tenancy.registry.find("acme").database_name for _ in range(5)}
        assert names == {"tenant_acme"}

    def test_unknown_tenant(self, tenancy):
        with pytest.raises(TenantNotFound) as exc:
            tenancy.registry.find("nobody")
        assert exc.value.status_code == 404
        assert exc.value.tenant_id == "nobody"

    def test_duplicate_id(self, tenancy):
        tenancy.registry.create("Acme", "tenant_acme", tenant_id="acme")
        with pytest.raises(TenantAlreadyExists) as exc:
            tenancy.registry.create("Acme again", "tenant_acme2", tenant_id="acme")
        assert exc.value.status_code == 409

    def test_duplicate_database_name(self, tenancy):
        tenancy.registry.create("Acme", "tenant_shared", tenant_id="acme")
        with pytest.raises(TenantAlreadyExists):
            tenancy.registry.create("Globex", "tenant_shared", tenant_id="globex")

    def test_invalid_database_name_is_not_persisted(self, tenancy):
        with pytest.raises(InvalidDatabaseName):
            tenancy.registry.create("Evil", "x; DROP TABLE tenants", tenant_id="evil")
        with pytest.raises(TenantNotFound):
            tenancy.registry.find("evil")

    @pytest.mark.parametrize("tenant_id", ["acme.corp", "acme corp", "", "x" * 65, "acme\n"])
    def test_id_must_be_usable_as_header(self, tenancy, tenant_id):
        with pytest.raises(InvalidTenantId) as exc:
            tenancy.registry.create("Acme", "tenant_acme", tenant_id=tenant_id)
        assert exc.value.status_code == 400
        assert tenancy.registry.list() == []

    def test_list(self, tenancy):
        tenancy.registry.create("Acme", "tenant_acme", tenant_id="acme")
        tenancy.registry.create("Globex", "tenant_globex", tenant_id="globex")
        assert {t.id for t in tenancy.registry.list()} == {"acme", "globex"}


class TestLegacyDatabaseName:
    def test_blob_value_is_moved_to_column(self, tenancy):
        _insert_raw(
            tenancy,
            id="legacy",
            name="Legacy",
            database_name=None,
            data={"database_name": "tenant_legacy", "plan": "basic"},
        )

        found = tenancy.registry.find("legacy")
        assert found.database_name == "tenant_legacy"

        # Persisted: a plain read sees the typed column and a cleaned blob
        with tenancy.session_factory() as session:
            row = session.get(Tenant, "legacy")
            assert row.database_name == "tenant_legacy"
            assert row.data == {"plan": "basic"}

    def test_missing_everywhere(self, tenancy):
        _insert_raw(tenancy, id="empty", name="Empty", database_name=None, data={"plan": "basic"})

        with pytest.raises(MissingDatabaseName) as exc:
            tenancy.registry.find("empty")
        assert exc.value.status_code == 404
        assert exc.value.code == "database_name_missing"

    def test_invalid_legacy_value(self, tenancy):
        _insert_raw(
            tenancy,
            id="bad",
            name="Bad",
            database_name=None,
            data={"database_name": "tenant-bad; DROP"},
        )

        with pytest.raises(InvalidDatabaseName):
            tenancy.registry.find("bad")

        with tenancy.session_factory() as session:
            assert session.get(Tenant, "bad").database_name is None

    def test_legacy_value_owned_by_another_tenant(self, tenancy):
        tenancy.registry.create("Owner", "tenant_shared", tenant_id="owner")
        _insert_raw(
            tenancy,
            id="copycat",
            name="Copycat",
            database_name=None,
            data={"database_name": "tenant_shared"},
        )

        with pytest.raises(ProvisionFailed) as exc:
            tenancy.registry.find("copycat")
        assert exc.value.tenant_id == "copycat"
        assert exc.value.database == "tenant_shared"

        with tenancy.session_factory() as session:
            row = session.get(Tenant, "copycat")
            assert row.database_name is None
            assert row.data == {"database_name": "tenant_shared"}
