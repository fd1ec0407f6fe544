# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for every store.

These tests create two organizations, each with its own entities, then
verify that:
1. An id from Organization B is reported as not found in Organization A
2. Queries scoped to one org never return another org's rows
3. Omitting the org id is a validation error, not an empty result
4. Cross-tenant access attempts are logged
"""

import pytest

from hera.services.entity_service import create_entity, get_entity, list_entities
from hera.services.metadata_service import list_metadata, put_metadata
from hera.services.relationship_service import create_relationship, get_children
from hera.services.tenant_service import (
    create_organization,
    list_organizations,
    require_entities_in_org,
    require_entity_in_org,
    require_org,
)
from hera.services.transaction_service import create_transaction, get_transaction_with_lines, list_transactions
from hera.time_utils import today
from hera.validation import NotFoundError, ValidationError


class TestTenantServiceHelpers:
    """Test tenant_service helper functions."""

    def test_require_entity_in_org_valid(self, db_session, org_a, product_a):
        assert require_entity_in_org(product_a.id, org_a.id).id == product_a.id

    def test_require_entity_in_org_cross_tenant(self, db_session, org_a, product_b):
        with pytest.raises(NotFoundError):
            require_entity_in_org(product_b.id, org_a.id)

    def test_require_entity_in_org_nonexistent(self, db_session, org_a):
        with pytest.raises(NotFoundError):
            require_entity_in_org(99999, org_a.id)

    def test_cross_tenant_access_logged(self, db_session, org_a, product_b, caplog):
        with caplog.at_level("WARNING"):
            with pytest.raises(NotFoundError):
                require_entity_in_org(product_b.id, org_a.id)
        assert "Cross-tenant entity access denied" in caplog.text

    def test_require_entities_in_org_names_missing(self, db_session, org_a, product_a, product_b):
        with pytest.raises(NotFoundError, match=str(product_b.id)):
            require_entities_in_org([product_a.id, product_b.id], org_a.id)

    def test_require_org(self, db_session, org_a):
        assert require_org(org_a.id).id == org_a.id
        with pytest.raises(NotFoundError):
            require_org(99999)

    def test_missing_org_id_is_validation_error(self, db_session):
        with pytest.raises(ValidationError):
            require_org(None)
        with pytest.raises(ValidationError):
            list_entities(None, "product")

    def test_create_and_list_organizations(self, db_session):
        org = create_organization(name=" Hera Bistro ", code="hb")
        assert org.code == "HB"
        assert [o.id for o in list_organizations()] == [org.id]
        with pytest.raises(ValidationError):
            create_organization(name="  ")


class TestCrossTenantStores:
    def test_entity_reads(self, db_session, org_a, org_b, product_a, product_b):
        with pytest.raises(NotFoundError):
            get_entity(org_a.id, product_b.id)
        assert [e.id for e in list_entities(org_a.id, "product")] == [product_a.id]

    def test_same_code_independent_per_org(self, db_session, org_a, org_b):
        a = create_entity(org_a.id, "customer", "Alice", "C-1", fields={"email": "a@x.com"})
        b = create_entity(org_b.id, "customer", "Alice", "C-1", fields={"email": "a@x.com"})
        assert a.id != b.id

    def test_metadata(self, db_session, org_a, org_b, product_a, product_b):
        put_metadata(org_b.id, "product", product_b.id, "ui", "display", "color", "red")
        with pytest.raises(NotFoundError):
            put_metadata(org_a.id, "product", product_b.id, "ui", "display", "color", "blue")
        assert list_metadata(org_a.id, [product_a.id, product_b.id], "product") == []

    def test_relationships(self, db_session, org_a, org_b, product_a, product_b):
        with pytest.raises(NotFoundError):
            create_relationship(org_a.id, "bundled_with", product_a.id, product_b.id)
        with pytest.raises(NotFoundError):
            create_relationship(org_b.id, "bundled_with", product_a.id, product_b.id)

        other_b = create_entity(org_b.id, "product", "Latte", "LAT-001")
        create_relationship(org_b.id, "bundled_with", product_b.id, other_b.id)
        assert get_children(org_a.id, product_b.id) == []
        assert get_children(org_b.id, product_b.id) == [other_b.id]

    def test_transactions(self, db_session, org_a, org_b):
        tx_b = create_transaction(org_b.id, "sales", "S-1", today(), [{"quantity": 1, "unit_price": 2}])

        with pytest.raises(NotFoundError):
            get_transaction_with_lines(org_a.id, tx_b.id)
        assert list_transactions(org_a.id) == []
        assert [t.id for t in list_transactions(org_b.id)] == [tx_b.id]
