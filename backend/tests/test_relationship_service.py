# Overview: Pytest coverage for entity relationships.

import pytest

from hera.models import CoreRelationship
from hera.services.entity_service import create_entity, deactivate_entity
from hera.services.relationship_service import (
    create_relationship,
    deactivate_relationship,
    ensure_relationship,
    find_active_relationship,
    get_children,
    get_parents,
    get_relationship,
    update_relationship_payload,
)
from hera.validation import NotFoundError, ValidationError


@pytest.fixture
def category_a(db_session, org_a):
    return create_entity(org_a.id, "category", "Teas", "CAT-TEA")


class TestCreateRelationship:
    def test_edge_with_payload(self, db_session, org_a, category_a, product_a):
        rel = create_relationship(org_a.id, "contains", category_a.id, product_a.id, {"position": 1})

        assert rel.is_active is True
        assert rel.relationship_data == {"position": 1}
        assert get_children(org_a.id, category_a.id, "contains") == [product_a.id]
        assert get_parents(org_a.id, product_a.id, "contains") == [category_a.id]

    def test_no_generic_uniqueness(self, db_session, org_a, category_a, product_a):
        create_relationship(org_a.id, "contains", category_a.id, product_a.id)
        create_relationship(org_a.id, "contains", category_a.id, product_a.id)
        assert db_session.query(CoreRelationship).count() == 2

    def test_self_edge_rejected(self, db_session, org_a, product_a):
        with pytest.raises(ValidationError):
            create_relationship(org_a.id, "contains", product_a.id, product_a.id)

    def test_payload_must_be_object(self, db_session, org_a, category_a, product_a):
        with pytest.raises(ValidationError):
            create_relationship(org_a.id, "contains", category_a.id, product_a.id, ["x"])

    def test_endpoint_in_other_org(self, db_session, org_a, category_a, product_b):
        with pytest.raises(NotFoundError):
            create_relationship(org_a.id, "contains", category_a.id, product_b.id)
        assert db_session.query(CoreRelationship).count() == 0

    def test_missing_endpoint(self, db_session, org_a, category_a):
        with pytest.raises(NotFoundError):
            create_relationship(org_a.id, "contains", category_a.id, 99999)


class TestTraversal:
    def test_type_filter(self, db_session, org_a, category_a, product_a):
        supplier = create_entity(org_a.id, "vendor", "Leaf Co", "V-1")
        create_relationship(org_a.id, "contains", category_a.id, product_a.id)
        create_relationship(org_a.id, "supplies", supplier.id, product_a.id)

        assert get_parents(org_a.id, product_a.id, "supplies") == [supplier.id]
        assert sorted(get_parents(org_a.id, product_a.id)) == sorted([category_a.id, supplier.id])

    def test_inactive_edges_hidden(self, db_session, org_a, category_a, product_a):
        rel = create_relationship(org_a.id, "contains", category_a.id, product_a.id)
        deactivate_relationship(org_a.id, rel.id)

        assert get_children(org_a.id, category_a.id, "contains") == []
        with pytest.raises(NotFoundError):
            get_relationship(org_a.id, rel.id)

    def test_inactive_parent_hidden_from_child_view(self, db_session, org_a, category_a, product_a):
        create_relationship(org_a.id, "contains", category_a.id, product_a.id)
        deactivate_entity(org_a.id, category_a.id)

        assert get_parents(org_a.id, product_a.id, "contains") == []
        assert get_parents(org_a.id, product_a.id, "contains", include_inactive_entities=True) == [category_a.id]

    def test_other_org_sees_nothing(self, db_session, org_a, org_b, category_a, product_a):
        rel = create_relationship(org_a.id, "contains", category_a.id, product_a.id)

        assert get_children(org_b.id, category_a.id) == []
        with pytest.raises(NotFoundError):
            get_relationship(org_b.id, rel.id)


class TestEnsureRelationship:
    def test_get_or_create(self, db_session, org_a, product_a):
        insight = create_entity(org_a.id, "gl_intelligence", "Insight", "GLI-1")
        payload = {"intelligence_type": "gl_posting", "created_by_ai": True, "confidence_level": 0.8}

        rel, created = ensure_relationship(
            org_a.id, "transaction_has_gl_intelligence", product_a.id, insight.id, payload
        )
        again, created_again = ensure_relationship(
            org_a.id, "transaction_has_gl_intelligence", product_a.id, insight.id, {"ignored": True}
        )

        assert created is True and created_again is False
        assert again.id == rel.id
        assert again.relationship_data == payload

    def test_one_per_parent(self, db_session, org_a, category_a, product_a):
        other = create_entity(org_a.id, "product", "Mug", "MUG-1")
        first, _ = ensure_relationship(org_a.id, "primary_category", product_a.id, category_a.id, one_per_parent=True)
        second, created = ensure_relationship(org_a.id, "primary_category", product_a.id, other.id, one_per_parent=True)

        assert created is False
        assert second.id == first.id
        assert find_active_relationship(org_a.id, "primary_category", product_a.id).child_entity_id == category_a.id


class TestUpdatePayload:
    def test_replace_payload(self, db_session, org_a, category_a, product_a):
        rel = create_relationship(org_a.id, "contains", category_a.id, product_a.id, {"position": 1})
        update_relationship_payload(org_a.id, rel.id, {"position": 2})
        assert get_relationship(org_a.id, rel.id).relationship_data == {"position": 2}
