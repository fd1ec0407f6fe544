"""
Pytest fixtures for HERA universal core tests.

Provides test database setup and two-tenant fixtures.
"""

import pytest
from hera import create_app
from hera.extensions import db
from hera.models import Organization
from hera.services import duplicate_service
from hera.services.entity_service import create_entity


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        duplicate_service.clear_attribute_checks()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Hera Cafe", code="HER", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def product_a(db_session, org_a):
    """Product entity in Organization A."""
    return create_entity(org_a.id, "product", "Green Tea", "TEA-001")


@pytest.fixture(scope='function')
def product_b(db_session, org_b):
    """Product entity in Organization B."""
    return create_entity(org_b.id, "product", "Espresso", "ESP-001")
