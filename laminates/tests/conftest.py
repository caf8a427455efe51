"""
Shared fixtures: in-memory database, fake blob store, sample master data
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from laminates.core.config import Settings
from laminates.core.constants import ProductUnit, ReferenceCategory, UserRole
from laminates.db.database import Base, create_db_engine
from laminates.db import models  # noqa: F401
from laminates.db.models import Customer, Location, Product, Reference, User
from laminates.tests.fixtures.blob_fixtures import FakeBlobStore


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def settings():
    return Settings(
        image_compression_enabled=False,
        letterhead_image_path=None,
        company_name="ACME LAMINATES",
        max_images_per_item=3,
        public_access_expiry_months=3,
    )


@pytest.fixture
def test_user(test_db):
    user = User(email="employee@example.com", user_name="Employee", hashed_password="x",
                role=UserRole.EMPLOYEE.value)
    test_db.add(user)
    test_db.commit()
    return user


@pytest.fixture
def admin_user(test_db):
    user = User(email="admin@example.com", user_name="Admin", hashed_password="x", role=UserRole.ADMIN.value)
    test_db.add(user)
    test_db.commit()
    return user


@pytest.fixture
def test_reference(test_db):
    reference = Reference(name="Ramesh", mobile_no="9876543210", category=ReferenceCategory.CARPENTER.value)
    test_db.add(reference)
    test_db.commit()
    return reference


@pytest.fixture
def test_customer(test_db, test_reference):
    customer = Customer(name="Sunil Shah", mobile_no="9123456780", address="12 MG Road, Pune",
                        gst_number="27ABCDE1234F1Z5", reference_id=test_reference.id)
    test_db.add(customer)
    test_db.commit()
    return customer


@pytest.fixture
def test_product(test_db):
    product = Product(name="Merino Laminate 1mm", description="Suede finish", unit=ProductUnit.PCS.value)
    test_db.add(product)
    test_db.commit()
    return product


@pytest.fixture
def second_product(test_db):
    product = Product(name="Edge Band 22mm", unit=ProductUnit.METER.value)
    test_db.add(product)
    test_db.commit()
    return product


@pytest.fixture
def test_location(test_db):
    location = Location(name="Kitchen")
    test_db.add(location)
    test_db.commit()
    return location


@pytest.fixture
def fixed_now():
    return datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)
