"""
Shared test fixtures: SQLite test database, test client, sample parts.
"""

import os
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Point settings at the test database before importing app modules
os.environ["DATABASE_URL"] = "sqlite:///./test.db"

from partcost import models
from partcost.database import Base, get_db
from partcost.main import app
from partcost.routers.calculator import registry


TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop after. Open sessions are discarded too."""
    Base.metadata.create_all(bind=engine)
    yield
    registry.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def db():
    """Direct database session for test setup/assertions."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


ROUND_BAR_S355 = {
    "calculationType": "simple_formula",
    "shape": "Round bar",
    "material": "S355",
    "dimensions": {"diameter": "20"},
}

FLAT_40X20 = {
    "calculationType": "simple_formula",
    "shape": "Rectangular bar",
    "material": "S235",
    "dimensions": {"width": "40", "height": "20"},
}

UPN_100 = {
    "calculationType": "profile_table",
    "shape": "UPN",
    "material": "S235",
    "dimensions": {"kg_per_meter": "10.6"},
    "profileId": 7,
}


@pytest.fixture
def bare_part(db):
    """A part that declares nothing and has never been calculated."""
    part = models.Part(name="Bracket", part_number="BR-001")
    db.add(part)
    db.commit()
    db.refresh(part)
    return part


@pytest.fixture
def declared_part(db):
    """A part with a declared bill of materials."""
    part = models.Part(
        name="Shaft assembly",
        part_number="SA-100",
        currency="CHF",
        weight=1.5,
        materials_used=[
            {"id": 11, "name": "Round bar S355 Ø20", "materialInfo": ROUND_BAR_S355, "lengthPerPieceMm": 250},
        ],
        components_used=[
            {"id": 21, "name": "Ball bearing 6204", "quantity": 2},
            {"id": 22, "name": "Circlip"},
        ],
    )
    db.add(part)
    db.commit()
    db.refresh(part)
    return part


@pytest.fixture
def inventory(db):
    """Catalog entries: two materials and two components."""
    items = [
        models.InventoryItem(name="Flat bar 40x20 S235", category=models.CATEGORY_MATERIALS,
                             materials_used=FLAT_40X20, unit_price=2.5, price_unit="per_kg"),
        models.InventoryItem(name="UPN 100", category=models.CATEGORY_MATERIALS,
                             materials_used=UPN_100, unit_price=18.0, price_unit="per_m"),
        models.InventoryItem(name="Hex bolt M8x30", category=models.CATEGORY_COMPONENTS,
                             unit_price=0.12, price_unit="per_piece"),
        models.InventoryItem(name="Hex nut M8", category=models.CATEGORY_COMPONENTS,
                             unit_price=0.05, price_unit="per_piece"),
    ]
    db.add_all(items)
    db.commit()
    return {item.name: item.id for item in items}
