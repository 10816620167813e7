from sqlalchemy import Column, Integer, String, Float, DateTime, Text, JSON
from datetime import datetime
from .database import Base


# Inventory categories the calculator reads from
CATEGORY_MATERIALS = "Materials"
CATEGORY_COMPONENTS = "Components"


class Part(Base):
    """A produced part. Owns the saved price calculation record."""
    __tablename__ = "parts"

    id = Column(Integer, primary_key=True, index=True)
    part_number = Column(String, nullable=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    currency = Column(String, nullable=True)  # ISO code; falls back to settings.DEFAULT_CURRENCY
    weight = Column(Float, nullable=True)  # Declared kg/piece, used when no material row has geometry

    # Declared bill of materials, used to seed a fresh calculation
    # materials_used: [{id, name, materialInfo, lengthPerPieceMm?, materialPrice?, materialPriceUnit?}]
    # components_used: [{id, name, quantity?, price?}]
    materials_used = Column(JSON, nullable=True)
    components_used = Column(JSON, nullable=True)

    # Saved CalculationData (v2) or a legacy single-material record (v1)
    price_calculation = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class InventoryItem(Base):
    """Catalog entry the calculator can pick from. Read-only from the calculator's side."""
    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=False, index=True)  # 'Materials' | 'Components'
    # Shape descriptor for materials: {material, shape, calculationType, dimensions}
    materials_used = Column(JSON, nullable=True)
    unit_price = Column(Float, nullable=True)
    price_unit = Column(String, nullable=True)  # 'per_kg' | 'per_m' for materials, 'per_piece' for components
    created_at = Column(DateTime, default=datetime.utcnow)
