"""
Read-only catalog access for the calculator.

The calculator only ever sees CatalogItem records; where they come from is
behind CatalogRepository so sessions can be driven without a database.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models
from .schemas import CatalogItem

logger = logging.getLogger(__name__)


class CatalogRepository(ABC):
    """Candidate materials and components for the pickers."""

    @abstractmethod
    def find_materials(self, query: str = "") -> List[CatalogItem]:
        pass

    @abstractmethod
    def find_components(self, query: str = "") -> List[CatalogItem]:
        pass

    @abstractmethod
    def get_material(self, item_id) -> Optional[CatalogItem]:
        pass

    @abstractmethod
    def get_component(self, item_id) -> Optional[CatalogItem]:
        pass


class SqlCatalogRepository(CatalogRepository):
    """Catalog backed by the inventory table. Newest entries first."""

    def __init__(self, db: Session, limit: int = 50):
        self.db = db
        self.limit = limit

    def find_materials(self, query: str = "") -> List[CatalogItem]:
        return self._find(models.CATEGORY_MATERIALS, query)

    def find_components(self, query: str = "") -> List[CatalogItem]:
        return self._find(models.CATEGORY_COMPONENTS, query)

    def get_material(self, item_id) -> Optional[CatalogItem]:
        return self._get(models.CATEGORY_MATERIALS, item_id)

    def get_component(self, item_id) -> Optional[CatalogItem]:
        return self._get(models.CATEGORY_COMPONENTS, item_id)

    def _find(self, category: str, query: str) -> List[CatalogItem]:
        q = self.db.query(models.InventoryItem).filter(models.InventoryItem.category == category)
        term = (query or "").strip()
        if term:
            q = q.filter(models.InventoryItem.name.ilike(f"%{term}%"))
        items = q.order_by(
            models.InventoryItem.created_at.desc(), models.InventoryItem.id.desc()
        ).limit(self.limit).all()
        return [self._to_catalog_item(item) for item in items]

    def _get(self, category: str, item_id) -> Optional[CatalogItem]:
        item = self.db.query(models.InventoryItem).filter(
            models.InventoryItem.id == item_id,
            models.InventoryItem.category == category,
        ).first()
        return self._to_catalog_item(item) if item else None

    def _to_catalog_item(self, item: models.InventoryItem) -> CatalogItem:
        descriptor = item.materials_used if isinstance(item.materials_used, dict) else None
        if item.materials_used and descriptor is None:
            logger.info("Inventory item %s has an unreadable shape descriptor", item.id)
        return CatalogItem(
            id=item.id,
            name=item.name,
            descriptor=descriptor,
            unit_price=item.unit_price,
            price_unit=item.price_unit,
        )
