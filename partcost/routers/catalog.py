from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..catalog import SqlCatalogRepository
from ..database import get_db
from ..weights import kg_per_meter

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/materials")
def list_materials(q: str = "", db: Session = Depends(get_db)):
    """Candidate materials, with the unit weight each descriptor resolves to."""
    items = SqlCatalogRepository(db).find_materials(q)
    return [
        {
            **item.model_dump(by_alias=True),
            "kgPerMeter": round(kg_per_meter(item.descriptor), 3),
        }
        for item in items
    ]


@router.get("/components")
def list_components(q: str = "", db: Session = Depends(get_db)):
    items = SqlCatalogRepository(db).find_components(q)
    return [item.model_dump(by_alias=True) for item in items]
