"""
Row-level operations on CalculationData, and the one place older records
are lifted into the current schema.

All functions here are pure: they return new lists/models and never
mutate their inputs.
"""

import logging
from typing import Callable, List, Optional

from pydantic import BaseModel, ValidationError

from .schemas import (
    CURRENT_VERSION,
    CalculationData,
    CatalogItem,
    ComponentRow,
    LegacyCalculationRecord,
    MachiningKind,
    MaterialRow,
    OperationEntry,
    PriceUnit,
    SecondaryOperation,
    default_secondary_operations,
)

logger = logging.getLogger(__name__)

LEGACY_MATERIAL_FIELDS = (
    "materialId",
    "materialInfo",
    "lengthPerPieceMm",
    "materialPrice",
    "materialPriceUnit",
)
LEGACY_MACHINING_KINDS = (
    MachiningKind.SETUP,
    MachiningKind.SAWING,
    MachiningKind.MILLING,
    MachiningKind.TURNING,
)


# --- Generic row list operations ---

def _check_index(rows: list, index: int) -> None:
    if not 0 <= index < len(rows):
        raise IndexError(f"Row {index} does not exist (have {len(rows)})")


def add_row(rows: list, factory: Callable[[], BaseModel], seed: Optional[BaseModel] = None) -> list:
    """
    Add a row. A seeded row (a catalog pick) fills the first empty row if
    there is one; otherwise, and for unseeded adds, a row is appended.
    """
    rows = list(rows)
    if seed is None:
        rows.append(factory())
        return rows
    for i, row in enumerate(rows):
        if row.is_empty():
            rows[i] = seed
            return rows
    rows.append(seed)
    return rows


def update_row(rows: list, index: int, **changes) -> list:
    """Replace fields on one row. The result is re-validated, so bad numbers become 0."""
    _check_index(rows, index)
    rows = list(rows)
    row = rows[index]
    rows[index] = type(row).model_validate({**row.model_dump(), **field_changes(type(row), changes)})
    return rows


def field_changes(model, changes: dict) -> dict:
    """Map camelCase or snake_case keys onto the model's field names. Unknown keys raise ValueError."""
    by_alias = {field.alias: name for name, field in model.model_fields.items() if field.alias}
    mapped = {}
    for key, value in changes.items():
        name = by_alias.get(key, key)
        if name not in model.model_fields:
            raise ValueError(f"{model.__name__} has no field '{key}'")
        mapped[name] = value
    return mapped


def remove_row(rows: list, index: int, factory: Callable[[], BaseModel]) -> list:
    """Remove a row. Removing the last one leaves a single empty row."""
    _check_index(rows, index)
    rows = [row for i, row in enumerate(rows) if i != index]
    return rows or [factory()]


def ensure_rows(rows: list, factory: Callable[[], BaseModel]) -> list:
    return list(rows) if rows else [factory()]


# --- Catalog picks ---

def material_row_from_pick(item: CatalogItem) -> MaterialRow:
    row = MaterialRow(
        material_id=str(item.id),
        material_name=item.name,
        material_info=item.descriptor,
    )
    if item.unit_price is not None:
        row = row.model_copy(update={"material_price": item.unit_price})
    if item.price_unit == PriceUnit.PER_M.value:
        row = row.model_copy(update={"material_price_unit": PriceUnit.PER_M})
    return row


def component_row_from_pick(item: CatalogItem) -> ComponentRow:
    return ComponentRow(
        component_id=str(item.id),
        component_name=item.name,
        component_price=item.unit_price or 0.0,
        component_price_unit=item.price_unit or "per_piece",
    )


# --- Normalization ---

def _parse_rows(model, items) -> list:
    rows = []
    for item in items:
        if isinstance(item, model):
            rows.append(item)
            continue
        try:
            rows.append(model.model_validate(item))
        except ValidationError:
            logger.info("Dropping unreadable %s entry: %r", model.__name__, item)
    return rows


def normalize_to_step1_materials(payload) -> List[MaterialRow]:
    """
    Material rows of a record in any schema version.

    A non-empty modern row list wins; otherwise the legacy single-material
    fields become a one-row list; otherwise the list is empty. Passing an
    already-normalized list returns an equal list.
    """
    if isinstance(payload, CalculationData):
        return list(payload.materials)
    if isinstance(payload, list):
        return _parse_rows(MaterialRow, payload)
    if not isinstance(payload, dict):
        return []

    modern = payload.get("step1Materials", payload.get("materials"))
    if isinstance(modern, list) and modern:
        return _parse_rows(MaterialRow, modern)

    if any(key in payload for key in LEGACY_MATERIAL_FIELDS):
        legacy = LegacyCalculationRecord.model_validate(payload)
        return [MaterialRow.model_validate({
            "material_id": legacy.material_id,
            "material_name": legacy.material_name,
            "material_info": legacy.material_info,
            "length_per_piece_mm": legacy.length_per_piece_mm,
            "material_price": legacy.material_price,
            "material_price_unit": legacy.material_price_unit,
        })]
    return []


def _normalize_operation(payload: dict, kind: MachiningKind) -> OperationEntry:
    entry = payload.get(kind.value)
    if isinstance(entry, dict):
        return OperationEntry.model_validate(entry)
    if kind in LEGACY_MACHINING_KINDS and f"{kind.value}Hours" in payload:
        return OperationEntry(
            hours=payload.get(f"{kind.value}Hours"),
            minutes=payload.get(f"{kind.value}Minutes"),
            rate_per_hour=payload.get(f"{kind.value}RatePerHour"),
        )
    return OperationEntry()


def normalize_record(payload) -> CalculationData:
    """
    Lift a stored record (v1 legacy or v2 current) into CalculationData.

    This is the only function that knows about older schemas. It is
    idempotent: normalize_record(normalize_record(x)) == normalize_record(x).
    """
    if isinstance(payload, CalculationData):
        return payload.model_copy(deep=True)
    if not isinstance(payload, dict):
        return CalculationData()

    components = payload.get("step2Components", payload.get("components"))
    secondary = payload.get("secondaryOperations", payload.get("secondary_operations"))

    data = {
        "version": CURRENT_VERSION,
        "step1Materials": normalize_to_step1_materials(payload),
        "step2Components": _parse_rows(ComponentRow, components) if isinstance(components, list) else [],
        "quantity": payload.get("quantity"),
        "transportCost": payload.get("transportCost", payload.get("transport_cost")),
    }
    for kind in MachiningKind:
        data[kind.value] = _normalize_operation(payload, kind)
    if isinstance(secondary, list):
        data["secondaryOperations"] = _parse_rows(SecondaryOperation, secondary)
    else:
        data["secondaryOperations"] = default_secondary_operations()
    return CalculationData.model_validate(data)


# --- Seeding from a part's declared bill of materials ---

def _declared_material_row(item) -> Optional[MaterialRow]:
    if not isinstance(item, dict):
        return None
    return MaterialRow.model_validate({
        "material_id": item.get("id", item.get("materialId")),
        "material_name": item.get("name", item.get("materialName")),
        "material_info": item.get("materialInfo", item.get("materials_used", item.get("descriptor"))),
        "length_per_piece_mm": item.get("lengthPerPieceMm", item.get("length_mm")),
        "material_price": item.get("materialPrice", item.get("price")),
        "material_price_unit": item.get("materialPriceUnit", item.get("price_unit")),
    })


def _declared_component_row(item) -> Optional[ComponentRow]:
    if not isinstance(item, dict):
        return None
    quantity = item.get("quantity")
    return ComponentRow.model_validate({
        "component_id": item.get("id", item.get("componentId")),
        "component_name": item.get("name", item.get("componentName")),
        "quantity": 1 if quantity is None else quantity,
        "component_price": item.get("componentPrice", item.get("price")),
        "component_price_unit": item.get("componentPriceUnit", item.get("price_unit")) or "per_piece",
    })


def seed_from_part(part) -> CalculationData:
    """Fresh CalculationData with one row per material/component the part declares."""
    declared_materials = getattr(part, "materials_used", None) or []
    declared_components = getattr(part, "components_used", None) or []
    if isinstance(declared_materials, dict):
        declared_materials = [declared_materials]
    if isinstance(declared_components, dict):
        declared_components = [declared_components]

    materials = [r for r in map(_declared_material_row, declared_materials) if r is not None]
    components = [r for r in map(_declared_component_row, declared_components) if r is not None]
    return CalculationData(
        materials=ensure_rows(materials, MaterialRow),
        components=ensure_rows(components, ComponentRow),
    )
