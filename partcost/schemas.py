"""
Calculation entities.

Persisted records and API payloads use camelCase keys (the format existing
price_calculation records were written in); attributes are snake_case.
Every numeric field parses leniently: a value that does not parse is 0.
"""

import enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .config import settings
from .numbers import parse_count, parse_non_negative, parse_number
from .weights import PROFILE_TABLE, SIMPLE_FORMULA

Number = Annotated[float, BeforeValidator(parse_number)]
NonNegative = Annotated[float, BeforeValidator(parse_non_negative)]
Count = Annotated[int, BeforeValidator(parse_count)]

CURRENT_VERSION = 2


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class CalculationType(str, enum.Enum):
    SIMPLE_FORMULA = SIMPLE_FORMULA
    PROFILE_TABLE = PROFILE_TABLE


class PriceUnit(str, enum.Enum):
    PER_KG = "per_kg"
    PER_M = "per_m"


class MachiningKind(str, enum.Enum):
    SETUP = "setup"
    SAWING = "sawing"
    MILLING = "milling"
    TURNING = "turning"
    WELDING = "welding"


class SecondaryOperationKind(str, enum.Enum):
    PRESET = "preset"
    CUSTOM = "custom"


def _blank_to_str(value) -> str:
    return "" if value is None else str(value)


Text = Annotated[str, BeforeValidator(_blank_to_str)]


# --- Line items ---

class ShapeDescriptor(CamelModel):
    """Cross-section kind + dimensions (mm) + material grade."""
    calculation_type: CalculationType = CalculationType.SIMPLE_FORMULA
    shape: Text = ""
    material: Text = ""  # grade, e.g. "S355"; drives density
    dimensions: dict[str, Any] = Field(default_factory=dict)
    profile_id: Optional[Union[int, str]] = None

    @field_validator("calculation_type", mode="before")
    @classmethod
    def _known_calculation_type(cls, value):
        value = getattr(value, "value", value)
        if value == PROFILE_TABLE:
            return CalculationType.PROFILE_TABLE
        return CalculationType.SIMPLE_FORMULA

    @field_validator("dimensions", mode="before")
    @classmethod
    def _dimensions_dict(cls, value):
        return value if isinstance(value, dict) else {}

    @field_validator("profile_id", mode="before")
    @classmethod
    def _profile_id(cls, value):
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, float):
            return int(value) if value.is_integer() else str(value)
        if isinstance(value, (int, str)):
            return value
        return None


class MaterialRow(CamelModel):
    material_id: Text = ""
    material_name: Text = ""
    material_info: Optional[ShapeDescriptor] = None
    length_per_piece_mm: NonNegative = 0.0
    material_price: Number = 0.0
    material_price_unit: PriceUnit = PriceUnit.PER_KG

    @field_validator("material_info", mode="before")
    @classmethod
    def _descriptor_or_none(cls, value):
        if isinstance(value, (dict, ShapeDescriptor)):
            return value
        return None

    @field_validator("material_price_unit", mode="before")
    @classmethod
    def _known_price_unit(cls, value):
        value = getattr(value, "value", value)
        return PriceUnit.PER_M if value == PriceUnit.PER_M.value else PriceUnit.PER_KG

    def is_empty(self) -> bool:
        return (
            not self.material_id
            and not self.material_name
            and self.material_info is None
            and self.length_per_piece_mm == 0
            and self.material_price == 0
        )

    @property
    def has_geometry(self) -> bool:
        return self.material_info is not None and self.length_per_piece_mm > 0


class ComponentRow(CamelModel):
    component_id: Text = ""
    component_name: Text = ""
    quantity: NonNegative = 1.0
    component_price: Number = 0.0
    component_price_unit: Text = "per_piece"  # display only

    def is_empty(self) -> bool:
        return not self.component_id and not self.component_name and self.component_price == 0


class OperationEntry(CamelModel):
    """Machine time for one operation kind. Minutes past 59 carry into hours."""
    hours: NonNegative = 0.0
    minutes: NonNegative = 0.0
    rate_per_hour: Number = 0.0

    @model_validator(mode="after")
    def _carry_minutes(self):
        if self.minutes >= 60:
            extra_hours, self.minutes = divmod(self.minutes, 60)
            self.hours += extra_hours
        return self

    @property
    def total_hours(self) -> float:
        return self.hours + self.minutes / 60


def is_preset_name(name) -> bool:
    return str(name or "") in settings.SECONDARY_OPERATION_PRESETS


class SecondaryOperation(CamelModel):
    """Flat per-piece add-on. Either one of the configured presets or a custom entry."""
    kind: SecondaryOperationKind = SecondaryOperationKind.CUSTOM
    name: Text = ""
    price_per_piece: Number = 0.0

    @model_validator(mode="before")
    @classmethod
    def _tag_kind(cls, data):
        # Untagged or unknown kinds (older records) are presets only if the name matches one
        if isinstance(data, dict) and data.get("kind") not in list(SecondaryOperationKind):
            data = dict(data)
            preset = is_preset_name(data.get("name"))
            data["kind"] = SecondaryOperationKind.PRESET if preset else SecondaryOperationKind.CUSTOM
        return data

    @model_validator(mode="after")
    def _preset_must_exist(self):
        if self.kind == SecondaryOperationKind.PRESET and not is_preset_name(self.name):
            self.kind = SecondaryOperationKind.CUSTOM
        return self

    @classmethod
    def preset(cls, name: str, price_per_piece: float = 0.0) -> "SecondaryOperation":
        return cls(kind=SecondaryOperationKind.PRESET, name=name, price_per_piece=price_per_piece)

    @classmethod
    def custom(cls, name: str = "", price_per_piece: float = 0.0) -> "SecondaryOperation":
        return cls(kind=SecondaryOperationKind.CUSTOM, name=name, price_per_piece=price_per_piece)

    @property
    def display_name(self) -> str:
        return self.name or "Custom"


def default_secondary_operations() -> List[SecondaryOperation]:
    return [SecondaryOperation.preset(name) for name in settings.SECONDARY_OPERATION_PRESETS]


# --- Aggregate ---

class CalculationData(CamelModel):
    """The unit of persistence: everything the wizard collects for one part."""
    version: Literal[2] = CURRENT_VERSION
    materials: List[MaterialRow] = Field(default_factory=list, alias="step1Materials")
    components: List[ComponentRow] = Field(default_factory=list, alias="step2Components")
    setup: OperationEntry = Field(default_factory=OperationEntry)
    sawing: OperationEntry = Field(default_factory=OperationEntry)
    milling: OperationEntry = Field(default_factory=OperationEntry)
    turning: OperationEntry = Field(default_factory=OperationEntry)
    welding: OperationEntry = Field(default_factory=OperationEntry)
    secondary_operations: List[SecondaryOperation] = Field(default_factory=default_secondary_operations)
    quantity: Count = 0
    transport_cost: NonNegative = 0.0

    def operation(self, kind: MachiningKind) -> OperationEntry:
        return getattr(self, MachiningKind(kind).value)

    def to_record(self) -> dict:
        """JSON-ready dict in the persisted (camelCase) format."""
        return self.model_dump(mode="json", by_alias=True)


class LegacyCalculationRecord(CamelModel):
    """
    Version 1 record: one material, flat machining fields, untagged add-ons.
    Read-only; normalize_record() lifts it into CalculationData.
    """
    material_id: Text = ""
    material_name: Text = ""
    material_info: Optional[Any] = None
    length_per_piece_mm: NonNegative = 0.0
    material_price: Number = 0.0
    material_price_unit: Text = PriceUnit.PER_KG.value

    setup_hours: NonNegative = 0.0
    setup_minutes: NonNegative = 0.0
    setup_rate_per_hour: Number = 0.0
    sawing_hours: NonNegative = 0.0
    sawing_minutes: NonNegative = 0.0
    sawing_rate_per_hour: Number = 0.0
    milling_hours: NonNegative = 0.0
    milling_minutes: NonNegative = 0.0
    milling_rate_per_hour: Number = 0.0
    turning_hours: NonNegative = 0.0
    turning_minutes: NonNegative = 0.0
    turning_rate_per_hour: Number = 0.0

    secondary_operations: Optional[Any] = None
    quantity: Count = 0
    transport_cost: NonNegative = 0.0

    @field_validator("secondary_operations", mode="before")
    @classmethod
    def _entries_only(cls, value):
        if not isinstance(value, list):
            return None
        return [entry for entry in value if isinstance(entry, dict)]


# --- Catalog ---

class CatalogItem(CamelModel):
    """What the calculator consumes from a catalog pick."""
    id: Union[int, str]
    name: str
    descriptor: Optional[ShapeDescriptor] = None
    unit_price: Optional[float] = None
    price_unit: Optional[str] = None


# --- Results ---

class OperationCost(CamelModel):
    per_piece: float = 0.0
    total: float = 0.0


class SecondaryOperationCost(CamelModel):
    name: str
    price_per_piece: float
    total: float


class Totals(CamelModel):
    material_cost_per_piece: float = 0.0
    material_cost_total: float = 0.0
    component_cost_per_piece: float = 0.0
    component_cost_total: float = 0.0
    setup: OperationCost = Field(default_factory=OperationCost)
    sawing: OperationCost = Field(default_factory=OperationCost)
    milling: OperationCost = Field(default_factory=OperationCost)
    turning: OperationCost = Field(default_factory=OperationCost)
    welding: OperationCost = Field(default_factory=OperationCost)
    secondary_ops_per_piece: float = 0.0
    secondary_ops_total: float = 0.0
    secondary_operations: List[SecondaryOperationCost] = Field(default_factory=list)
    transport_per_piece: float = 0.0
    transport_total: float = 0.0
    total_per_piece: float = 0.0
    total_for_quantity: float = 0.0
    weight_per_piece: float = 0.0
    total_weight: float = 0.0
    quantity: int = 0
