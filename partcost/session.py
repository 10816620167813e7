"""
CalculationSession: the five-step wizard around one part's CalculationData.

Steps:
  1  materials: MaterialRow list
  2  components: ComponentRow list
  3  machining: setup, sawing, milling, turning, welding
  4  secondary ops: flat per-piece add-ons
  5  quantity/transport
  results: read-only view of the totals; edit returns to 5

Transitions: next (n → n+1, 5 → results), back (results → 5, n → n-1),
edit (results → 5). Anything else raises InvalidTransition. Data can only
be changed on steps 1-5; in results every mutation raises SessionLocked.
Step changes and data changes on one session run one at a time.
"""

import enum
import functools
import threading
from contextlib import contextmanager
from typing import List, Optional

from . import line_items
from .catalog import CatalogRepository
from .pricing_engine import CostAggregator
from .schemas import (
    CalculationData,
    CatalogItem,
    ComponentRow,
    MachiningKind,
    MaterialRow,
    SecondaryOperation,
    Totals,
    is_preset_name,
)


class Step(enum.Enum):
    MATERIALS = 1
    COMPONENTS = 2
    MACHINING = 3
    SECONDARY_OPERATIONS = 4
    QUANTITY = 5
    RESULTS = "results"


WIZARD_STEPS = [
    Step.MATERIALS,
    Step.COMPONENTS,
    Step.MACHINING,
    Step.SECONDARY_OPERATIONS,
    Step.QUANTITY,
]


class InvalidTransition(Exception):
    """Navigation that is not defined from the current step."""


class SessionLocked(Exception):
    """Mutation attempted while the session shows results."""


class PersistenceBusy(Exception):
    """A save or load is already running for this session."""


def _navigation(method):
    """Run a step change while holding the session's state lock."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._state_lock:
            return method(self, *args, **kwargs)
    return wrapper


def _mutation(method):
    """Run a data change under the state lock. The results lock is checked before any index."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._state_lock:
            self._require_editable()
            return method(self, *args, **kwargs)
    return wrapper


class CalculationSession:
    """Owns one CalculationData and sequences its data entry."""

    def __init__(
        self,
        part_id,
        data: Optional[CalculationData] = None,
        step: Step = Step.MATERIALS,
        catalog: Optional[CatalogRepository] = None,
        currency: str = "EUR",
        fallback_weight_per_piece: float = 0.0,
    ):
        self.part_id = part_id
        self.catalog = catalog
        self.currency = currency
        self.fallback_weight_per_piece = fallback_weight_per_piece
        self._step = step
        self._aggregator = CostAggregator()
        self._persistence_lock = threading.Lock()
        self._state_lock = threading.RLock()

        data = data.model_copy(deep=True) if data is not None else CalculationData()
        # A row list is never empty while the wizard is open
        data.materials = line_items.ensure_rows(data.materials, MaterialRow)
        data.components = line_items.ensure_rows(data.components, ComponentRow)
        self._data = data

        # Ephemeral picker state, never persisted
        self.material_search = ""
        self.component_search = ""

    # --- State ---

    @property
    def step(self) -> Step:
        return self._step

    @property
    def data(self) -> CalculationData:
        """A copy; change data through the session's mutation methods."""
        return self._data.model_copy(deep=True)

    @property
    def is_editable(self) -> bool:
        return self._step != Step.RESULTS

    def totals(self) -> Totals:
        """Fresh totals for the current data. Available from any step."""
        return self._aggregator.totals(self._data, self.fallback_weight_per_piece)

    # --- Navigation ---

    @_navigation
    def next(self) -> Step:
        if self._step == Step.RESULTS:
            raise InvalidTransition("Already showing results")
        if self._step == Step.QUANTITY:
            self._step = Step.RESULTS
        else:
            self._step = WIZARD_STEPS[WIZARD_STEPS.index(self._step) + 1]
        return self._step

    @_navigation
    def back(self) -> Step:
        if self._step == Step.RESULTS:
            self._step = Step.QUANTITY
        elif self._step == Step.MATERIALS:
            raise InvalidTransition("Step 1 is the first step")
        else:
            self._step = WIZARD_STEPS[WIZARD_STEPS.index(self._step) - 1]
        return self._step

    @_navigation
    def edit(self) -> Step:
        """Leave results for step 5 without touching the data."""
        if self._step != Step.RESULTS:
            raise InvalidTransition("Edit is only available from results")
        self._step = Step.QUANTITY
        return self._step

    @_navigation
    def show_results(self) -> None:
        """Jump straight to results (used when resuming a saved calculation)."""
        self._step = Step.RESULTS

    # --- Mutation ---

    def _require_editable(self) -> None:
        if not self.is_editable:
            raise SessionLocked("Calculation is showing results; use edit to change it")

    def _mutate(self, **fields) -> None:
        self._data = self._data.model_copy(update=fields)

    @_mutation
    def add_material(self, pick: Optional[CatalogItem] = None) -> int:
        """Add a material row, or apply a catalog pick. Returns the index of the affected row."""
        seed = line_items.material_row_from_pick(pick) if pick is not None else None
        rows = line_items.add_row(self._data.materials, MaterialRow, seed)
        self._mutate(materials=rows)
        return self._affected_index(rows, seed)

    @_mutation
    def update_material(self, index: int, **changes) -> MaterialRow:
        rows = line_items.update_row(self._data.materials, index, **changes)
        self._mutate(materials=rows)
        return rows[index]

    @_mutation
    def remove_material(self, index: int) -> None:
        rows = line_items.remove_row(self._data.materials, index, MaterialRow)
        self._mutate(materials=rows)

    @_mutation
    def add_component(self, pick: Optional[CatalogItem] = None) -> int:
        seed = line_items.component_row_from_pick(pick) if pick is not None else None
        rows = line_items.add_row(self._data.components, ComponentRow, seed)
        self._mutate(components=rows)
        return self._affected_index(rows, seed)

    @_mutation
    def update_component(self, index: int, **changes) -> ComponentRow:
        rows = line_items.update_row(self._data.components, index, **changes)
        self._mutate(components=rows)
        return rows[index]

    @_mutation
    def remove_component(self, index: int) -> None:
        rows = line_items.remove_row(self._data.components, index, ComponentRow)
        self._mutate(components=rows)

    @_mutation
    def update_operation(self, kind, **changes) -> None:
        kind = MachiningKind(kind)
        entry = self._data.operation(kind)
        updated = type(entry).model_validate(
            {**entry.model_dump(), **line_items.field_changes(type(entry), changes)}
        )
        self._mutate(**{kind.value: updated})

    @_mutation
    def add_secondary_operation(self, name: Optional[str] = None, price_per_piece=0.0) -> int:
        """Add a preset if `name` is one, otherwise a custom operation."""
        if name and is_preset_name(name):
            op = SecondaryOperation.preset(name, price_per_piece)
        else:
            op = SecondaryOperation.custom(name or "", price_per_piece)
        ops = self._data.secondary_operations + [op]
        self._mutate(secondary_operations=ops)
        return len(ops) - 1

    @_mutation
    def update_secondary_operation(self, index: int, **changes) -> SecondaryOperation:
        ops = line_items.update_row(self._data.secondary_operations, index, **changes)
        self._mutate(secondary_operations=ops)
        return ops[index]

    @_mutation
    def remove_secondary_operation(self, index: int) -> None:
        # Unlike row lists, secondary operations may be emptied entirely
        if not 0 <= index < len(self._data.secondary_operations):
            raise IndexError(f"Secondary operation {index} does not exist")
        ops = [op for i, op in enumerate(self._data.secondary_operations) if i != index]
        self._mutate(secondary_operations=ops)

    @_mutation
    def set_run(self, quantity=None, transport_cost=None) -> None:
        """Step 5 inputs. Values that do not parse become 0."""
        current = self._data.model_dump()
        if quantity is not None:
            current["quantity"] = quantity
        if transport_cost is not None:
            current["transport_cost"] = transport_cost
        validated = CalculationData.model_validate(current)
        self._mutate(quantity=validated.quantity, transport_cost=validated.transport_cost)

    # --- Catalog ---

    def search_materials(self, query: str, catalog: Optional[CatalogRepository] = None) -> List[CatalogItem]:
        self.material_search = query or ""
        return self._catalog(catalog).find_materials(self.material_search)

    def search_components(self, query: str, catalog: Optional[CatalogRepository] = None) -> List[CatalogItem]:
        self.component_search = query or ""
        return self._catalog(catalog).find_components(self.component_search)

    def _catalog(self, catalog: Optional[CatalogRepository]) -> CatalogRepository:
        catalog = catalog or self.catalog
        if catalog is None:
            raise RuntimeError("No catalog repository attached to this session")
        return catalog

    # --- Persistence guard ---

    @contextmanager
    def persistence_slot(self):
        """Hold the session's single persistence slot for the duration of a save/load."""
        if not self._persistence_lock.acquire(blocking=False):
            raise PersistenceBusy("A save or load is already in progress for this session")
        try:
            yield
        finally:
            self._persistence_lock.release()

    @staticmethod
    def _affected_index(rows: list, seed) -> int:
        if seed is None:
            return len(rows) - 1
        for i, row in enumerate(rows):
            if row is seed:
                return i
        return len(rows) - 1
