"""
Cost aggregation: folds a CalculationData into per-piece and run totals.

Pure math. Nothing is cached: totals are re-derived on every call, so they
can never go stale relative to the data they were computed from.

Input: CalculationData (+ optional fallback weight from the part)
Output: Totals
"""

from .schemas import (
    CalculationData,
    MachiningKind,
    MaterialRow,
    OperationCost,
    PriceUnit,
    SecondaryOperationCost,
    Totals,
)
from .weights import weight_kg

# Machining kinds billed per piece; setup is a one-off amortized over the run
PER_PIECE_MACHINING = (
    MachiningKind.SAWING,
    MachiningKind.MILLING,
    MachiningKind.TURNING,
    MachiningKind.WELDING,
)


class CostAggregator:
    """
    Assembles Totals from the current line items.

    Quantity-level totals are per-piece × quantity for everything billed per
    piece. Setup and transport are one-off amounts: they are divided by
    quantity for the per-piece view and added once to the run total.
    """

    def totals(self, data: CalculationData, fallback_weight_per_piece: float = 0.0) -> Totals:
        quantity = data.quantity

        material_per_piece = self._calculate_material_cost(data.materials)
        component_per_piece = self._calculate_component_cost(data)

        setup = self._calculate_setup_cost(data)
        machining = {
            kind: self._calculate_operation_cost(data, kind)
            for kind in PER_PIECE_MACHINING
        }

        secondary = [
            SecondaryOperationCost(
                name=op.display_name,
                price_per_piece=op.price_per_piece,
                total=op.price_per_piece * quantity,
            )
            for op in data.secondary_operations
            if op.price_per_piece > 0
        ]
        secondary_per_piece = sum(op.price_per_piece for op in data.secondary_operations)

        transport_per_piece = data.transport_cost / quantity if quantity > 0 else 0.0

        total_per_piece = (
            material_per_piece
            + component_per_piece
            + setup.per_piece
            + sum(cost.per_piece for cost in machining.values())
            + secondary_per_piece
            + transport_per_piece
        )

        # Transport is a flat addend here, not transport_per_piece × quantity
        total_for_quantity = (
            material_per_piece * quantity
            + component_per_piece * quantity
            + setup.total
            + sum(cost.total for cost in machining.values())
            + secondary_per_piece * quantity
            + data.transport_cost
        )

        weight_per_piece = self._calculate_weight(data.materials)
        if weight_per_piece == 0:
            weight_per_piece = max(fallback_weight_per_piece or 0.0, 0.0)

        return Totals(
            material_cost_per_piece=material_per_piece,
            material_cost_total=material_per_piece * quantity,
            component_cost_per_piece=component_per_piece,
            component_cost_total=component_per_piece * quantity,
            setup=setup,
            sawing=machining[MachiningKind.SAWING],
            milling=machining[MachiningKind.MILLING],
            turning=machining[MachiningKind.TURNING],
            welding=machining[MachiningKind.WELDING],
            secondary_ops_per_piece=secondary_per_piece,
            secondary_ops_total=secondary_per_piece * quantity,
            secondary_operations=secondary,
            transport_per_piece=transport_per_piece,
            transport_total=data.transport_cost,
            total_per_piece=total_per_piece,
            total_for_quantity=total_for_quantity,
            weight_per_piece=weight_per_piece,
            total_weight=weight_per_piece * quantity,
            quantity=quantity,
        )

    def material_row_cost(self, row: MaterialRow) -> float:
        """Cost of one piece of one material row."""
        if row.material_price_unit == PriceUnit.PER_M:
            if row.material_price <= 0:
                return 0.0
            return row.material_price * (row.length_per_piece_mm / 1000)
        if not row.has_geometry:
            return 0.0
        return row.material_price * weight_kg(row.material_info, row.length_per_piece_mm)

    def _calculate_material_cost(self, rows: list) -> float:
        return sum(self.material_row_cost(row) for row in rows)

    def _calculate_component_cost(self, data: CalculationData) -> float:
        """Unit price × quantity; the price-unit tag does not change the math."""
        return sum(row.quantity * row.component_price for row in data.components)

    def _calculate_setup_cost(self, data: CalculationData) -> OperationCost:
        total = data.setup.total_hours * data.setup.rate_per_hour
        per_piece = total / data.quantity if data.quantity > 0 else 0.0
        return OperationCost(per_piece=per_piece, total=total)

    def _calculate_operation_cost(self, data: CalculationData, kind: MachiningKind) -> OperationCost:
        entry = data.operation(kind)
        per_piece = entry.total_hours * entry.rate_per_hour
        return OperationCost(per_piece=per_piece, total=per_piece * data.quantity)

    def _calculate_weight(self, rows: list) -> float:
        return sum(
            weight_kg(row.material_info, row.length_per_piece_mm)
            for row in rows
            if row.has_geometry
        )


def totals(data: CalculationData, fallback_weight_per_piece: float = 0.0) -> Totals:
    """Shorthand for CostAggregator().totals(...)."""
    return CostAggregator().totals(data, fallback_weight_per_piece)
