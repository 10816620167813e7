# Metal weight model: metric stock, millimetre inputs, kilogram outputs.
# Densities per EN 10027 grade designations used on the shop floor.

import logging
import math

from .numbers import parse_number

logger = logging.getLogger(__name__)

PROFILE_TABLE = "profile_table"
SIMPLE_FORMULA = "simple_formula"

# Densities (kg/m³), keyed by lower-case grade
DENSITIES = {
    "s355": 7850,
    "s235": 7850,
    "c45": 7850,
    "c60": 7850,
    "42crmo4": 7850,
    "16mncr5": 7850,
    "alsimg1": 2700,
    "x153crmov12": 7700,
    "1.4305": 8000,
    "1.4301": 8000,
}

DEFAULT_DENSITY = 7850  # mild steel

WEIGHT_PRECISION = 6


def density_for(grade) -> float:
    """Density in kg/m³ for a material grade, case-insensitive. Unknown grades are mild steel."""
    key = str(grade or "").strip().lower()
    return DENSITIES.get(key, DEFAULT_DENSITY)


def _mm_to_m(value) -> float:
    return parse_number(value) / 1000.0


def _dim(dimensions: dict, *keys) -> float:
    """First positive dimension (in metres) found under any of the given keys, else 0."""
    for key in keys:
        if key in dimensions:
            value = _mm_to_m(dimensions[key])
            if value > 0:
                return value
    return 0.0


def _round_bar(dims: dict) -> float:
    d = _dim(dims, "diameter")
    if not d:
        return 0.0
    r = d / 2
    return math.pi * r * r


def _square_bar(dims: dict) -> float:
    side = _dim(dims, "side")
    return side * side


def _rectangular_bar(dims: dict) -> float:
    width = _dim(dims, "width")
    height = _dim(dims, "height")
    if not (width and height):
        return 0.0
    return width * height


def _hex_bar(dims: dict) -> float:
    # diameter is measured across flats
    d = _dim(dims, "diameter")
    if not d:
        return 0.0
    a = d / 2
    return 3 * math.sqrt(3) / 2 * a * a


def _round_tube(dims: dict) -> float:
    outer_d = _dim(dims, "outerDiameter", "outer_diameter", "diameter")
    wall = _dim(dims, "wallThickness", "wall_thickness")
    if not (outer_d and wall):
        return 0.0
    r_out = outer_d / 2
    r_in = max(r_out - wall, 0.0)
    return math.pi * (r_out * r_out - r_in * r_in)


def _square_tube(dims: dict) -> float:
    outer = _dim(dims, "side", "outer")
    wall = _dim(dims, "wallThickness", "wall_thickness")
    if not (outer and wall):
        return 0.0
    inner = max(outer - 2 * wall, 0.0)
    return outer * outer - inner * inner


def _rectangular_tube(dims: dict) -> float:
    w = _dim(dims, "width")
    h = _dim(dims, "height")
    t = _dim(dims, "wallThickness", "wall_thickness")
    if not (w and h and t):
        return 0.0
    inner_w = max(w - 2 * t, 0.0)
    inner_h = max(h - 2 * t, 0.0)
    return w * h - inner_w * inner_h


def _sheet(dims: dict) -> float:
    # the piece length is the third dimension
    thickness = _dim(dims, "thickness")
    width = _dim(dims, "width")
    if not (thickness and width):
        return 0.0
    return thickness * width


AREA_FORMULAS = {
    "round bar": _round_bar,
    "square bar": _square_bar,
    "rectangular bar": _rectangular_bar,
    "hex bar": _hex_bar,
    "round tube": _round_tube,
    "square tube": _square_tube,
    "rectangular tube": _rectangular_tube,
    "sheet": _sheet,
}


def normalize_shape_name(shape) -> str:
    """'Round bar', 'round_bar' and 'ROUND-BAR' all map to 'round bar'."""
    name = str(shape or "").strip().lower().replace("_", " ").replace("-", " ")
    return " ".join(name.split())


def cross_section_area_m2(shape, dimensions) -> float:
    """Cross-sectional area in m² from millimetre dimensions. 0 for unknown shapes or missing dimensions."""
    formula = AREA_FORMULAS.get(normalize_shape_name(shape))
    if formula is None:
        logger.info("No area formula for shape %r, weight is 0", shape)
        return 0.0
    area = formula(dimensions if isinstance(dimensions, dict) else {})
    if area <= 0:
        logger.info("Shape %r is missing dimensions (%r), weight is 0", shape, dimensions)
        return 0.0
    return area


def _descriptor_parts(descriptor) -> tuple:
    """(calculation_type, shape, grade, dimensions) from a ShapeDescriptor or a stored dict."""
    if isinstance(descriptor, dict):
        calc_type = descriptor.get("calculationType", descriptor.get("calculation_type"))
        shape = descriptor.get("shape")
        grade = descriptor.get("material")
        dims = descriptor.get("dimensions")
    else:
        calc_type = getattr(descriptor, "calculation_type", None)
        shape = getattr(descriptor, "shape", None)
        grade = getattr(descriptor, "material", None)
        dims = getattr(descriptor, "dimensions", None)
    calc_type = getattr(calc_type, "value", calc_type)
    return calc_type, shape, grade, dims if isinstance(dims, dict) else {}


def kg_per_meter(descriptor) -> float:
    """Unit weight (kg/m) of a shape descriptor."""
    if not descriptor:
        return 0.0
    calc_type, shape, grade, dims = _descriptor_parts(descriptor)
    if calc_type == PROFILE_TABLE:
        return max(parse_number(dims.get("kg_per_meter")), 0.0)
    return cross_section_area_m2(shape, dims) * density_for(grade)


def weight_kg(descriptor, length_mm) -> float:
    """
    Weight in kg of one piece cut from stock described by `descriptor`.

    Profile-table shapes use their tabulated kg/m; everything else is
    area × length × density. Never raises: missing or unparseable input
    gives 0.
    """
    length_m = parse_number(length_mm) / 1000.0
    if not descriptor or length_m <= 0:
        return 0.0
    return round(kg_per_meter(descriptor) * length_m, WEIGHT_PRECISION)
