"""
Allergen sheet parsers.

Sheet layout: Brand, SKU, Product Name, eleven "Free From ..." columns and
NOTES. A cell reads ``Y`` (free from), ``N`` (contains) or blank. Workbooks
are often maintained by colour alone, so for XLSX a blank cell falls back to
its fill: green means free from, red means contains.
"""

from __future__ import annotations

import csv
import io
import re
import zipfile
from dataclasses import dataclass, field

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.qms.modules.allergens.models import CONTAINS, FREE, UNSPECIFIED

ALLERGEN_COLUMNS = (
    ("Free From Gluten (Wheat/Rye/Barley)", "Gluten"),
    ("Free From Milk (Casein)", "Milk"),
    ("Free From Dairy (Whey)", "Dairy"),
    ("Free From Soy", "Soy"),
    ("Free From Egg Protein", "Egg"),
    ("Free From Corn", "Corn"),
    ("Free From Peanuts", "Peanuts"),
    ("Free From Tree Nuts", "Tree Nuts"),
    ("Free From Shellfish", "Shellfish"),
    ("Free From Sesame", "Sesame"),
    ("Free From Fish", "Fish"),
)
ALLERGENS = tuple(name for _, name in ALLERGEN_COLUMNS)

_WS = re.compile(r"\s+")
_RGB = re.compile(r"^(?:[0-9A-Fa-f]{2})?([0-9A-Fa-f]{6})$")


@dataclass
class AllergenRow:
    sku: str
    brand: str
    product_name: str
    statuses: dict[str, str] = field(default_factory=dict)
    notes: str | None = None


@dataclass(frozen=True)
class RowError:
    row_number: int
    message: str


def _norm_header(h) -> str:
    return _WS.sub(" ", str(h or "")).strip().lower()


def status_from_value(value) -> str | None:
    """Y -> FREE, N -> CONTAINS; None for blank or unrecognised."""
    v = str(value or "").strip().lower()
    if v in ("y", "yes", "free", "true"):
        return FREE
    if v in ("n", "no", "contains", "false"):
        return CONTAINS
    return None


def status_from_rgb(rgb: str | None) -> str | None:
    m = _RGB.match((rgb or "").strip())
    if not m:
        return None
    hexval = m.group(1)
    r, g, b = (int(hexval[i : i + 2], 16) for i in (0, 2, 4))
    if g - r >= 40 and g >= b:
        return FREE
    if r - g >= 40 and r - b >= 40:
        return CONTAINS
    return None


def _fill_rgb(cell) -> str | None:
    fill = getattr(cell, "fill", None)
    if fill is None or fill.fill_type != "solid":
        return None
    color = fill.fgColor
    # Theme and indexed colours carry no literal RGB.
    if color is None or color.type != "rgb" or not isinstance(color.rgb, str):
        return None
    return color.rgb


def _columns(headers) -> dict[str, int]:
    index = {_norm_header(h): i for i, h in enumerate(headers) if h is not None}
    missing = [h for h in ("Brand", "SKU", "Product Name") if _norm_header(h) not in index]
    if missing:
        raise ValueError(f"Allergen sheet is missing columns: {', '.join(missing)}")
    return index


def _build_row(idx: int, values: list, index: dict[str, int], fills: list[str | None] | None) -> AllergenRow | RowError | None:
    def cell(header: str):
        i = index.get(_norm_header(header))
        return values[i] if i is not None and i < len(values) else None

    sku = str(cell("SKU") or "").strip().upper()
    brand = str(cell("Brand") or "").strip()
    if not sku and not brand:
        return None
    if not sku:
        return RowError(idx, "SKU is required.")

    row = AllergenRow(
        sku=sku,
        brand=brand,
        product_name=str(cell("Product Name") or "").strip(),
        notes=str(cell("NOTES") or "").strip() or None,
    )
    for header, allergen in ALLERGEN_COLUMNS:
        i = index.get(_norm_header(header))
        if i is None:
            row.statuses[allergen] = UNSPECIFIED
            continue
        status = status_from_value(values[i] if i < len(values) else None)
        if status is None and fills is not None and i < len(fills):
            status = status_from_rgb(fills[i])
        row.statuses[allergen] = status or UNSPECIFIED
    return row


def _collect(parsed_rows) -> tuple[list[AllergenRow], list[RowError]]:
    rows: list[AllergenRow] = []
    errors: list[RowError] = []
    seen: set[str] = set()
    for idx, parsed in parsed_rows:
        if parsed is None:
            continue
        if isinstance(parsed, RowError):
            errors.append(parsed)
        elif parsed.sku in seen:
            errors.append(RowError(idx, f"Duplicate SKU {parsed.sku} in sheet."))
        else:
            seen.add(parsed.sku)
            rows.append(parsed)
    return rows, errors


def parse_allergen_csv(file_bytes: bytes) -> tuple[list[AllergenRow], list[RowError]]:
    text = file_bytes.decode("utf-8-sig", errors="replace")
    reader = csv.reader(io.StringIO(text))
    headers = next(reader, None)
    if not headers:
        raise ValueError("CSV has no header row.")
    index = _columns(headers)
    return _collect((idx, _build_row(idx, values, index, None)) for idx, values in enumerate(reader, start=2))


def parse_allergen_xlsx(file_bytes: bytes) -> tuple[list[AllergenRow], list[RowError]]:
    try:
        wb = load_workbook(io.BytesIO(file_bytes), data_only=True)
    except (zipfile.BadZipFile, InvalidFileException) as e:
        raise ValueError(f"Not a readable XLSX workbook: {e}") from e
    ws = wb.active
    header_cells = next(ws.iter_rows(min_row=1, max_row=1), None)
    if not header_cells:
        raise ValueError("Workbook has no header row.")
    index = _columns([c.value for c in header_cells])

    return _collect(
        (idx, _build_row(idx, [c.value for c in cells], index, [_fill_rgb(c) for c in cells]))
        for idx, cells in enumerate(ws.iter_rows(min_row=2), start=2)
    )


def parse_allergen_file(filename: str, file_bytes: bytes) -> tuple[list[AllergenRow], list[RowError]]:
    name = (filename or "").lower()
    if name.endswith((".xlsx", ".xlsm")):
        return parse_allergen_xlsx(file_bytes)
    if name.endswith(".csv"):
        return parse_allergen_csv(file_bytes)
    raise ValueError("Unsupported allergen sheet; upload a .csv or .xlsx file.")
