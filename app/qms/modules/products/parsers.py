from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass


@dataclass(frozen=True)
class CsvRowError:
    row_number: int
    message: str


_WS = re.compile(r"\s+")


def _norm_header(h: str | None) -> str:
    # Sheet exports wrap long headers ("Contains\n  Iron").
    return _WS.sub(" ", h or "").strip().lower()


def _get(row: dict[str, str], *names: str) -> str:
    for n in names:
        v = row.get(_norm_header(n))
        if v is not None:
            return str(v).strip()
    return ""


def _yes(value: str) -> bool:
    return value.strip().lower() in ("yes", "y", "true", "1", "x")


def parse_products_csv(file_bytes: bytes) -> tuple[list[dict], list[CsvRowError]]:
    """
    Parse the product master sheet export.

    Expected headers: Brand, SKU, Product Name, Health Category,
    Therapeutic Platform, Nutrient Type, Format, Number of Actives,
    Bottle Count/Size, Unit Count, Mfg., Contains Iron.

    Only SKU and Product Name are required per row.
    """
    text = file_bytes.decode("utf-8-sig", errors="replace")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("CSV has no header row.")

    rows: list[dict] = []
    errors: list[CsvRowError] = []
    seen: set[str] = set()

    for idx, raw in enumerate(reader, start=2):  # 1 = header
        if not raw or all((v or "").strip() == "" for v in raw.values() if isinstance(v, str)):
            continue
        row = {_norm_header(k): v for k, v in raw.items() if k is not None}

        sku = _get(row, "SKU").upper()
        name = _get(row, "Product Name")
        if not sku:
            errors.append(CsvRowError(idx, "SKU is required."))
            continue
        if not name:
            errors.append(CsvRowError(idx, f"Product Name is required (SKU {sku})."))
            continue
        if sku in seen:
            errors.append(CsvRowError(idx, f"Duplicate SKU {sku} in file."))
            continue
        seen.add(sku)

        unit_count_s = _get(row, "Unit Count")
        try:
            unit_count = int(float(unit_count_s)) if unit_count_s else 0
        except ValueError:
            errors.append(CsvRowError(idx, f"Invalid Unit Count {unit_count_s!r} (SKU {sku})."))
            continue

        rows.append(
            {
                "sku": sku,
                "brand": _get(row, "Brand"),
                "product_name": name,
                "health_category": _get(row, "Health Category") or None,
                "therapeutic_platform": _get(row, "Therapeutic Platform") or None,
                "nutrient_type": _get(row, "Nutrient Type") or None,
                "format": _get(row, "Format") or None,
                "number_of_actives": _get(row, "Number of Actives") or None,
                "bottle_count": _get(row, "Bottle Count/Size", "Bottle Count") or None,
                "unit_count": unit_count,
                "manufacturer": _get(row, "Mfg.", "Manufacturer") or None,
                "contains_iron": _yes(_get(row, "Contains Iron")),
            }
        )

    return rows, errors
