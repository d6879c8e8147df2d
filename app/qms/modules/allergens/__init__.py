"""
Allergen matrix: CSV/XLSX sheet import (values or cell colour) and a per-SKU
"free from" lookup.
"""
