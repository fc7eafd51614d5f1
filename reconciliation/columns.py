"""
Spreadsheet Columns

Header matching and cell normalization for calculation-memory spreadsheets.

Headers are matched after accent and case folding, so "CÓDIGO", "CODIGO",
"Codigo" and the mangled "CDIGO" (an accented header read with the wrong
encoding) all resolve to the same field.

FIELDS
------
    codigo, soltransp, origem, destino, obs      - text
    peso, frete_valor, icms, pedagios, seguro,
    frete_peso, frete_all_in                     - numbers
"""

import math
import numbers
import re
import unicodedata
from typing import Any, Mapping, Optional


TEXT_FIELDS = ("codigo", "soltransp", "origem", "destino", "obs")

NUMBER_FIELDS = ("peso", "frete_valor", "icms", "pedagios", "seguro", "frete_peso", "frete_all_in")

# Folded header -> field, for headers whose folded form is not the field name
HEADER_ALIASES = {
    "cdigo": "codigo",
    "pedgios": "pedagios",
    "frete": "frete_valor",
}


def fold_header(header: Any) -> str:
    """
    Fold a column header to a field-like key.

    Example:
        "FRETE ALL IN" -> "frete_all_in"
        "PEDÁGIOS"     -> "pedagios"
    """
    text = unicodedata.normalize("NFKD", str(header))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"[\s\-]+", "_", text.strip().lower())
    return re.sub(r"[^a-z0-9_]", "", text)


def field_for(header: Any) -> str:
    folded = fold_header(header)
    return HEADER_ALIASES.get(folded, folded)


def map_fields(row: Mapping[str, Any]) -> dict:
    """
    Re-key a raw row by field name.

    When several headers resolve to the same field the first non-empty
    value wins.
    """
    fields: dict = {}
    for header, value in row.items():
        field = field_for(header)
        if _is_empty(fields.get(field)):
            fields[field] = value
    return fields


# =============================================================================
# CELL PARSERS
# =============================================================================

def to_number(value: Any) -> float:
    """
    Parse a numeric cell; unparseable input gives 0.

    Numbers pass through. Strings accept a decimal comma, with "." as
    thousands separator when both appear ("1.234,56" -> 1234.56).
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, numbers.Real):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    if not isinstance(value, str):
        return 0.0

    text = value.strip().replace(" ", "")
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def to_text(value: Any) -> str:
    """Trimmed text; integral numbers lose their ".0"."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, numbers.Real):
        number = float(value)
        if not math.isfinite(number):
            return ""
        if number.is_integer():
            return str(int(number))
        return str(value)
    return str(value).strip()


def _is_empty(value: Optional[Any]) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False
