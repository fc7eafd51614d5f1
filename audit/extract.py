"""
CT-e Document Extractor

Parsed document tree in, ShipmentRecord out. The tree is the nested
dict/list structure produced by xmltodict (attributes carry an "@" prefix);
parse_document() builds it from raw XML.

DOCUMENT SHAPES
---------------
    ProcessEnvelope  - cteProc > CTe > infCte  (authorized document with protocol)
    BareDocument     - CTe > infCte            (document without envelope)

locate_info_block() resolves the shape once; everything after it reads the
infCte block only.

FIELDS EXTRACTED
----------------
    xml_key                 - infCte @Id without the "CTe" prefix
    carrier_cnpj            - emit/CNPJ
    tomador_cnpj            - rem or dest tax ID, chosen by ide/toma3|toma4/toma
    total_value             - vPrest/vTPrest
    weight                  - infCTeNorm/infCarga/infQ with tpMed "PESO BRUTO"
    icms_value/base/rate    - imp/ICMS/ICMS00 | ICMS20 | ICMS45
    origin/dest zip, city   - rem/enderReme, dest/enderDest, ide/xMunIni|xMunFim
    cfop                    - ide/CFOP
"""

import math
from dataclasses import dataclass
from typing import Any, Optional, Union

import xmltodict

from .errors import MalformedDocument, MissingCarrierId, MissingKey, MissingPayerId


KEY_PREFIX = "CTe"
GROSS_WEIGHT = "PESO BRUTO"

# Fixed preference order of the ICMS regime sub-blocks
ICMS_REGIMES = ("ICMS00", "ICMS20", "ICMS45")

# toma codes: 0 = sender, 3 = recipient; anything else falls back to sender
TOMA_RECIPIENT = "3"


# =============================================================================
# RECORD
# =============================================================================

@dataclass(frozen=True)
class ShipmentRecord:
    """Normalized CT-e fields needed by the audit."""

    xml_key: str
    carrier_cnpj: str
    tomador_cnpj: str
    total_value: float
    weight: float
    origin_zip: Optional[str] = None
    dest_zip: Optional[str] = None
    origin_city: Optional[str] = None
    dest_city: Optional[str] = None
    cfop: Optional[str] = None
    icms_value: float = 0.0
    icms_base: float = 0.0
    icms_rate: float = 0.0


# =============================================================================
# DOCUMENT SHAPES
# =============================================================================

@dataclass(frozen=True)
class ProcessEnvelope:
    info: dict
    protocol: Optional[dict] = None


@dataclass(frozen=True)
class BareDocument:
    info: dict


LocatedDocument = Union[ProcessEnvelope, BareDocument]


def parse_document(content: Union[bytes, str]) -> dict:
    """
    Decode raw CT-e XML into a document tree.

    Raises:
        MalformedDocument: If the content is not well-formed XML
    """
    try:
        return xmltodict.parse(content)
    except Exception as e:
        raise MalformedDocument() from e


def locate_info_block(tree: Any) -> LocatedDocument:
    """
    Resolve the document shape and return its infCte block.

    Raises:
        MalformedDocument: If neither shape yields an infCte block
    """
    if not isinstance(tree, dict):
        raise MalformedDocument()

    envelope = tree.get("cteProc")
    if isinstance(envelope, dict):
        info = _get(envelope, "CTe", "infCte")
        if isinstance(info, dict):
            protocol = envelope.get("protCTe")
            return ProcessEnvelope(info=info, protocol=protocol if isinstance(protocol, dict) else None)

    info = _get(tree, "CTe", "infCte")
    if isinstance(info, dict):
        return BareDocument(info=info)

    raise MalformedDocument()


# =============================================================================
# EXTRACTION
# =============================================================================

def extract_shipment(tree: Any) -> ShipmentRecord:
    """
    Extract a ShipmentRecord from a parsed CT-e tree.

    Args:
        tree: Parsed document (see parse_document)

    Returns:
        ShipmentRecord

    Raises:
        MalformedDocument: No infCte block in either shape
        MissingKey: No identifier attribute
        MissingCarrierId: No issuer CNPJ
        MissingPayerId: Payer tax ID resolved to an empty value
    """
    info = locate_info_block(tree).info

    xml_key = extract_key(info)

    carrier_cnpj = _text(_get(info, "emit", "CNPJ"))
    if not carrier_cnpj:
        raise MissingCarrierId()

    tomador_cnpj = extract_payer_id(info)
    if not tomador_cnpj:
        raise MissingPayerId()

    icms_value, icms_base, icms_rate = extract_icms(info)

    return ShipmentRecord(
        xml_key=xml_key,
        carrier_cnpj=carrier_cnpj,
        tomador_cnpj=tomador_cnpj,
        total_value=to_float(_get(info, "vPrest", "vTPrest")),
        weight=extract_weight(info),
        origin_zip=_text(_get(info, "rem", "enderReme", "CEP")),
        dest_zip=_text(_get(info, "dest", "enderDest", "CEP")),
        origin_city=_text(_get(info, "ide", "xMunIni")) or _text(_get(info, "rem", "enderReme", "xMun")),
        dest_city=_text(_get(info, "ide", "xMunFim")) or _text(_get(info, "dest", "enderDest", "xMun")),
        cfop=_text(_get(info, "ide", "CFOP")),
        icms_value=icms_value,
        icms_base=icms_base,
        icms_rate=icms_rate,
    )


def extract_key(info: dict) -> str:
    """Document key from the Id attribute, without the CTe prefix."""
    raw = _text(info.get("@Id")) or _text(info.get("Id"))
    if raw and raw.startswith(KEY_PREFIX):
        raw = raw[len(KEY_PREFIX):]
    if not raw:
        raise MissingKey()
    return raw


def extract_payer_id(info: dict) -> str:
    """
    Tax ID of the service payer (tomador).

    toma 3 pays from the recipient block; 0 and every other code from the
    sender block.
    """
    toma = _text(_get(info, "ide", "toma3", "toma")) or _text(_get(info, "ide", "toma4", "toma"))
    party = "dest" if toma == TOMA_RECIPIENT else "rem"
    return _tax_id(info.get(party)) or ""


def extract_weight(info: dict) -> float:
    """Gross weight from the cargo quantity list (0 if absent)."""
    quantities = _get(info, "infCTeNorm", "infCarga", "infQ")
    if isinstance(quantities, dict):
        quantities = [quantities]
    if not isinstance(quantities, list):
        return 0.0

    for entry in quantities:
        if isinstance(entry, dict) and _text(entry.get("tpMed")) == GROSS_WEIGHT:
            return to_float(entry.get("qCarga"))
    return 0.0


def extract_icms(info: dict) -> tuple[float, float, float]:
    """(value, base, rate) from the first ICMS regime block present."""
    icms = _get(info, "imp", "ICMS")
    if not isinstance(icms, dict):
        return 0.0, 0.0, 0.0

    for regime in ICMS_REGIMES:
        block = icms.get(regime)
        if isinstance(block, dict):
            return (
                to_float(block.get("vICMS")),
                to_float(block.get("vBC")),
                to_float(block.get("pICMS")),
            )
    return 0.0, 0.0, 0.0


# =============================================================================
# HELPERS
# =============================================================================

def to_float(value: Any) -> float:
    """Numeric parse that falls back to 0 instead of raising."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return 0.0
    return number if math.isfinite(number) else 0.0


def _get(node: Any, *path: str) -> Any:
    for name in path:
        if not isinstance(node, dict):
            return None
        node = node.get(name)
    return node


def _text(value: Any) -> Optional[str]:
    # Elements with attributes come back as {"@attr": ..., "#text": ...}
    if isinstance(value, dict):
        value = value.get("#text")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _tax_id(party: Any) -> Optional[str]:
    if not isinstance(party, dict):
        return None
    return _text(party.get("CNPJ")) or _text(party.get("CPF"))
