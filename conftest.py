"""
Shared pytest fixtures: in-memory stores and CT-e XML builders.
"""

import io
import zipfile

import pytest

from shared.database import Store
from shared.uploads import UploadedFile


# =============================================================================
# CONSTANTS
# =============================================================================

# Seeded carrier (R&R ISA'S TRANSPORTES LTDA) and its default rate table:
#   band 1:     0 -  1000 kg   500.00 + 0.50/kg
#   band 2:  1000 - 10000 kg  2500.00 + 0.35/kg
#   band 3: 10000 - 50000 kg  5000.00 + 0.25/kg
SEED_CARRIER_CNPJ = "35856333000100"
UNKNOWN_CARRIER_CNPJ = "99888777000166"

SENDER_CNPJ = "11222333000144"
RECIPIENT_CNPJ = "55666777000188"

DEFAULT_KEY = "35260335856333000100570010000012341000012345"


# =============================================================================
# STORES
# =============================================================================

@pytest.fixture
def store():
    """In-memory store with the default tenant, carrier and rate table."""
    s = Store.open("sqlite://", seed=True)
    yield s
    s.close()


@pytest.fixture
def empty_store():
    """In-memory store with the schema only."""
    s = Store.open("sqlite://", seed=False)
    yield s
    s.close()


@pytest.fixture
def unavailable_store():
    """Store whose database could not be initialized."""
    return Store.open("sqlite:////nonexistent-dir/frete/audit.db")


# =============================================================================
# CT-e XML
# =============================================================================

def _party(tag: str, address_tag: str, tax_id: tuple | None, city: str, zip_code: str) -> str:
    id_xml = f"<{tax_id[0]}>{tax_id[1]}</{tax_id[0]}>" if tax_id else ""
    return (
        f"<{tag}>{id_xml}<xNome>{tag.upper()} LTDA</xNome>"
        f"<{address_tag}><xLgr>RUA A</xLgr><xMun>{city}</xMun><CEP>{zip_code}</CEP></{address_tag}>"
        f"</{tag}>"
    )


def build_cte(
    key: str | None = DEFAULT_KEY,
    carrier_cnpj: str | None = SEED_CARRIER_CNPJ,
    total_value: str = "750.00",
    weight: str = "500.0000",
    toma: str = "0",
    toma_block: str = "toma3",
    sender_id: tuple | None = ("CNPJ", SENDER_CNPJ),
    recipient_id: tuple | None = ("CNPJ", RECIPIENT_CNPJ),
    icms_xml: str | None = None,
    quantities: list | None = None,
    route_in_ide: bool = True,
    wrapped: bool = True,
) -> bytes:
    """
    Build CT-e XML.

    Args:
        key: Document key (None drops the Id attribute)
        carrier_cnpj: Issuer CNPJ (None drops it)
        total_value: vTPrest
        weight: qCarga of the "PESO BRUTO" entry (ignored if quantities is given)
        toma: Payer code inside toma_block
        toma_block: "toma3" or "toma4"
        sender_id, recipient_id: (tag, value) for rem / dest, or None
        icms_xml: Raw content of <ICMS> (default: ICMS00 at 12%)
        quantities: List of (tpMed, qCarga) for infQ
        route_in_ide: Include xMunIni / xMunFim in ide
        wrapped: cteProc envelope (True) or bare CTe (False)
    """
    if quantities is None:
        quantities = [("UNIDADE", "12.0000"), ("PESO BRUTO", weight)]
    if icms_xml is None:
        icms_xml = "<ICMS00><CST>00</CST><vBC>750.00</vBC><pICMS>12.00</pICMS><vICMS>90.00</vICMS></ICMS00>"

    id_attr = f' Id="CTe{key}"' if key else ""
    emit = f"<emit><CNPJ>{carrier_cnpj}</CNPJ><xNome>TRANSPORTADORA</xNome></emit>" if carrier_cnpj else "<emit><xNome>TRANSPORTADORA</xNome></emit>"
    route = "<xMunIni>SAO PAULO</xMunIni><xMunFim>CAMPINAS</xMunFim>" if route_in_ide else ""
    infq = "".join(
        f"<infQ><cUnid>01</cUnid><tpMed>{tp_med}</tpMed><qCarga>{amount}</qCarga></infQ>"
        for tp_med, amount in quantities
    )

    info = (
        f'<infCte versao="4.00"{id_attr}>'
        f"<ide><cUF>35</cUF><CFOP>6353</CFOP>{route}"
        f"<{toma_block}><toma>{toma}</toma></{toma_block}></ide>"
        f"{emit}"
        f"{_party('rem', 'enderReme', sender_id, 'SAO PAULO', '01001000')}"
        f"{_party('dest', 'enderDest', recipient_id, 'CAMPINAS', '13010000')}"
        f"<vPrest><vTPrest>{total_value}</vTPrest><vRec>{total_value}</vRec></vPrest>"
        f"<imp><ICMS>{icms_xml}</ICMS></imp>"
        f"<infCTeNorm><infCarga><vCarga>15000.00</vCarga>{infq}</infCarga></infCTeNorm>"
        f"</infCte>"
    )
    cte = f'<CTe xmlns="http://www.portalfiscal.inf.br/cte">{info}</CTe>'

    if wrapped:
        body = (
            f'<cteProc xmlns="http://www.portalfiscal.inf.br/cte" versao="4.00">{cte}'
            f"<protCTe versao=\"4.00\"><infProt><chCTe>{key}</chCTe><cStat>100</cStat></infProt></protCTe>"
            f"</cteProc>"
        )
    else:
        body = cte
    return ('<?xml version="1.0" encoding="UTF-8"?>' + body).encode("utf-8")


def build_zip(entries: dict) -> bytes:
    """ZIP archive from {entry name: bytes}."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def cte_xml():
    """CT-e XML builder (see build_cte)."""
    return build_cte


@pytest.fixture
def zip_of():
    """ZIP archive builder (see build_zip)."""
    return build_zip


@pytest.fixture
def xml_upload():
    """UploadedFile factory for a single CT-e XML."""
    def make(filename: str = "cte.xml", **kwargs) -> UploadedFile:
        return UploadedFile(filename=filename, content=build_cte(**kwargs), content_type="text/xml")
    return make
