"""
Incoterms charge-applicability table.

Pure lookup deciding which charge categories a purchase order may carry
for a given Incoterm.  Consulted by the PO charge-editing guard and
callable on its own for display (e.g. graying out a tax field).

    Incoterm                     | shipping | tax
    -----------------------------|----------|-----
    EXW, FCA, FOB                |   no     | no
    CFR, CIF, CPT, CIP, DAP, DPU |   yes    | no
    DDP                          |   yes    | yes
    (none set)                   |   yes    | yes
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Incoterm(str, Enum):
    """ICC Incoterms 2020."""

    EXW = "EXW"
    FCA = "FCA"
    FOB = "FOB"
    CFR = "CFR"
    CIF = "CIF"
    CPT = "CPT"
    CIP = "CIP"
    DAP = "DAP"
    DPU = "DPU"
    DDP = "DDP"


@dataclass(frozen=True)
class ChargeApplicability:
    shipping_applicable: bool
    tax_applicable: bool

    def allows(self, charge: str) -> bool:
        if charge == "tax":
            return self.tax_applicable
        if charge == "shipping_cost":
            return self.shipping_applicable
        return True


_NEITHER = ChargeApplicability(shipping_applicable=False, tax_applicable=False)
_SHIPPING_ONLY = ChargeApplicability(shipping_applicable=True, tax_applicable=False)
_BOTH = ChargeApplicability(shipping_applicable=True, tax_applicable=True)

_TABLE: dict[Incoterm, ChargeApplicability] = {
    Incoterm.EXW: _NEITHER,
    Incoterm.FCA: _NEITHER,
    Incoterm.FOB: _NEITHER,
    Incoterm.CFR: _SHIPPING_ONLY,
    Incoterm.CIF: _SHIPPING_ONLY,
    Incoterm.CPT: _SHIPPING_ONLY,
    Incoterm.CIP: _SHIPPING_ONLY,
    Incoterm.DAP: _SHIPPING_ONLY,
    Incoterm.DPU: _SHIPPING_ONLY,
    Incoterm.DDP: _BOTH,
}


def applicability(incoterm: Incoterm | str | None) -> ChargeApplicability:
    """Return which charges a PO may carry under ``incoterm``.

    ``None`` means no Incoterm is set; both charges are allowed.
    Raises ValueError for an unknown code.
    """
    if incoterm is None:
        return _BOTH
    return _TABLE[Incoterm(incoterm)]
