"""
Fiscal helpers: IVA rates, fiscal aggregates and CUIT handling.
"""

import re
from decimal import Decimal
from typing import Iterable, Dict

from backend.app.domain.money import to_money, Number
from backend.app.models.enums import CustomerType, InvoiceType, IvaType

IVA_RATES: Dict[IvaType, Decimal] = {
    IvaType.IVA_21: Decimal("0.21"),
    IvaType.IVA_10_5: Decimal("0.105"),
    IvaType.IVA_27: Decimal("0.27"),
    IvaType.IVA_5: Decimal("0.05"),
    IvaType.IVA_2_5: Decimal("0.025"),
    IvaType.IVA_0: Decimal("0"),
    IvaType.NO_GRAVADO: Decimal("0"),
    IvaType.EXENTO: Decimal("0"),
}

IVA_NAMES: Dict[IvaType, str] = {
    IvaType.IVA_21: "IVA 21%",
    IvaType.IVA_10_5: "IVA 10.5%",
    IvaType.IVA_27: "IVA 27%",
    IvaType.IVA_5: "IVA 5%",
    IvaType.IVA_2_5: "IVA 2.5%",
    IvaType.IVA_0: "IVA 0%",
    IvaType.NO_GRAVADO: "No Gravado",
    IvaType.EXENTO: "Exento",
}

CUIT_MULTIPLIERS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)


def calculate_iva(amount: Number, iva_type: IvaType) -> Decimal:
    """IVA on a taxable base, rounded to cents."""
    return to_money(to_money(amount) * IVA_RATES[IvaType(iva_type)])


def calculate_fiscal_amounts(items: Iterable) -> Dict[str, Decimal]:
    """
    Split line items into the fiscal aggregates reported to the authority.

    Items need `subtotal`, `iva_type` and `iva_amount`. Rated items (including
    0%) go to the taxed bucket, `no_gravado` to non-taxed, `exento` to exempt.
    """
    taxed = Decimal("0")
    non_taxed = Decimal("0")
    exempt = Decimal("0")
    tax = Decimal("0")

    for item in items:
        iva_type = IvaType(item.iva_type)
        subtotal = to_money(item.subtotal)
        if iva_type == IvaType.NO_GRAVADO:
            non_taxed += subtotal
        elif iva_type == IvaType.EXENTO:
            exempt += subtotal
        else:
            taxed += subtotal
            tax += to_money(item.iva_amount)

    amounts = {
        "taxed_amount": to_money(taxed),
        "non_taxed_amount": to_money(non_taxed),
        "exempt_amount": to_money(exempt),
        "tax_amount": to_money(tax),
    }
    amounts["total"] = to_money(sum(amounts.values()))
    return amounts


def invoice_type_for_customer(customer_type) -> InvoiceType:
    """Registered taxpayers get an A invoice, everyone else a B."""
    if customer_type == CustomerType.RESPONSABLE_INSCRIPTO:
        return InvoiceType.FACTURA_A
    return InvoiceType.FACTURA_B


def credit_note_type_for_customer(customer_type) -> InvoiceType:
    if customer_type == CustomerType.RESPONSABLE_INSCRIPTO:
        return InvoiceType.NOTA_CREDITO_A
    return InvoiceType.NOTA_CREDITO_B


def validate_cuit(cuit: str) -> bool:
    """11 digits with a valid mod-11 check digit. Dashes and spaces are ignored."""
    if not cuit:
        return False
    clean = re.sub(r"[-\s]", "", cuit)
    if not re.fullmatch(r"\d{11}", clean):
        return False

    digits = [int(c) for c in clean]
    total = sum(d * m for d, m in zip(digits[:10], CUIT_MULTIPLIERS))
    check = 11 - (total % 11)
    if check == 11:
        check = 0
    elif check == 10:
        check = 9
    return check == digits[10]


def format_cuit(cuit: str) -> str:
    """XX-XXXXXXXX-X when the input has 11 digits, unchanged otherwise."""
    clean = re.sub(r"[-\s]", "", cuit or "")
    if len(clean) == 11:
        return f"{clean[:2]}-{clean[2:10]}-{clean[10:]}"
    return cuit


def clean_tax_id(tax_id: str) -> int:
    """Formatted tax id to the integer the authority expects; 0 for an unidentified consumer."""
    if not tax_id:
        return 0
    digits = tax_id.replace("-", "").strip()
    try:
        return int(digits)
    except ValueError:
        return 0


def full_invoice_number(invoice_type, point_of_sale, invoice_number: int) -> str:
    """Letter, zero-padded point of sale and sequence: B-0001-00000123."""
    letter = InvoiceType(invoice_type).letter
    return f"{letter}-{str(int(point_of_sale)).zfill(4)}-{str(invoice_number).zfill(8)}"
