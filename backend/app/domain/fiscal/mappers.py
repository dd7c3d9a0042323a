"""
Sale -> tax authority request mapping and pre-flight validation.

Pure functions: they read a Sale with its customer and items loaded and
never touch the database or the network.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List
from zoneinfo import ZoneInfo

from backend.app.core.config import settings
from backend.app.domain.fiscal import codes
from backend.app.domain.fiscal.fiscal_utils import clean_tax_id
from backend.app.domain.money import to_money
from backend.app.models.enums import CustomerType
from backend.app.schemas.fiscal import FiscalValidation, FiscalVoucherRequest, TaxBucket

RECONCILIATION_TOLERANCE = Decimal("0.01")


def format_date_for_afip(value) -> int:
    """
    Business date as the authority's YYYYMMDD integer.

    Aware datetimes are converted to the business timezone first, so an
    evening sale keeps its local date. Naive ones are already local.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(ZoneInfo(settings.business_timezone))
        value = value.date()
    if not isinstance(value, date):
        raise ValueError(f"Not a date: {value!r}")
    return int(value.strftime("%Y%m%d"))


def build_tax_buckets(items) -> List[TaxBucket]:
    """
    One bucket per distinct tax-rate code, in order of first occurrence.

    Base and IVA are summed per code and rounded once at the end.
    """
    buckets: Dict[int, List[Decimal]] = {}
    for item in items:
        code = codes.iva_code(item.iva_type)
        base_and_tax = buckets.setdefault(code, [Decimal("0"), Decimal("0")])
        base_and_tax[0] += Decimal(str(item.subtotal))
        base_and_tax[1] += Decimal(str(item.iva_amount or 0))

    return [
        TaxBucket(id=code, base_amount=float(to_money(base)), tax_amount=float(to_money(tax)))
        for code, (base, tax) in buckets.items()
    ]


def _amount(value) -> float:
    return float(to_money(value or 0))


def map_sale_to_fiscal_request(sale, next_document_number: int) -> FiscalVoucherRequest:
    """Translate a sale into the authority's voucher request for the given number."""
    customer = sale.customer
    return FiscalVoucherRequest(
        voucher_count=1,
        point_of_sale=int(sale.point_of_sale),
        voucher_type=codes.voucher_type_code(sale.invoice_type),
        concept=codes.CONCEPT_PRODUCTS,
        document_type=codes.document_type_code(customer.customer_type if customer else None),
        document_number=clean_tax_id(customer.tax_id if customer else None),
        voucher_from=next_document_number,
        voucher_to=next_document_number,
        voucher_date=format_date_for_afip(sale.sale_date),
        total_amount=_amount(sale.total),
        non_taxed_amount=_amount(sale.non_taxed_amount),
        net_amount=_amount(sale.taxed_amount),
        exempt_amount=_amount(sale.exempt_amount),
        iva_amount=_amount(sale.tax_amount),
        tributes_amount=_amount(sale.gross_income_perception),
        currency_id=codes.CURRENCY_PESOS,
        currency_rate=codes.CURRENCY_RATE_PESOS,
        iva=build_tax_buckets(sale.items),
    )


def _positive_int(value) -> bool:
    try:
        return int(str(value).strip()) > 0
    except (TypeError, ValueError):
        return False


def validate_sale_for_fiscal_submission(sale) -> FiscalValidation:
    """
    Check a sale before it is sent to the authority.

    Every failing rule is reported; nothing short-circuits.
    """
    errors: List[str] = []
    customer = sale.customer
    customer_type = customer.customer_type if customer else None

    if not customer_type:
        errors.append("Customer fiscal classification is required")

    if customer_type != CustomerType.CONSUMIDOR_FINAL and not (customer and customer.tax_id):
        errors.append("Tax id (CUIT/CUIL) is required for this customer type")

    total = to_money(sale.total or 0)
    if total <= 0:
        errors.append("Total must be greater than zero")

    calculated = to_money(
        to_money(sale.taxed_amount or 0)
        + to_money(sale.non_taxed_amount or 0)
        + to_money(sale.exempt_amount or 0)
        + to_money(sale.tax_amount or 0)
        + to_money(sale.gross_income_perception or 0)
    )
    if abs(calculated - total) > RECONCILIATION_TOLERANCE:
        errors.append(f"Amounts do not reconcile. Calculated: {calculated}, Total: {total}")

    if not _positive_int(sale.point_of_sale):
        errors.append("Invalid point of sale")

    if not sale.items:
        errors.append("The sale must have at least one item")

    return FiscalValidation(is_valid=not errors, errors=errors)
