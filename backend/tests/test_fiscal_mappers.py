"""
Fiscal Mapping and Validation Tests.

Pure functions: sales are built in memory, nothing is persisted.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from backend.app.core.config import settings
from backend.app.domain.fiscal.fiscal_utils import (
    calculate_fiscal_amounts,
    calculate_iva,
    clean_tax_id,
    format_cuit,
    full_invoice_number,
    invoice_type_for_customer,
    validate_cuit,
)
from backend.app.domain.fiscal.mappers import (
    build_tax_buckets,
    format_date_for_afip,
    map_sale_to_fiscal_request,
    validate_sale_for_fiscal_submission,
)
from backend.app.models.customer import Customer
from backend.app.models.enums import CustomerType, InvoiceType, IvaType
from backend.app.models.sale import Sale, SaleItem


def _item(subtotal, iva_type=IvaType.IVA_21, iva_amount=None):
    subtotal = Decimal(subtotal)
    if iva_amount is None:
        iva_amount = calculate_iva(subtotal, iva_type)
    return SaleItem(
        description="Item",
        quantity=Decimal("1"),
        unit_price=subtotal,
        subtotal=subtotal,
        iva_type=iva_type,
        iva_amount=Decimal(iva_amount),
        total_amount=subtotal + Decimal(iva_amount),
    )


def _sale(customer_type=CustomerType.RESPONSABLE_INSCRIPTO, tax_id="30-71234567-1", items=None, **fields):
    customer = Customer(business_name="Cliente SA", customer_type=customer_type, tax_id=tax_id)
    values = dict(
        sale_number="V-00000001",
        point_of_sale="0001",
        invoice_type=InvoiceType.FACTURA_A,
        sale_date=datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc),
        taxed_amount=Decimal("1000"),
        non_taxed_amount=Decimal("0"),
        exempt_amount=Decimal("0"),
        tax_amount=Decimal("210"),
        gross_income_perception=Decimal("0"),
        total=Decimal("1210"),
    )
    values.update(fields)
    return Sale(customer=customer, items=items if items is not None else [_item("1000")], **values)


def test_exact_amounts_pass_validation():
    validation = validate_sale_for_fiscal_submission(_sale())

    assert validation.is_valid is True
    assert validation.errors == []


def test_mismatched_total_fails_validation():
    validation = validate_sale_for_fiscal_submission(_sale(total=Decimal("1300")))

    assert validation.is_valid is False
    assert validation.errors == ["Amounts do not reconcile. Calculated: 1210.00, Total: 1300.00"]


def test_one_cent_difference_tolerated():
    validation = validate_sale_for_fiscal_submission(_sale(total=Decimal("1210.01")))
    assert validation.is_valid is True

    validation = validate_sale_for_fiscal_submission(_sale(total=Decimal("1210.02")))
    assert validation.is_valid is False


def test_validation_reports_every_error():
    sale = _sale(
        customer_type=CustomerType.MONOTRIBUTO,
        tax_id=None,
        items=[],
        point_of_sale="abc",
        taxed_amount=Decimal("0"),
        tax_amount=Decimal("0"),
        total=Decimal("0"),
    )

    validation = validate_sale_for_fiscal_submission(sale)

    assert validation.is_valid is False
    assert validation.errors == [
        "Tax id (CUIT/CUIL) is required for this customer type",
        "Total must be greater than zero",
        "Invalid point of sale",
        "The sale must have at least one item",
    ]


def test_missing_classification_reported():
    validation = validate_sale_for_fiscal_submission(_sale(customer_type=None))

    assert "Customer fiscal classification is required" in validation.errors


def test_final_consumer_needs_no_tax_id():
    sale = _sale(customer_type=CustomerType.CONSUMIDOR_FINAL, tax_id=None, invoice_type=InvoiceType.FACTURA_B)

    assert validate_sale_for_fiscal_submission(sale).is_valid is True
    request = map_sale_to_fiscal_request(sale, 1)
    assert request.document_type == 99
    assert request.document_number == 0
    assert request.voucher_type == 6


def test_tax_buckets_grouped_by_rate():
    items = [
        _item("100", IvaType.IVA_21, "21"),
        _item("200", IvaType.IVA_21, "42"),
        _item("400", IvaType.IVA_10_5, "42"),
    ]

    buckets = build_tax_buckets(items)

    assert len(buckets) == 2
    assert (buckets[0].id, buckets[0].base_amount, buckets[0].tax_amount) == (5, 300.0, 63.0)
    assert (buckets[1].id, buckets[1].base_amount, buckets[1].tax_amount) == (4, 400.0, 42.0)


def test_map_sale_to_request():
    items = [
        _item("100", IvaType.IVA_21, "21"),
        _item("200", IvaType.IVA_21, "42"),
        _item("400", IvaType.IVA_10_5, "42"),
    ]
    sale = _sale(items=items, taxed_amount=Decimal("700"), tax_amount=Decimal("105"), total=Decimal("805"))

    request = map_sale_to_fiscal_request(sale, 42)
    wire = request.to_wire()

    assert wire["CbteDesde"] == wire["CbteHasta"] == 42
    assert wire["PtoVta"] == 1
    assert wire["CbteTipo"] == 1
    assert wire["Concepto"] == 1
    assert wire["DocTipo"] == 80
    assert wire["DocNro"] == 30712345671
    assert wire["CbteFch"] == 20261019
    assert wire["ImpTotal"] == 805.0
    assert wire["ImpNeto"] == 700.0
    assert wire["ImpIVA"] == 105.0
    assert wire["MonId"] == "PES"
    assert wire["Iva"] == [
        {"Id": 5, "BaseImp": 300.0, "Importe": 63.0},
        {"Id": 4, "BaseImp": 400.0, "Importe": 42.0},
    ]


def test_wire_omits_empty_iva():
    sale = _sale(items=[])

    assert "Iva" not in map_sale_to_fiscal_request(sale, 1).to_wire()


def test_format_date_for_afip():
    assert format_date_for_afip(date(2026, 1, 5)) == 20260105
    assert format_date_for_afip(datetime(2026, 12, 31, 23, 59)) == 20261231
    with pytest.raises(ValueError):
        format_date_for_afip("2026-01-05")


def test_evening_sale_keeps_its_local_date():
    # 19 Oct 22:30 in Buenos Aires (UTC-3) is already the 20th in UTC
    evening = datetime(2026, 10, 20, 1, 30, tzinfo=timezone.utc)

    assert format_date_for_afip(evening) == 20261019
    assert map_sale_to_fiscal_request(_sale(sale_date=evening), 7).to_wire()["CbteFch"] == 20261019


def test_business_timezone_is_configurable(monkeypatch):
    monkeypatch.setattr(settings, "business_timezone", "UTC")

    assert format_date_for_afip(datetime(2026, 10, 20, 1, 30, tzinfo=timezone.utc)) == 20261020


def test_calculate_fiscal_amounts_splits_buckets():
    items = [
        _item("1000", IvaType.IVA_21),
        _item("500", IvaType.IVA_10_5),
        _item("100", IvaType.NO_GRAVADO),
        _item("50", IvaType.EXENTO),
        _item("20", IvaType.IVA_0),
    ]

    amounts = calculate_fiscal_amounts(items)

    assert amounts["taxed_amount"] == Decimal("1520.00")
    assert amounts["non_taxed_amount"] == Decimal("100.00")
    assert amounts["exempt_amount"] == Decimal("50.00")
    assert amounts["tax_amount"] == Decimal("262.50")
    assert amounts["total"] == Decimal("1932.50")


@pytest.mark.parametrize("cuit, valid", [
    ("20-40937847-2", True),
    ("20409378472", True),
    ("30-71234567-1", True),
    ("20-40937847-3", False),
    ("2040937847", False),
    ("", False),
    ("20-4093784A-2", False),
])
def test_validate_cuit(cuit, valid):
    assert validate_cuit(cuit) is valid


def test_cuit_helpers():
    assert format_cuit("20409378472") == "20-40937847-2"
    assert format_cuit("123") == "123"
    assert clean_tax_id("20-40937847-2") == 20409378472
    assert clean_tax_id(None) == 0


def test_full_invoice_number():
    assert full_invoice_number(InvoiceType.FACTURA_B, "0001", 123) == "B-0001-00000123"
    assert full_invoice_number("FACTURA_A", 12, 7) == "A-0012-00000007"


def test_invoice_type_for_customer():
    assert invoice_type_for_customer(CustomerType.RESPONSABLE_INSCRIPTO) == InvoiceType.FACTURA_A
    assert invoice_type_for_customer(CustomerType.MONOTRIBUTO) == InvoiceType.FACTURA_B
    assert invoice_type_for_customer(CustomerType.CONSUMIDOR_FINAL) == InvoiceType.FACTURA_B
