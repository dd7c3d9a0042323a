"""
Lookup tables between internal fiscal classifications and the tax
authority's WSFEv1 integer codes.
"""

from backend.app.models.enums import CustomerType, InvoiceType, IvaType

# CbteTipo
VOUCHER_TYPE_CODES = {
    InvoiceType.FACTURA_A: 1,
    InvoiceType.NOTA_DEBITO_A: 2,
    InvoiceType.NOTA_CREDITO_A: 3,
    InvoiceType.FACTURA_B: 6,
    InvoiceType.NOTA_DEBITO_B: 7,
    InvoiceType.NOTA_CREDITO_B: 8,
    InvoiceType.FACTURA_C: 11,
    InvoiceType.NOTA_DEBITO_C: 12,
    InvoiceType.NOTA_CREDITO_C: 13,
}
DEFAULT_VOUCHER_TYPE = VOUCHER_TYPE_CODES[InvoiceType.FACTURA_B]

# DocTipo
DOCUMENT_TYPE_CODES = {
    CustomerType.RESPONSABLE_INSCRIPTO: 80,  # CUIT
    CustomerType.MONOTRIBUTO: 86,  # CUIL
    CustomerType.EXENTO: 80,  # CUIT
    CustomerType.CONSUMIDOR_FINAL: 99,  # unidentified
}
DEFAULT_DOCUMENT_TYPE = DOCUMENT_TYPE_CODES[CustomerType.CONSUMIDOR_FINAL]

# Iva.Id
IVA_CODES = {
    IvaType.NO_GRAVADO: 1,
    IvaType.EXENTO: 2,
    IvaType.IVA_0: 3,
    IvaType.IVA_10_5: 4,
    IvaType.IVA_21: 5,
    IvaType.IVA_27: 6,
    IvaType.IVA_2_5: 8,
    IvaType.IVA_5: 9,
}
DEFAULT_IVA_CODE = IVA_CODES[IvaType.IVA_21]

# Concepto
CONCEPT_PRODUCTS = 1
CONCEPT_SERVICES = 2
CONCEPT_PRODUCTS_AND_SERVICES = 3

CURRENCY_PESOS = "PES"
CURRENCY_RATE_PESOS = 1


def _coerce(enum_cls, value):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def voucher_type_code(invoice_type) -> int:
    return VOUCHER_TYPE_CODES.get(_coerce(InvoiceType, invoice_type), DEFAULT_VOUCHER_TYPE)


def document_type_code(customer_type) -> int:
    return DOCUMENT_TYPE_CODES.get(_coerce(CustomerType, customer_type), DEFAULT_DOCUMENT_TYPE)


def iva_code(iva_type) -> int:
    return IVA_CODES.get(_coerce(IvaType, iva_type), DEFAULT_IVA_CODE)
