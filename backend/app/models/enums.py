"""
Domain enumerations for customers, sales, payments and the current account.
"""

import enum


class CustomerType(str, enum.Enum):
    """Customer fiscal classification (condicion frente al IVA)."""
    RESPONSABLE_INSCRIPTO = "responsable_inscripto"
    MONOTRIBUTO = "monotributo"
    EXENTO = "exento"
    CONSUMIDOR_FINAL = "consumidor_final"


class LedgerDirection(str, enum.Enum):
    """Current account movement direction."""
    DEBIT = "DEBIT"  # "debe": increases the amount owed
    CREDIT = "CREDIT"  # "haber": decreases the amount owed


class SaleStatus(str, enum.Enum):
    """Sale lifecycle status."""
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class InvoiceType(str, enum.Enum):
    """Fiscal document classification."""
    FACTURA_A = "FACTURA_A"
    FACTURA_B = "FACTURA_B"
    FACTURA_C = "FACTURA_C"
    NOTA_DEBITO_A = "NOTA_DEBITO_A"
    NOTA_DEBITO_B = "NOTA_DEBITO_B"
    NOTA_DEBITO_C = "NOTA_DEBITO_C"
    NOTA_CREDITO_A = "NOTA_CREDITO_A"
    NOTA_CREDITO_B = "NOTA_CREDITO_B"
    NOTA_CREDITO_C = "NOTA_CREDITO_C"

    @property
    def letter(self) -> str:
        return self.value[-1]


class FiscalStatus(str, enum.Enum):
    """Invoicing state of a sale."""
    UNINVOICED = "UNINVOICED"
    INVOICED = "INVOICED"  # auth_code recorded, terminal
    AUTHORIZED_UNRECORDED = "AUTHORIZED_UNRECORDED"  # authority issued a CAE that failed to persist


class IvaType(str, enum.Enum):
    """Tax-rate category of a line item."""
    IVA_0 = "iva_0"
    IVA_2_5 = "iva_2_5"
    IVA_5 = "iva_5"
    IVA_10_5 = "iva_10_5"
    IVA_21 = "iva_21"
    IVA_27 = "iva_27"
    NO_GRAVADO = "no_gravado"
    EXENTO = "exento"


class PaymentMethod(str, enum.Enum):
    """Payment method enumeration."""
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    CHEQUE = "CHEQUE"
    DEBIT_CARD = "DEBIT_CARD"
    CREDIT_CARD = "CREDIT_CARD"
    QR = "QR"


class PaymentStatus(str, enum.Enum):
    """Payment status enumeration."""
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class CreditNoteStatus(str, enum.Enum):
    """Credit note status enumeration."""
    ISSUED = "ISSUED"
    VOIDED = "VOIDED"
