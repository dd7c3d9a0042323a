"""
AFIP Connectivity Check.

Pings the WSFEv1 servers (FEDummy) and, with --pos, reads the last
authorized number for each invoice type of that point of sale.

Usage:
    python -m scripts.check_afip_connection --pos 1
"""

import argparse
import asyncio
import sys

from backend.app.core.config import settings
from backend.app.core.observability import setup_logging
from backend.app.domain.fiscal import codes
from backend.app.domain.fiscal.afip_client import AfipError, get_afip_client
from backend.app.models.enums import InvoiceType

INVOICE_TYPES = (InvoiceType.FACTURA_A, InvoiceType.FACTURA_B, InvoiceType.FACTURA_C)


def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)


def success(msg):
    print(f"✅ {msg}")


async def check(point_of_sale=None):
    client = get_afip_client()
    try:
        status = await client.get_server_status()
        for server in ("AppServer", "DbServer", "AuthServer"):
            if status.get(server) != "OK":
                fail(f"{server} answered {status.get(server)}")
        success(f"WSFEv1 servers OK ({settings.afip_environment})")

        if point_of_sale:
            for invoice_type in INVOICE_TYPES:
                last = await client.get_last_voucher_number(point_of_sale, codes.voucher_type_code(invoice_type))
                success(f"{invoice_type.value} @ {point_of_sale:04d}: last authorized {last}")
    except AfipError as e:
        fail(str(e))
    finally:
        await client.close()


def main():
    parser = argparse.ArgumentParser(description="Check the AFIP electronic invoicing connection")
    parser.add_argument("--pos", type=int, help="Point of sale to inspect")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(check(args.pos))


if __name__ == "__main__":
    main()
