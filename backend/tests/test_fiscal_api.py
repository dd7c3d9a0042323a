"""
Fiscal API Tests.

Checks how invoicing results map to HTTP statuses.
"""

import pytest
from decimal import Decimal
from httpx import AsyncClient

from backend.app.domain.fiscal.afip_client import AfipRejectedError, AfipUnavailableError
from backend.app.models.enums import FiscalStatus


@pytest.mark.asyncio
async def test_invoice_endpoint_success_then_conflict(client: AsyncClient, make_customer, make_sale, afip_client):
    customer = await make_customer()
    sale_id = await make_sale(customer)

    response = await client.post(f"/v1/fiscal/sales/{sale_id}/invoice")

    assert response.status_code == 200, response.text
    result = response.json()
    assert result["success"] is True
    assert result["cae"] == "74123456789012"
    assert result["cae_expiry"] == "2026-10-29"
    assert result["full_number"] == "A-0001-00000042"

    response = await client.post(f"/v1/fiscal/sales/{sale_id}/invoice")

    assert response.status_code == 409
    body = response.json()
    assert body["details"]["error_kind"] == "ALREADY_INVOICED"
    assert body["details"]["details"]["cae"] == "74123456789012"
    assert afip_client.create_voucher.await_count == 1

    sale = (await client.get(f"/v1/sales/{sale_id}")).json()
    assert sale["fiscal_status"] == "INVOICED"
    assert sale["auth_code"] == "74123456789012"


@pytest.mark.asyncio
async def test_invoice_endpoint_validation_error(client: AsyncClient, make_customer, make_sale, afip_client):
    customer = await make_customer()
    sale_id = await make_sale(customer, total=Decimal("1300"))

    response = await client.post(f"/v1/fiscal/sales/{sale_id}/invoice")

    assert response.status_code == 422
    body = response.json()
    assert body["message"] == "Sale data is not valid for invoicing"
    assert body["details"]["details"] == ["Amounts do not reconcile. Calculated: 1210.00, Total: 1300.00"]
    afip_client.get_last_voucher_number.assert_not_awaited()


@pytest.mark.asyncio
async def test_invoice_endpoint_not_eligible(client: AsyncClient, make_customer, make_sale):
    customer = await make_customer()
    sale_id = await make_sale(customer, is_white_invoice=False)

    response = await client.post(f"/v1/fiscal/sales/{sale_id}/invoice")

    assert response.status_code == 409
    assert response.json()["details"]["error_kind"] == "NOT_ELIGIBLE"


@pytest.mark.asyncio
async def test_invoice_endpoint_unknown_sale(client: AsyncClient):
    response = await client.post("/v1/fiscal/sales/999/invoice")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_invoice_endpoint_authority_down(client: AsyncClient, make_customer, make_sale, afip_client):
    customer = await make_customer()
    sale_id = await make_sale(customer)
    afip_client.get_last_voucher_number.side_effect = AfipUnavailableError("Cannot reach /afip/requests")

    response = await client.post(f"/v1/fiscal/sales/{sale_id}/invoice")

    assert response.status_code == 503
    assert response.json()["details"]["details"]["retryable"] is True
    afip_client.create_voucher.assert_not_awaited()


@pytest.mark.asyncio
async def test_invoice_status_endpoint(client: AsyncClient, make_customer, make_sale, afip_client):
    customer = await make_customer()
    sale_id = await make_sale(customer)

    response = await client.get(f"/v1/fiscal/sales/{sale_id}/status")
    assert response.status_code == 409

    await client.post(f"/v1/fiscal/sales/{sale_id}/invoice")
    afip_client.get_voucher_info.return_value = {"CodAutorizacion": "74123456789012", "Resultado": "A"}

    response = await client.get(f"/v1/fiscal/sales/{sale_id}/status")

    assert response.status_code == 200
    assert response.json()["found"] is True
    assert response.json()["full_number"] == "A-0001-00000042"


@pytest.mark.asyncio
async def test_server_status_endpoint(client: AsyncClient, afip_client):
    afip_client.get_server_status.return_value = {"AppServer": "OK", "DbServer": "OK", "AuthServer": "OK"}

    response = await client.get("/v1/fiscal/server-status")

    assert response.status_code == 200
    assert response.json() == {"app_server": "OK", "db_server": "OK", "auth_server": "OK"}

    afip_client.get_server_status.side_effect = AfipUnavailableError("Tax authority circuit is open; try again later")
    response = await client.get("/v1/fiscal/server-status")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_voucher_types_endpoint(client: AsyncClient, afip_client):
    afip_client.get_voucher_types.return_value = [{"Id": 1, "Desc": "Factura A"}]

    response = await client.get("/v1/fiscal/voucher-types")

    assert response.json() == [{"Id": 1, "Desc": "Factura A"}]


@pytest.mark.asyncio
async def test_parameter_table_endpoints(client: AsyncClient, afip_client):
    afip_client.get_document_types.return_value = [{"Id": 80, "Desc": "CUIT"}, {"Id": 99, "Desc": "Doc. (Otro)"}]
    afip_client.get_aliquot_types.return_value = [{"Id": 5, "Desc": "21%"}]

    response = await client.get("/v1/fiscal/document-types")
    assert response.status_code == 200
    assert [d["Id"] for d in response.json()] == [80, 99]

    response = await client.get("/v1/fiscal/aliquot-types")
    assert response.json() == [{"Id": 5, "Desc": "21%"}]

    afip_client.get_aliquot_types.side_effect = AfipRejectedError("/afip/requests refused the request: bad token")
    response = await client.get("/v1/fiscal/aliquot-types")
    assert response.status_code == 502


@pytest.mark.asyncio
async def test_reconcile_endpoint_requires_pending(client: AsyncClient, make_customer, make_sale):
    customer = await make_customer()
    sale_id = await make_sale(customer)

    response = await client.post(f"/v1/admin/ops/sales/{sale_id}/reconcile-authorization")

    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_FISCAL_001"


@pytest.mark.asyncio
async def test_reconcile_endpoint_records_pending(client: AsyncClient, make_customer, make_sale):
    customer = await make_customer()
    sale_id = await make_sale(
        customer,
        fiscal_status=FiscalStatus.AUTHORIZED_UNRECORDED,
        pending_authorization={
            "cae": "74123456789012",
            "cae_expiry": "2026-10-29",
            "invoice_number": 42,
            "full_number": "A-0001-00000042",
        },
    )

    response = await client.post(f"/v1/admin/ops/sales/{sale_id}/reconcile-authorization")

    assert response.status_code == 200
    assert response.json()["success"] is True

    sale = (await client.get(f"/v1/sales/{sale_id}")).json()
    assert sale["fiscal_status"] == "INVOICED"
    assert sale["invoice_number"] == 42

    audit = (await client.get("/v1/admin/ops/audit", params={"entity_type": "sale", "entity_id": sale_id})).json()
    assert [log["action"] for log in audit["logs"]] == ["AUTHORIZATION_RECONCILED"]
