"""
Sales, Payments and Credit Notes API Tests.

Every document must land on the customer's current account.
"""

import pytest
from httpx import AsyncClient

from backend.app.core.config import settings


async def create_customer(client: AsyncClient, **overrides) -> dict:
    payload = {
        "business_name": "Distribuidora Oeste SA",
        "tax_id": "20-40937847-2",
        "customer_type": "responsable_inscripto",
    }
    payload.update(overrides)
    response = await client.post("/v1/customers", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def sale_payload(customer_id: int, **overrides) -> dict:
    payload = {
        "customer_id": customer_id,
        "is_white_invoice": True,
        "sale_date": "2026-10-19T12:00:00+00:00",
        "items": [
            {"description": "Bomba centrifuga", "quantity": "2", "unit_price": "400", "iva_type": "iva_21"},
            {"description": "Manguera", "quantity": "1", "unit_price": "200", "iva_type": "iva_10_5"},
        ],
    }
    payload.update(overrides)
    return payload


async def balance(client: AsyncClient, customer_id: int) -> float:
    response = await client.get(f"/v1/current-account/customers/{customer_id}/balance")
    return response.json()["current_balance"]


@pytest.mark.asyncio
async def test_confirmed_sale_debits_customer(client: AsyncClient):
    customer = await create_customer(client)

    response = await client.post("/v1/sales", json=sale_payload(customer["id"]))

    assert response.status_code == 201, response.text
    data = response.json()
    sale = data["sale"]
    assert sale["sale_number"] == "V-00000001"
    assert sale["status"] == "CONFIRMED"
    assert sale["invoice_type"] == "FACTURA_A"
    assert sale["fiscal_status"] == "UNINVOICED"
    assert sale["taxed_amount"] == 1000.0
    assert sale["tax_amount"] == 189.0
    assert sale["total"] == 1189.0
    assert len(sale["items"]) == 2
    assert data["balance_after"] == 1189.0
    assert data["invoice"] is None

    statement = (await client.get(f"/v1/current-account/customers/{customer['id']}/statement")).json()
    assert statement["entries"][0]["concept"] == "Sale V-00000001"
    assert statement["entries"][0]["sale_id"] == sale["id"]


@pytest.mark.asyncio
async def test_sale_numbers_increase(client: AsyncClient):
    customer = await create_customer(client)

    await client.post("/v1/sales", json=sale_payload(customer["id"]))
    response = await client.post("/v1/sales", json=sale_payload(customer["id"]))

    assert response.json()["sale"]["sale_number"] == "V-00000002"
    assert await balance(client, customer["id"]) == 2378.0


@pytest.mark.asyncio
async def test_draft_sale_posts_on_confirmation(client: AsyncClient):
    customer = await create_customer(client)

    created = await client.post("/v1/sales", json=sale_payload(customer["id"], status="DRAFT"))
    sale_id = created.json()["sale"]["id"]
    assert created.json()["balance_after"] is None
    assert await balance(client, customer["id"]) == 0.0

    confirmed = await client.post(f"/v1/sales/{sale_id}/confirm")
    assert confirmed.status_code == 200
    assert confirmed.json()["sale"]["status"] == "CONFIRMED"
    assert confirmed.json()["balance_after"] == 1189.0

    again = await client.post(f"/v1/sales/{sale_id}/confirm")
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_explicit_fiscal_totals_are_kept(client: AsyncClient):
    customer = await create_customer(client)
    payload = sale_payload(customer["id"], fiscal_totals={
        "taxed_amount": "1000",
        "tax_amount": "189",
        "gross_income_perception": "30",
        "total": "1219",
    })

    response = await client.post("/v1/sales", json=payload)

    sale = response.json()["sale"]
    assert sale["gross_income_perception"] == 30.0
    assert sale["total"] == 1219.0


@pytest.mark.asyncio
async def test_cancelled_sale_cannot_be_created(client: AsyncClient):
    customer = await create_customer(client)

    response = await client.post("/v1/sales", json=sale_payload(customer["id"], status="CANCELLED"))

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_sale_for_unknown_customer(client: AsyncClient):
    response = await client.post("/v1/sales", json=sale_payload(999))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_auto_invoice_on_creation(client: AsyncClient, afip_client, mocker):
    mocker.patch.object(settings, "afip_auto_invoice", True)
    customer = await create_customer(client)

    response = await client.post("/v1/sales", json=sale_payload(customer["id"]))

    assert response.status_code == 201
    data = response.json()
    assert data["invoice"]["success"] is True
    assert data["sale"]["fiscal_status"] == "INVOICED"
    assert data["sale"]["full_number"] == "A-0001-00000042"
    afip_client.create_voucher.assert_awaited_once()


@pytest.mark.asyncio
async def test_list_sales_filters(client: AsyncClient):
    customer = await create_customer(client)
    await client.post("/v1/sales", json=sale_payload(customer["id"]))
    await client.post("/v1/sales", json=sale_payload(customer["id"], status="DRAFT"))

    response = await client.get("/v1/sales", params={"status": "DRAFT"})

    assert response.json()["total"] == 1
    assert response.json()["sales"][0]["status"] == "DRAFT"


@pytest.mark.asyncio
async def test_payment_credits_customer(client: AsyncClient):
    customer = await create_customer(client)
    sale = (await client.post("/v1/sales", json=sale_payload(customer["id"]))).json()["sale"]

    response = await client.post("/v1/payments", json={
        "customer_id": customer["id"],
        "sale_id": sale["id"],
        "amount": "1189",
        "method": "TRANSFER",
    })

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["payment"]["payment_number"] == "PAG-000001"
    assert data["previous_balance"] == 1189.0
    assert data["new_balance"] == 0.0

    listing = await client.get("/v1/payments", params={"customer_id": customer["id"]})
    assert listing.json()["total"] == 1


@pytest.mark.asyncio
async def test_overpayment_leaves_credit(client: AsyncClient):
    customer = await create_customer(client)

    response = await client.post("/v1/payments", json={
        "customer_id": customer["id"],
        "amount": "500",
        "method": "CASH",
    })

    assert response.json()["new_balance"] == -500.0
    statement = (await client.get(f"/v1/current-account/customers/{customer['id']}/statement")).json()
    assert statement["is_in_credit"] is True


@pytest.mark.asyncio
async def test_payment_against_foreign_sale(client: AsyncClient):
    owner = await create_customer(client)
    other = await create_customer(client, business_name="Otro", tax_id=None, customer_type="consumidor_final")
    sale = (await client.post("/v1/sales", json=sale_payload(owner["id"]))).json()["sale"]

    response = await client.post("/v1/payments", json={
        "customer_id": other["id"],
        "sale_id": sale["id"],
        "amount": "10",
        "method": "CASH",
    })

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_payment_amount_must_be_positive(client: AsyncClient):
    customer = await create_customer(client)

    response = await client.post("/v1/payments", json={
        "customer_id": customer["id"],
        "amount": "0",
        "method": "CASH",
    })

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_credit_note_credits_customer_once_per_sale(client: AsyncClient):
    customer = await create_customer(client)
    sale = (await client.post("/v1/sales", json=sale_payload(customer["id"]))).json()["sale"]
    payload = {
        "original_sale_id": sale["id"],
        "reason": "Mercaderia devuelta",
        "items": [{"description": "Bomba centrifuga", "quantity": "1", "unit_price": "400", "iva_type": "iva_21"}],
    }

    response = await client.post("/v1/credit-notes", json=payload)

    assert response.status_code == 201, response.text
    data = response.json()
    note = data["credit_note"]
    assert note["credit_note_number"] == "NC-00000001"
    assert note["type"] == "NOTA_CREDITO_A"
    assert note["total"] == 484.0
    assert data["previous_balance"] == 1189.0
    assert data["new_balance"] == 705.0

    duplicate = await client.post("/v1/credit-notes", json=payload)
    assert duplicate.status_code == 409
    assert duplicate.json()["details"]["credit_note_number"] == "NC-00000001"

    listing = await client.get("/v1/credit-notes", params={"customer_id": customer["id"]})
    assert listing.json()["total"] == 1
