"""HTTP surface: routing, permissions and error mapping."""

import uuid
from typing import Dict

import pytest
from httpx import AsyncClient


async def _create_ledger(client: AsyncClient, headers: Dict[str, str], student_id: uuid.UUID) -> dict:
    response = await client.post(
        "/api/v1/fees/ledgers",
        json={"student_id": str(student_id), "class_fee_total": "5000", "bus_fee_total": "600"},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_requires_token(client: AsyncClient) -> None:
    response = await client.get(f"/api/v1/fees/ledgers/{uuid.uuid4()}")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_rejects_bad_token(client: AsyncClient) -> None:
    response = await client.get(
        f"/api/v1/fees/ledgers/{uuid.uuid4()}", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_ledger_and_payment_flow(client: AsyncClient, admin_headers: Dict[str, str]) -> None:
    student_id = uuid.uuid4()
    created = await _create_ledger(client, admin_headers, student_id)
    assert created["fee_status"] == "Unpaid"

    paid = await client.post(
        f"/api/v1/fees/ledgers/{student_id}/payments",
        json={"amount": "6000", "payment_type": "both", "method": "cash"},
        headers=admin_headers,
    )
    assert paid.status_code == 201, paid.text
    body = paid.json()
    assert body["ledger"]["fee_status"] == "Paid"
    assert body["excess_amount"] == "400.00"
    receipt = body["payment"]["receipt_number"]

    history = await client.get(f"/api/v1/fees/ledgers/{student_id}/payments", headers=admin_headers)
    assert history.status_code == 200
    assert history.json()["pagination"]["total_records"] == 1

    lookup = await client.get(f"/api/v1/fees/receipts/{receipt}", headers=admin_headers)
    assert lookup.status_code == 200
    assert lookup.json()["student_id"] == str(student_id)

    stats = await client.get("/api/v1/fees/stats", headers=admin_headers)
    assert stats.status_code == 200
    assert stats.json()["fee_paid"] == 1


@pytest.mark.asyncio
async def test_duplicate_ledger_conflicts(client: AsyncClient, admin_headers: Dict[str, str]) -> None:
    student_id = uuid.uuid4()
    await _create_ledger(client, admin_headers, student_id)
    response = await client.post(
        "/api/v1/fees/ledgers",
        json={"student_id": str(student_id), "class_fee_total": "5000"},
        headers=admin_headers,
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_payment_errors(client: AsyncClient, admin_headers: Dict[str, str]) -> None:
    missing = await client.post(
        f"/api/v1/fees/ledgers/{uuid.uuid4()}/payments",
        json={"amount": "100", "payment_type": "class", "method": "cash"},
        headers=admin_headers,
    )
    assert missing.status_code == 404

    student_id = uuid.uuid4()
    await _create_ledger(client, admin_headers, student_id)
    zero = await client.post(
        f"/api/v1/fees/ledgers/{student_id}/payments",
        json={"amount": "0", "payment_type": "class", "method": "cash"},
        headers=admin_headers,
    )
    assert zero.status_code == 422


@pytest.mark.asyncio
async def test_parent_cannot_record_offline_payment(
    client: AsyncClient, admin_headers: Dict[str, str], bearer
) -> None:
    student_id = uuid.uuid4()
    await _create_ledger(client, admin_headers, student_id)
    parent = bearer(uuid.uuid4(), "PARENT", student_ids=[str(student_id)])

    response = await client.post(
        f"/api/v1/fees/ledgers/{student_id}/payments",
        json={"amount": "100", "payment_type": "class", "method": "cash"},
        headers=parent,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_staff_permission_grants_read(client: AsyncClient, admin_headers: Dict[str, str], bearer) -> None:
    student_id = uuid.uuid4()
    await _create_ledger(client, admin_headers, student_id)
    clerk = bearer(uuid.uuid4(), "ACCOUNTANT", permissions={"fees": {"read": True}})

    assert (await client.get(f"/api/v1/fees/ledgers/{student_id}", headers=clerk)).status_code == 200
    assert (await client.get("/api/v1/fees/audit", headers=clerk)).status_code == 403


@pytest.mark.asyncio
async def test_payment_request_round_trip(client: AsyncClient, admin_headers: Dict[str, str], bearer) -> None:
    student_id = uuid.uuid4()
    await _create_ledger(client, admin_headers, student_id)
    parent = bearer(uuid.uuid4(), "PARENT", student_ids=[str(student_id)])

    submitted = await client.post(
        "/api/v1/payment-requests",
        json={
            "student_id": str(student_id),
            "payment_type": "bus",
            "amount": "600",
            "evidence_reference": "evidence/bus.png",
        },
        headers=parent,
    )
    assert submitted.status_code == 201, submitted.text
    request_id = submitted.json()["id"]

    mine = await client.get("/api/v1/payment-requests/mine", headers=parent)
    assert [r["id"] for r in mine.json()] == [request_id]

    # Parents cannot decide
    denied = await client.post(
        f"/api/v1/payment-requests/{request_id}/decision", json={"action": "approve"}, headers=parent
    )
    assert denied.status_code == 403

    approved = await client.post(
        f"/api/v1/payment-requests/{request_id}/decision", json={"action": "approve"}, headers=admin_headers
    )
    assert approved.status_code == 200, approved.text
    assert approved.json()["ledger"]["bus_fee"]["paid"] == "600.00"

    again = await client.post(
        f"/api/v1/payment-requests/{request_id}/decision", json={"action": "reject"}, headers=admin_headers
    )
    assert again.status_code == 409

    pending = await client.get("/api/v1/payment-requests", params={"status": "pending"}, headers=admin_headers)
    assert pending.json()["pagination"]["total_records"] == 0


@pytest.mark.asyncio
async def test_parent_request_for_unlinked_student(
    client: AsyncClient, admin_headers: Dict[str, str], bearer
) -> None:
    student_id = uuid.uuid4()
    await _create_ledger(client, admin_headers, student_id)
    stranger = bearer(uuid.uuid4(), "PARENT", student_ids=[str(uuid.uuid4())])

    response = await client.post(
        "/api/v1/payment-requests",
        json={
            "student_id": str(student_id),
            "payment_type": "class",
            "amount": "100",
            "evidence_reference": "evidence/x.png",
        },
        headers=stranger,
    )
    assert response.status_code == 403
