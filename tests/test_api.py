"""
HTTP API tests: routing, serialization and error mapping.
"""

from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from commission_engine.auth.dependencies import get_current_user
from commission_engine.auth.jwt import create_access_token
from commission_engine.db import get_db
from commission_engine.main import app


@pytest_asyncio.fixture
async def make_client(db_session):
    """Client factory acting as the given user (None: real token auth)."""

    async def override_get_db():
        yield db_session

    clients = []

    async def factory(user=None):
        app.dependency_overrides[get_db] = override_get_db
        if user is not None:
            app.dependency_overrides[get_current_user] = lambda: user
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()


def _commission_body(employee, **kwargs):
    body = {"employee_id": employee.id, "revenue": "1000", "cost": "600", "period": "2026-03"}
    body.update(kwargs)
    return body


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, make_client):
        client = await make_client()
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, make_client):
        client = await make_client()
        response = await client.get("/api/commissions")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_bearer_token(self, make_client, db_session, viewer):
        await db_session.flush()
        client = await make_client()
        token = create_access_token(viewer.id, viewer.role.value)
        response = await client.get("/api/commissions", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json() == {"items": [], "total": 0}

    @pytest.mark.asyncio
    async def test_missing_permission_is_403(self, make_client, viewer, employee, margin_rule):
        client = await make_client(viewer)
        response = await client.post("/api/commissions", json=_commission_body(employee))
        assert response.status_code == 403
        assert "employeeCommissions:create" in response.json()["detail"]


class TestCommissionEndpoints:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, make_client, manager, employee, margin_rule):
        client = await make_client(manager)

        response = await client.post("/api/commissions", json=_commission_body(employee))
        assert response.status_code == 201
        created = response.json()
        assert created["code"] == "COMM-2026-0001"
        assert created["status"] == "pending"
        assert Decimal(created["total_amount"]) == Decimal("40")

        commission_id = created["id"]
        response = await client.post(f"/api/commissions/{commission_id}/approve", json={"notes": "ok"})
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = await client.post(
            f"/api/commissions/{commission_id}/pay",
            json={"payment_reference": "TX-1", "payment_method": "bank_transfer"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "paid"

        response = await client.get(f"/api/commissions/{commission_id}")
        assert response.json()["payment_reference"] == "TX-1"

    @pytest.mark.asyncio
    async def test_illegal_transition_is_409(self, make_client, manager, employee, margin_rule):
        client = await make_client(manager)
        created = (await client.post("/api/commissions", json=_commission_body(employee))).json()

        response = await client.post(
            f"/api/commissions/{created['id']}/pay",
            json={"payment_reference": "TX-1", "payment_method": "cash"},
        )
        assert response.status_code == 409
        assert response.json()["errors"] == [response.json()["detail"]]

    @pytest.mark.asyncio
    async def test_validation_error_is_422_with_all_errors(self, make_client, manager, employee, margin_rule):
        client = await make_client(manager)
        response = await client.post(
            "/api/commissions",
            json=_commission_body(employee, revenue="-5", cost="-1"),
        )
        assert response.status_code == 422
        assert len(response.json()["errors"]) == 2

    @pytest.mark.asyncio
    async def test_unknown_commission_is_404(self, make_client, manager):
        client = await make_client(manager)
        response = await client.get("/api/commissions/12345")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_and_restore(self, make_client, manager, employee, margin_rule):
        client = await make_client(manager)
        created = (await client.post("/api/commissions", json=_commission_body(employee))).json()

        response = await client.delete(f"/api/commissions/{created['id']}")
        assert response.status_code == 200
        assert (await client.get(f"/api/commissions/{created['id']}")).status_code == 404

        response = await client.post(f"/api/commissions/{created['id']}/restore")
        assert response.status_code == 200
        assert (await client.post(f"/api/commissions/{created['id']}/restore")).status_code == 409

    @pytest.mark.asyncio
    async def test_recalculate(self, make_client, manager, employee, margin_rule):
        client = await make_client(manager)
        created = (await client.post("/api/commissions", json=_commission_body(employee))).json()

        response = await client.post(
            f"/api/commissions/{created['id']}/recalculate",
            json={"revenue": "2000", "cost": "1000"},
        )
        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["old_amount"]) == Decimal("40")
        assert Decimal(body["new_amount"]) == Decimal("100")

    @pytest.mark.asyncio
    async def test_period_summary(self, make_client, manager, employee, margin_rule):
        client = await make_client(manager)
        await client.post("/api/commissions", json=_commission_body(employee))

        response = await client.get("/api/commissions/summary/period/2026-03")
        assert response.status_code == 200
        assert response.json()["count"] == 1

        assert (await client.get("/api/commissions/summary/period/2026-13")).status_code == 422

    @pytest.mark.asyncio
    async def test_auto_approve_for_invoice(self, make_client, manager, employee, auto_rule):
        client = await make_client(manager)
        await client.post(
            "/api/commissions",
            json=_commission_body(employee, rule_id=auto_rule.id, invoice_id=9),
        )
        response = await client.post("/api/commissions/invoices/9/auto-approve")
        assert response.json() == {"approved": 1, "total": 1}


class TestRuleEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_list(self, make_client, manager, employee):
        client = await make_client(manager)
        response = await client.post("/api/commission-rules", json={
            "employee_id": employee.id,
            "name": "Tiered",
            "type": "tiered",
            "tiers": [
                {"min_amount": "1000", "rate": "8"},
                {"min_amount": "0", "max_amount": "999", "rate": "5"},
            ],
        })
        assert response.status_code == 201
        assert response.json()["public_id"].startswith("rule_")

        response = await client.get(f"/api/commission-rules/employee/{employee.id}")
        rules = response.json()
        assert len(rules) == 1
        assert [Decimal(t["min_amount"]) for t in rules[0]["tiers"]] == [Decimal("0"), Decimal("1000")]

    @pytest.mark.asyncio
    async def test_validate_never_errors(self, make_client, viewer):
        client = await make_client(viewer)
        response = await client.post("/api/commission-rules/validate", json={
            "type": "tiered",
            "tiers": [
                {"min_amount": 0, "max_amount": 1000, "rate": 5},
                {"min_amount": 500, "rate": 8},
            ],
        })
        assert response.status_code == 200
        assert response.json()["valid"] is False
        assert len(response.json()["errors"]) == 1

    @pytest.mark.asyncio
    async def test_preview(self, make_client, viewer, employee, margin_rule):
        client = await make_client(viewer)
        response = await client.post("/api/commission-rules/preview", json={
            "employee_id": employee.id,
            "revenue": "1000",
            "cost": "600",
        })
        assert response.status_code == 200
        body = response.json()
        assert body["rule_id"] == margin_rule.id
        assert Decimal(body["commission_amount"]) == Decimal("40")

    @pytest.mark.asyncio
    async def test_frozen_rule_is_409(self, make_client, manager, employee, margin_rule):
        client = await make_client(manager)
        await client.post("/api/commissions", json=_commission_body(employee))

        response = await client.patch(f"/api/commission-rules/{margin_rule.id}", json={"rate": "12"})
        assert response.status_code == 409

        response = await client.delete(f"/api/commission-rules/{margin_rule.id}")
        assert response.status_code == 409

        response = await client.post(f"/api/commission-rules/{margin_rule.id}/deactivate")
        assert response.status_code == 200
        assert response.json()["is_active"] is False

    @pytest.mark.asyncio
    async def test_unsupported_type_is_422(self, make_client, manager, employee):
        client = await make_client(manager)
        response = await client.post("/api/commission-rules", json={
            "employee_id": employee.id,
            "name": "Mystery",
            "type": "bonus_pool",
            "rate": "5",
        })
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_search_by_type(self, make_client, viewer, employee, margin_rule, auto_rule):
        client = await make_client(viewer)
        response = await client.get(
            "/api/commission-rules", params={"type": "margin_percentage", "employee_id": employee.id}
        )
        assert response.status_code == 200
        assert [rule["id"] for rule in response.json()] == [margin_rule.id]

        response = await client.get("/api/commission-rules", params={"limit": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_by_public_id(self, make_client, viewer, margin_rule):
        client = await make_client(viewer)
        response = await client.get(f"/api/commission-rules/by-public-id/{margin_rule.public_id}")
        assert response.status_code == 200
        assert response.json()["id"] == margin_rule.id

        response = await client.get("/api/commission-rules/by-public-id/rule_missing")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_and_restore(self, make_client, admin, margin_rule):
        client = await make_client(admin)
        response = await client.delete(f"/api/commission-rules/{margin_rule.id}")
        assert response.status_code == 200

        response = await client.get(f"/api/commission-rules/{margin_rule.id}")
        assert response.status_code == 404

        response = await client.post(f"/api/commission-rules/{margin_rule.id}/restore")
        assert response.status_code == 200
        assert response.json()["id"] == margin_rule.id

        response = await client.post(f"/api/commission-rules/{margin_rule.id}/restore")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_clearing_active_flag_is_422(self, make_client, admin, margin_rule):
        client = await make_client(admin)
        response = await client.patch(f"/api/commission-rules/{margin_rule.id}", json={"is_active": None})
        assert response.status_code == 422
        assert response.json()["errors"] == ["is_active cannot be cleared"]
