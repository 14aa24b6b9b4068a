# D:\Settlement\settlement\tests\test_financial_admin_views.py
"""
test_financial_admin_views.py

Testes de integração dos endpoints administrativos do motor de liquidação.

Funcionalidades testadas:
    - Restrição a SYSTEM_ADMIN (inclusive papel legado 'ADMIN')
    - Painel, listagem, aprovação e rejeição de saques
    - Configurações globais e log de auditoria
    - Ajustes manuais e criação de planos
    - Conciliação, indicadores por fornecedor e alertas
"""

import pytest
import pytest_asyncio

from settlement.models.database import Role
from settlement.tests.utils.auth_utils import auth_header, get_admin_token, make_raw_token, make_token
from settlement.tests.utils.financial_utils import create_supplier, fund_wallet


@pytest_asyncio.fixture
async def admin_test_data(session_maker, clock, settlement_engine):
    """
    Cria um fornecedor com saldo e duas solicitações de saque pendentes.

    Returns:
        dict: Tokens, fornecedor e ids das solicitações
    """
    supplier = await create_supplier(session_maker, clock())
    await fund_wallet(settlement_engine, supplier["supplier_id"], "500.00")
    first = await settlement_engine.request_withdrawal(supplier["supplier_id"], "100.00")
    second = await settlement_engine.request_withdrawal(supplier["supplier_id"], "150.00")
    admin_token, admin_id = await get_admin_token(session_maker)

    return {
        "supplier_id": supplier["supplier_id"],
        "supplier_token": make_token(supplier["user_id"], Role.SUPPLIER, supplier["account_id"]),
        "manager_token": make_token(supplier["user_id"], Role.ACCOUNT_ADMIN, supplier["account_id"]),
        "admin_token": admin_token,
        "admin_id": admin_id,
        "first_request": first["id"],
        "second_request": second["id"],
    }


@pytest.mark.asyncio
async def test_admin_routes_require_system_admin(test_client_fixture, admin_test_data):
    for token in (admin_test_data["supplier_token"], admin_test_data["manager_token"]):
        resp = await test_client_fixture.get("/financial/admin/withdrawals", headers=auth_header(token))
        assert resp.status == 403

    legacy = make_raw_token(admin_test_data["admin_id"], "ADMIN")
    resp = await test_client_fixture.get("/financial/admin/withdrawals", headers=auth_header(legacy))
    assert resp.status == 200


@pytest.mark.asyncio
async def test_dashboard(test_client_fixture, admin_test_data):
    headers = auth_header(admin_test_data["admin_token"])

    resp = await test_client_fixture.get("/financial/admin/dashboard", headers=headers)
    assert resp.status == 200
    body = await resp.json()
    assert body["payouts"]["pendingCount"] == 2
    assert body["payouts"]["pendingAmount"] == 250.0
    assert body["blockedBalance"] == 250.0
    assert len(body["recentPendingWithdrawals"]) == 2

    resp = await test_client_fixture.get("/financial-admin/overview?start_date=data", headers=headers)
    assert resp.status == 422


@pytest.mark.asyncio
async def test_approve_and_reject_withdrawals(test_client_fixture, admin_test_data, settlement_engine):
    data = admin_test_data
    headers = auth_header(data["admin_token"])

    resp = await test_client_fixture.post(
        f"/financial/admin/withdrawals/{data['first_request']}/approve", headers=headers
    )
    assert resp.status == 200
    body = await resp.json()
    assert body["withdrawal"]["status"] == "PAID"
    assert body["withdrawal"]["processedBy"] == data["admin_id"]

    resp = await test_client_fixture.post(
        f"/financial/admin/withdrawals/{data['first_request']}/approve", headers=headers
    )
    assert resp.status == 422

    resp = await test_client_fixture.post(
        f"/financial/admin/withdrawals/{data['second_request']}/reject", json={}, headers=headers
    )
    assert resp.status == 422

    resp = await test_client_fixture.post(
        f"/financial/admin/withdrawals/{data['second_request']}/reject",
        json={"reason": "Chave PIX não confere"}, headers=headers
    )
    assert resp.status == 200
    assert (await resp.json())["withdrawal"]["reason"] == "Chave PIX não confere"

    balances = await settlement_engine.get_balances(data["supplier_id"])
    assert balances == {"wallet_balance": 400.0, "pending_balance": 0.0, "blocked_balance": 0.0}

    resp = await test_client_fixture.get("/financial/admin/withdrawals?status=HISTORY", headers=headers)
    body = await resp.json()
    assert {w["status"] for w in body["withdrawals"]} == {"PAID", "REJECTED"}

    resp = await test_client_fixture.get("/financial/admin/audit", headers=headers)
    actions = [log["action"] for log in (await resp.json())["logs"]]
    assert "WITHDRAWAL_APPROVED" in actions
    assert "WITHDRAWAL_REJECTED" in actions

    resp = await test_client_fixture.post("/financial/admin/withdrawals/9999/approve", headers=headers)
    assert resp.status == 404


@pytest.mark.asyncio
async def test_settings_endpoints(test_client_fixture, admin_test_data):
    headers = auth_header(admin_test_data["admin_token"])

    resp = await test_client_fixture.get("/financial/admin/settings", headers=headers)
    assert resp.status == 200
    assert (await resp.json())["defaultReleaseDays"] == 14

    resp = await test_client_fixture.put(
        "/financial/admin/settings", json={"defaultReleaseDays": 7, "withdrawal_sla_days": 2}, headers=headers
    )
    assert resp.status == 200
    body = await resp.json()
    assert body["defaultReleaseDays"] == 7
    assert body["withdrawalSlaDays"] == 2

    resp = await test_client_fixture.put("/financial/admin/settings", json={}, headers=headers)
    assert resp.status == 422

    resp = await test_client_fixture.put(
        "/financial/admin/settings", json={"defaultCommissionPercent": 120}, headers=headers
    )
    assert resp.status == 422


@pytest.mark.asyncio
async def test_adjustments_and_plans(test_client_fixture, admin_test_data, settlement_engine):
    data = admin_test_data
    headers = auth_header(data["admin_token"])

    resp = await test_client_fixture.post("/financial/admin/adjustments", json={
        "supplierId": data["supplier_id"], "amount": -50, "description": "Taxa de chargeback"
    }, headers=headers)
    assert resp.status == 201
    assert (await resp.json())["entry"]["amount"] == -50.0
    assert (await settlement_engine.get_balances(data["supplier_id"]))["wallet_balance"] == 200.0

    resp = await test_client_fixture.post("/financial/admin/adjustments", json={
        "supplierId": data["supplier_id"], "amount": 10
    }, headers=headers)
    assert resp.status == 422

    resp = await test_client_fixture.post("/financial/admin/adjustments", json={
        "supplierId": data["supplier_id"], "amount": -1000, "description": "Débito maior que o saldo"
    }, headers=headers)
    assert resp.status == 400
    assert (await resp.json())["code"] == "INSUFFICIENT_BALANCE"

    resp = await test_client_fixture.post("/financial/admin/plans", json={
        "name": "Enterprise", "monthlyPrice": 499, "commissionPercent": 4, "releaseDays": 7
    }, headers=headers)
    assert resp.status == 201
    plan = (await resp.json())["plan"]
    assert plan["commissionPercent"] == 4.0
    assert plan["releaseDays"] == 7

    resp = await test_client_fixture.post("/financial/admin/plans", json={
        "name": "Quebrado", "monthlyPrice": 10, "commissionPercent": "abc"
    }, headers=headers)
    assert resp.status == 422
    assert (await resp.json())["code"] == "INVALID_ENTRY"


@pytest.mark.asyncio
async def test_reconciliation_suppliers_and_alerts(test_client_fixture, admin_test_data):
    headers = auth_header(admin_test_data["admin_token"])

    resp = await test_client_fixture.get("/financial-admin/reconciliation", headers=headers)
    assert resp.status == 200
    body = await resp.json()
    assert body["balanced"] is True
    assert body["suppliers"][0]["blockedBalance"] == 250.0

    resp = await test_client_fixture.get("/financial-admin/suppliers?search=Fornecedor", headers=headers)
    assert resp.status == 200
    suppliers = (await resp.json())["suppliers"]
    assert suppliers[0]["supplierId"] == admin_test_data["supplier_id"]

    resp = await test_client_fixture.get("/financial-admin/alerts", headers=headers)
    assert resp.status == 200
    body = await resp.json()
    assert body["count"] == len(body["alerts"])
