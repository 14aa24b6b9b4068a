# D:\Settlement\settlement\tests\test_export_service.py
"""
test_export_service.py

Testes da exportação contábil do razão.

Funcionalidades testadas:
    - Apenas lançamentos COMPLETED do período entram no extrato
    - Resumo por tipo e saldos por fornecedor
    - Exportação de um único fornecedor
    - Endpoint administrativo (CSV, JSON, validações e RBAC)
"""

import csv
import io
from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy import update

from settlement.models.database import Role, Supplier
from settlement.services.errors import InvalidEntry, NotFound
from settlement.tests.utils.auth_utils import auth_header, get_admin_token, make_token
from settlement.tests.utils.financial_utils import create_supplier, fund_wallet

PERIOD_START = datetime(2024, 1, 10, 0, 0, 0)
PERIOD_END = datetime(2024, 1, 10, 23, 59, 59)
PERIOD_QUERY = "start_date=2024-01-10T00:00:00&end_date=2024-01-10T23:59:59"


async def _rename(session_maker, supplier_id, name, billing_doc=None):
    async with session_maker() as session, session.begin():
        await session.execute(
            update(Supplier).where(Supplier.id == supplier_id).values(name=name, billing_doc=billing_doc)
        )


@pytest_asyncio.fixture
async def export_data(session_maker, clock, settlement_engine):
    """
    Cenário do dia 10/01/2024:
        - Alfa: venda liberada de 200 (comissão 20), crédito de 50 e saque pendente de 60;
          um crédito de 10 em 05/01 fica fora do período
        - Beta: venda retida de 100 e crédito de 30, sem documento cadastrado
    """
    alfa = await create_supplier(session_maker, clock(), commission_percent=10, release_days=0)
    beta = await create_supplier(session_maker, clock(), commission_percent=10, release_days=14)
    await _rename(session_maker, alfa["supplier_id"], "Alfa Distribuidora", "12.345.678/0001-90")
    await _rename(session_maker, beta["supplier_id"], "Beta Importados")

    clock.set(datetime(2024, 1, 5, 9, 0, 0))
    await fund_wallet(settlement_engine, alfa["supplier_id"], "10.00", "Crédito antigo")
    clock.set(datetime(2024, 1, 10, 12, 0, 0))

    await settlement_engine.record_sale(alfa["supplier_id"], "EXP-1", "200.00")
    await fund_wallet(settlement_engine, alfa["supplier_id"], "50.00")
    await settlement_engine.request_withdrawal(alfa["supplier_id"], "60.00")

    await settlement_engine.record_sale(beta["supplier_id"], "EXP-2", "100.00")
    await fund_wallet(settlement_engine, beta["supplier_id"], "30.00")

    return {"alfa": alfa["supplier_id"], "beta": beta["supplier_id"]}


@pytest.mark.asyncio
async def test_accounting_export_rows_and_summary(settlement_engine, export_data):
    data = await settlement_engine.accounting_export(PERIOD_START, PERIOD_END)

    assert [(row["Fornecedor"], row["Tipo"], float(row["Valor"])) for row in data["rows"]] == [
        ("Alfa Distribuidora", "SALE_REVENUE", 200.0),
        ("Alfa Distribuidora", "SALE_COMMISSION", -20.0),
        ("Alfa Distribuidora", "ADJUSTMENT", 50.0),
        ("Beta Importados", "ADJUSTMENT", 30.0),
    ]
    assert data["rows"][0]["Data"] == "2024-01-10"
    assert data["rows"][0]["Documento"] == "12.345.678/0001-90"
    assert data["rows"][3]["Documento"] == "N/A"

    # Saque pendente, venda retida e crédito fora do período não aparecem
    assert all(row["Tipo"] != "PAYOUT" for row in data["rows"])
    assert float(data["total"]) == 260.0

    summary = {item["Categoria"]: float(item["Total"]) for item in data["summary"]}
    assert summary == {"ADJUSTMENT": 80.0, "SALE_COMMISSION": -20.0, "SALE_REVENUE": 200.0}

    balances = {item["Categoria"]: float(item["Total"]) for item in data["balances"]}
    # Alfa: 10 + 180 + 50 - 60 reservado; Beta: apenas o crédito liberado
    assert balances == {"Saldo: Alfa Distribuidora": 180.0, "Saldo: Beta Importados": 30.0}


@pytest.mark.asyncio
async def test_accounting_export_single_supplier(settlement_engine, export_data):
    data = await settlement_engine.accounting_export(PERIOD_START, PERIOD_END, export_data["alfa"])

    assert [row["Tipo"] for row in data["rows"]] == ["SALE_REVENUE", "SALE_COMMISSION", "ADJUSTMENT"]
    assert float(data["total"]) == 230.0
    assert [item["Categoria"] for item in data["balances"]] == ["Saldo: Alfa Distribuidora"]

    wide = await settlement_engine.accounting_export(datetime(2024, 1, 1), PERIOD_END, export_data["alfa"])
    assert wide["rows"][0]["Descricao"] == "Crédito antigo"
    assert float(wide["total"]) == 240.0


@pytest.mark.asyncio
async def test_accounting_export_validation(settlement_engine, export_data):
    with pytest.raises(InvalidEntry):
        await settlement_engine.accounting_export(None, PERIOD_END)
    with pytest.raises(InvalidEntry):
        await settlement_engine.accounting_export(PERIOD_END, PERIOD_START)
    with pytest.raises(NotFound):
        await settlement_engine.accounting_export(PERIOD_START, PERIOD_END, 9999)


@pytest.mark.asyncio
async def test_export_endpoint_csv(test_client_fixture, session_maker, export_data):
    admin_token, _ = await get_admin_token(session_maker)

    resp = await test_client_fixture.get(f"/financial/admin/export?{PERIOD_QUERY}", headers=auth_header(admin_token))
    assert resp.status == 200
    assert resp.content_type == "text/csv"
    assert 'filename="contabil-20240110-20240110.csv"' in resp.headers["Content-Disposition"]

    lines = list(csv.reader(io.StringIO(await resp.text())))
    assert lines[0] == ["Data", "Fornecedor", "Documento", "Tipo", "Descricao", "Valor"]
    assert lines[1] == [
        "2024-01-10", "Alfa Distribuidora", "12.345.678/0001-90", "SALE_REVENUE", "Venda do pedido #EXP-1", "200.00"
    ]
    assert lines[5] == []
    assert lines[6] == ["Categoria", "Total"]
    assert ["SALE_COMMISSION", "-20.00"] in lines[7:]
    assert ["Saldo: Beta Importados", "30.00"] in lines[7:]


@pytest.mark.asyncio
async def test_export_endpoint_json_and_validation(test_client_fixture, session_maker, export_data):
    admin_token, _ = await get_admin_token(session_maker)
    headers = auth_header(admin_token)

    resp = await test_client_fixture.get(f"/financial/admin/export?{PERIOD_QUERY}&format=json", headers=headers)
    assert resp.status == 200
    body = await resp.json()
    assert len(body["rows"]) == 4
    assert body["total"] == 260.0

    resp = await test_client_fixture.get(f"/financial/admin/export?{PERIOD_QUERY}&format=xlsx", headers=headers)
    assert resp.status == 422

    resp = await test_client_fixture.get("/financial/admin/export?end_date=2024-01-10T23:59:59", headers=headers)
    assert resp.status == 422
    assert (await resp.json())["code"] == "INVALID_ENTRY"


@pytest.mark.asyncio
async def test_export_endpoint_requires_system_admin(test_client_fixture, session_maker, clock):
    supplier = await create_supplier(session_maker, clock())
    token = make_token(supplier["user_id"], Role.SUPPLIER, supplier["account_id"])

    resp = await test_client_fixture.get(f"/financial/admin/export?{PERIOD_QUERY}", headers=auth_header(token))
    assert resp.status == 403


@pytest.mark.asyncio
async def test_accounting_export_separates_refunds_from_admin_adjustments(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), commission_percent=10, release_days=0)
    supplier_id = ids["supplier_id"]
    await settlement_engine.record_sale(supplier_id, "EXP-R", "100.00")
    await fund_wallet(settlement_engine, supplier_id, "25.00")
    await settlement_engine.refund_sale("EXP-R")

    data = await settlement_engine.accounting_export(PERIOD_START, PERIOD_END, supplier_id)

    summary = {item["Categoria"]: float(item["Total"]) for item in data["summary"]}
    assert summary["ADJUSTMENT"] == 25.0
    assert summary["ADJUSTMENT (REFUND)"] == -90.0
    assert [row["Tipo"] for row in data["rows"]].count("ADJUSTMENT") == 2
