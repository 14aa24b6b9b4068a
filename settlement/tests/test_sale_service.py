# D:\Settlement\settlement\tests\test_sale_service.py
"""
test_sale_service.py

Testes dos eventos de venda no razão do fornecedor.

Funcionalidades testadas:
    - Registro de venda com comissão do plano e retenção D+N
    - Idempotência por pedido
    - Estorno de venda retida e de venda já liberada
    - Ajuste manual de débito respeitando o saldo disponível
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement.models.finance_models import AdjustmentSource, LedgerEntry, LedgerEntryStatus, LedgerEntryType
from settlement.services.errors import InsufficientBalance, InvalidAmount, InvalidEntry, NotFound
from settlement.tests.utils.financial_utils import create_supplier, fund_wallet


async def _entries_for_order(session_maker, order_id):
    async with session_maker() as session:
        result = await session.execute(
            select(LedgerEntry).where(LedgerEntry.order_id == order_id).order_by(LedgerEntry.id)
        )
        return result.scalars().all()


@pytest.mark.asyncio
async def test_record_sale_with_commission(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), commission_percent=12.5, release_days=14)
    supplier_id = ids["supplier_id"]

    summary = await settlement_engine.record_sale(supplier_id, "ORD-1001", "199.99")

    assert summary["gross_amount"] == Decimal("199.99")
    assert summary["commission_amount"] == Decimal("25.00")
    assert summary["net_amount"] == Decimal("174.99")

    entries = await _entries_for_order(session_maker, "ORD-1001")
    assert [e.type for e in entries] == [LedgerEntryType.SALE_REVENUE, LedgerEntryType.SALE_COMMISSION]
    assert all(e.status == LedgerEntryStatus.PENDING for e in entries)
    assert entries[0].release_date == entries[1].release_date

    balances = await settlement_engine.get_balances(supplier_id)
    assert balances["pending_balance"] == 174.99
    assert balances["wallet_balance"] == 0.0


@pytest.mark.asyncio
async def test_record_sale_uses_global_commission(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock())

    summary = await settlement_engine.record_sale(ids["supplier_id"], "ORD-G", "100.00")

    # Plano sem comissão própria: vale o padrão global de 10%
    assert summary["commission_amount"] == Decimal("10.00")


@pytest.mark.asyncio
async def test_record_sale_is_idempotent(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), commission_percent=10)
    supplier_id = ids["supplier_id"]

    first = await settlement_engine.record_sale(supplier_id, "ORD-DUP", "80.00")
    second = await settlement_engine.record_sale(supplier_id, "ORD-DUP", "80.00")

    assert first["created"] is True
    assert second["created"] is False
    assert second["revenue_entry_id"] == first["revenue_entry_id"]
    assert len(await _entries_for_order(session_maker, "ORD-DUP")) == 2

    balances = await settlement_engine.get_balances(supplier_id)
    assert balances["pending_balance"] == 72.0


@pytest.mark.asyncio
async def test_record_sale_rejects_invalid_amount(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock())

    with pytest.raises(InvalidAmount):
        await settlement_engine.record_sale(ids["supplier_id"], "ORD-Z", "0")
    with pytest.raises(InvalidEntry):
        await settlement_engine.record_sale(ids["supplier_id"], "", "10")
    with pytest.raises(NotFound):
        await settlement_engine.record_sale(9999, "ORD-X", "10")


@pytest.mark.asyncio
async def test_refund_pending_sale(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), commission_percent=10, release_days=14)
    supplier_id = ids["supplier_id"]
    await settlement_engine.record_sale(supplier_id, "ORD-R1", "100.00")

    result = await settlement_engine.refund_sale("ORD-R1", "Cliente desistiu")

    assert result["pending_reversed"] == Decimal("90.00")
    assert result["wallet_debited"] == Decimal("0.00")
    entries = await _entries_for_order(session_maker, "ORD-R1")
    assert all(e.status == LedgerEntryStatus.REJECTED for e in entries)

    balances = await settlement_engine.get_balances(supplier_id)
    assert balances == {"wallet_balance": 0.0, "pending_balance": 0.0, "blocked_balance": 0.0}

    # Entradas estornadas não são liberadas depois
    clock.advance(days=15)
    await settlement_engine.sweep_releases()
    assert (await settlement_engine.get_balances(supplier_id))["wallet_balance"] == 0.0


@pytest.mark.asyncio
async def test_refund_released_sale(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), commission_percent=10, release_days=1)
    supplier_id = ids["supplier_id"]
    await settlement_engine.record_sale(supplier_id, "ORD-R2", "100.00")
    clock.advance(days=1)
    await settlement_engine.sweep_releases()

    result = await settlement_engine.refund_sale("ORD-R2")
    repeated = await settlement_engine.refund_sale("ORD-R2")

    assert result["wallet_debited"] == Decimal("90.00")
    assert repeated["already_refunded"] is True

    entries = await _entries_for_order(session_maker, "ORD-R2")
    adjustments = [e for e in entries if e.type == LedgerEntryType.ADJUSTMENT]
    assert len(adjustments) == 1
    assert adjustments[0].amount == Decimal("-90.00")
    assert adjustments[0].source == AdjustmentSource.REFUND

    balances = await settlement_engine.get_balances(supplier_id)
    assert balances["wallet_balance"] == 0.0
    assert (await settlement_engine.verify_balance(supplier_id))["consistent"] is True


@pytest.mark.asyncio
async def test_refund_released_sale_needs_wallet(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), commission_percent=0, release_days=0)
    supplier_id = ids["supplier_id"]
    await settlement_engine.record_sale(supplier_id, "ORD-R3", "100.00")
    await settlement_engine.request_withdrawal(supplier_id, "80.00")

    with pytest.raises(InsufficientBalance):
        await settlement_engine.refund_sale("ORD-R3")

    entries = await _entries_for_order(session_maker, "ORD-R3")
    assert [e.type for e in entries] == [LedgerEntryType.SALE_REVENUE]


@pytest.mark.asyncio
async def test_refund_unknown_order(settlement_engine):
    with pytest.raises(NotFound):
        await settlement_engine.refund_sale("NAO-EXISTE")


@pytest.mark.asyncio
async def test_debit_adjustment_cannot_overdraw(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock())
    supplier_id = ids["supplier_id"]
    await fund_wallet(settlement_engine, supplier_id, "20.00")

    with pytest.raises(InsufficientBalance):
        await settlement_engine.post_adjustment(supplier_id, "-20.01", "Taxa")
    with pytest.raises(InvalidEntry):
        await settlement_engine.post_adjustment(supplier_id, "5.00", "")

    entry = await settlement_engine.post_adjustment(
        supplier_id, "-20.00", "Taxa", {"id": 1, "name": "Admin"}
    )
    assert entry["amount"] == -20.0
    assert entry["source"] == "ADMIN"
    assert (await settlement_engine.get_balances(supplier_id))["wallet_balance"] == 0.0
