# D:\Settlement\settlement\tests\test_subscription_service.py
"""
test_subscription_service.py

Testes da cobrança de assinaturas dos fornecedores.

Funcionalidades testadas:
    - Pagamento com saldo disponível
    - Pagamento com cartão (aprovado e recusado pelo gateway)
    - Troca de plano agendada para o próximo ciclo
    - Marcação de assinaturas vencidas
    - Dados de faturamento e criação de planos
"""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement.models.database import (
    Supplier, SupplierFinancialStatus, SupplierSubscription, SubscriptionStatus
)
from settlement.models.finance_models import (
    AdjustmentSource, LedgerEntry, LedgerEntryType, PaymentTransaction
)
from settlement.services.errors import (
    InsufficientBalance, InvalidAmount, InvalidEntry, NotFound, PaymentDeclined
)
from settlement.tests.utils.financial_utils import create_supplier, fund_wallet


async def _subscriptions(session_maker, supplier_id):
    async with session_maker() as session:
        result = await session.execute(
            select(SupplierSubscription)
            .where(SupplierSubscription.supplier_id == supplier_id)
            .order_by(SupplierSubscription.id)
        )
        return result.scalars().all()


async def _ledger_types(session_maker, supplier_id):
    async with session_maker() as session:
        result = await session.execute(
            select(LedgerEntry.type).where(LedgerEntry.supplier_id == supplier_id).order_by(LedgerEntry.id)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_pay_with_balance(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), monthly_price=99)
    supplier_id = ids["supplier_id"]
    await fund_wallet(settlement_engine, supplier_id, "150.00")

    result = await settlement_engine.pay_subscription(supplier_id, "BALANCE", amount="99.00")

    assert result["amount"] == 99.0
    assert result["method"] == "BALANCE"
    # Vencimento atual é futuro: o novo ciclo soma a partir dele
    assert result["nextBillingDate"] == datetime(2024, 3, 10, 12, 0).isoformat()

    balances = await settlement_engine.get_balances(supplier_id)
    assert balances["wallet_balance"] == 51.0
    assert (await settlement_engine.verify_balance(supplier_id))["consistent"] is True

    subscriptions = await _subscriptions(session_maker, supplier_id)
    assert [s.status for s in subscriptions] == [SubscriptionStatus.SUSPENSA, SubscriptionStatus.ATIVA]


@pytest.mark.asyncio
async def test_pay_with_balance_insufficient(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), monthly_price=99)
    supplier_id = ids["supplier_id"]
    await fund_wallet(settlement_engine, supplier_id, "50.00")

    with pytest.raises(InsufficientBalance):
        await settlement_engine.pay_subscription(supplier_id, "BALANCE")

    assert (await settlement_engine.get_balances(supplier_id))["wallet_balance"] == 50.0
    assert len(await _subscriptions(session_maker, supplier_id)) == 1


@pytest.mark.asyncio
async def test_pay_amount_must_match_price(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), monthly_price=99)
    await fund_wallet(settlement_engine, ids["supplier_id"], "150.00")

    with pytest.raises(InvalidAmount):
        await settlement_engine.pay_subscription(ids["supplier_id"], "BALANCE", amount="49.00")
    with pytest.raises(InvalidEntry):
        await settlement_engine.pay_subscription(ids["supplier_id"], "BOLETO")


@pytest.mark.asyncio
async def test_pay_with_card_approved(session_maker, clock, settlement_engine, mock_payment_gateways):
    ids = await create_supplier(
        session_maker, clock(), monthly_price=99,
        financial_status=SupplierFinancialStatus.OVERDUE, with_subscription=False
    )
    supplier_id = ids["supplier_id"]

    result = await settlement_engine.pay_subscription(supplier_id, "CARD", payment_token="tok_visa")

    # Sem vencimento futuro o ciclo conta a partir de agora
    assert result["nextBillingDate"] == datetime(2024, 2, 9, 12, 0).isoformat()
    mock_payment_gateways["stripe"].charge_token.assert_awaited_once()
    args = mock_payment_gateways["stripe"].charge_token.await_args.args
    assert args[1] == Decimal("99.00")
    assert args[2] == "tok_visa"

    # Cartão não movimenta o saldo disponível
    balances = await settlement_engine.get_balances(supplier_id)
    assert balances["wallet_balance"] == 0.0
    assert await _ledger_types(session_maker, supplier_id) == [
        LedgerEntryType.ADJUSTMENT, LedgerEntryType.SUBSCRIPTION_PAYMENT
    ]

    async with session_maker() as session:
        supplier = await session.get(Supplier, supplier_id)
        transaction = (await session.execute(select(PaymentTransaction))).scalar_one()
    assert supplier.financial_status == SupplierFinancialStatus.ACTIVE
    assert transaction.gateway_transaction_id == "ch_test_123"
    assert transaction.subscription_id == result["subscription"]["id"]

    # O recebimento do gateway fica marcado e não se confunde com correções do admin
    async with session_maker() as session:
        receipt = (await session.execute(
            select(LedgerEntry).where(LedgerEntry.type == LedgerEntryType.ADJUSTMENT)
        )).scalar_one()
    assert receipt.source == AdjustmentSource.CARD_GATEWAY
    assert "ch_test_123" in receipt.description
    assert "stripe" in receipt.description


@pytest.mark.asyncio
async def test_pay_with_card_mercado_pago(session_maker, clock, settlement_engine, mock_payment_gateways):
    ids = await create_supplier(session_maker, clock(), monthly_price=49)

    await settlement_engine.pay_subscription(
        ids["supplier_id"], "CARD", payment_token="mp_tok", gateway="mercado_pago"
    )

    mock_payment_gateways["mercado_pago"].charge_token.assert_awaited_once()
    mock_payment_gateways["stripe"].charge_token.assert_not_awaited()

    with pytest.raises(InvalidEntry):
        await settlement_engine.pay_subscription(
            ids["supplier_id"], "CARD", payment_token="tok", gateway="paypal"
        )


@pytest.mark.asyncio
async def test_pay_with_card_declined(session_maker, clock, settlement_engine, mock_payment_gateways):
    ids = await create_supplier(session_maker, clock(), monthly_price=99)
    supplier_id = ids["supplier_id"]
    mock_payment_gateways["stripe"].charge_token.return_value = (False, "Cartão recusado", None)

    with pytest.raises(PaymentDeclined) as exc_info:
        await settlement_engine.pay_subscription(supplier_id, "CARD", payment_token="tok_declined")
    assert "Cartão recusado" in exc_info.value.message

    with pytest.raises(PaymentDeclined):
        await settlement_engine.pay_subscription(supplier_id, "CARD")

    assert await _ledger_types(session_maker, supplier_id) == []
    subscriptions = await _subscriptions(session_maker, supplier_id)
    assert [s.status for s in subscriptions] == [SubscriptionStatus.ATIVA]
    async with session_maker() as session:
        transactions = (await session.execute(select(PaymentTransaction))).scalars().all()
    assert transactions == []


@pytest.mark.asyncio
async def test_change_plan_next_cycle(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), monthly_price=99, commission_percent=10)
    supplier_id = ids["supplier_id"]
    premium = await settlement_engine.create_plan(
        {"name": "Premium", "monthly_price": "199.00", "commission_percent": 5}
    )

    result = await settlement_engine.change_plan(supplier_id, premium["id"])
    assert result["effective"] == "NEXT_CYCLE"
    assert result["planId"] == ids["plan_id"]
    assert result["pendingPlanId"] == premium["id"]

    # A comissão do ciclo corrente não muda
    sale = await settlement_engine.record_sale(supplier_id, "ORD-P1", "100.00")
    assert sale["commission_amount"] == Decimal("10.00")

    await fund_wallet(settlement_engine, supplier_id, "199.00")
    paid = await settlement_engine.pay_subscription(supplier_id, "BALANCE")
    assert paid["amount"] == 199.0
    assert paid["subscription"]["planId"] == premium["id"]

    sale = await settlement_engine.record_sale(supplier_id, "ORD-P2", "100.00")
    assert sale["commission_amount"] == Decimal("5.00")

    with pytest.raises(NotFound):
        await settlement_engine.change_plan(supplier_id, 9999)


@pytest.mark.asyncio
async def test_change_plan_without_subscription_is_immediate(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock(), with_subscription=False)
    basic = await settlement_engine.create_plan({"name": "Básico", "monthly_price": 29})

    result = await settlement_engine.change_plan(ids["supplier_id"], basic["id"])

    assert result["effective"] == "IMMEDIATE"
    assert result["planId"] == basic["id"]
    assert result["pendingPlanId"] is None


@pytest.mark.asyncio
async def test_check_overdue(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock())
    supplier_id = ids["supplier_id"]

    assert (await settlement_engine.check_overdue())["updated"] == 0

    clock.advance(days=31)
    result = await settlement_engine.check_overdue()
    assert result == {"updated": 1, "supplier_ids": [supplier_id]}

    async with session_maker() as session:
        supplier = await session.get(Supplier, supplier_id)
    assert supplier.financial_status == SupplierFinancialStatus.OVERDUE
    subscriptions = await _subscriptions(session_maker, supplier_id)
    assert subscriptions[0].status == SubscriptionStatus.VENCIDA

    # Pagar regulariza o fornecedor
    await fund_wallet(settlement_engine, supplier_id, "99.00")
    await settlement_engine.pay_subscription(supplier_id, "BALANCE")
    async with session_maker() as session:
        supplier = await session.get(Supplier, supplier_id)
    assert supplier.financial_status == SupplierFinancialStatus.ACTIVE


@pytest.mark.asyncio
async def test_update_billing_info(session_maker, clock, settlement_engine):
    ids = await create_supplier(session_maker, clock())

    with pytest.raises(InvalidEntry):
        await settlement_engine.update_billing_info(ids["supplier_id"], {"billing_email": "sem-arroba"})

    data = await settlement_engine.update_billing_info(ids["supplier_id"], {
        "billing_name": " Loja Exemplo LTDA ",
        "billing_doc": "12.345.678/0001-90",
        "billing_email": "financeiro@loja.com",
        "pix_key": "financeiro@loja.com",
    })
    assert data["billingName"] == "Loja Exemplo LTDA"
    assert data["pixKey"] == "financeiro@loja.com"
    assert data["billingAddress"] is None


@pytest.mark.asyncio
async def test_create_plan_validation(settlement_engine):
    plan = await settlement_engine.create_plan({
        "name": "Pro", "monthly_price": "149.90", "cycle_days": 30,
        "release_days": 0, "withdrawal_limit": 8, "min_withdrawal": "20"
    })
    assert plan["monthlyPrice"] == 149.9
    assert plan["releaseDays"] == 0
    assert plan["commissionPercent"] is None

    with pytest.raises(InvalidEntry):
        await settlement_engine.create_plan({"name": "Pro", "monthly_price": 10})
    with pytest.raises(InvalidEntry):
        await settlement_engine.create_plan({"name": "", "monthly_price": 10})
    with pytest.raises(InvalidEntry):
        await settlement_engine.create_plan({"name": "Caro", "commission_percent": 101})
    with pytest.raises(InvalidEntry):
        await settlement_engine.create_plan({"name": "Limite", "withdrawal_limit": 0})

    plans = await settlement_engine.list_plans()
    assert [p["name"] for p in plans] == ["Pro"]


@pytest.mark.asyncio
@pytest.mark.parametrize("field, value", [
    ("commission_percent", "abc"),
    ("commission_percent", "NaN"),
    ("cycle_days", "trinta"),
    ("cycle_days", 0),
    ("release_days", "sete"),
    ("withdrawal_limit", [4]),
    ("monthly_price", "grátis"),
    ("min_withdrawal", "cinquenta"),
])
async def test_create_plan_rejects_invalid_numeric_fields(settlement_engine, field, value):
    with pytest.raises(InvalidEntry):
        await settlement_engine.create_plan({"name": "Inválido", "monthly_price": 10, field: value})

    assert await settlement_engine.list_plans() == []
