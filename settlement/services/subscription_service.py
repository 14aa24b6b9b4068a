# D:\Settlement\settlement\services\subscription_service.py
"""
subscription_service.py

Módulo responsável pela cobrança das assinaturas de plano dos fornecedores.

Funcionalidades principais:
    - Pagamento da assinatura com saldo disponível ou cartão tokenizado
    - Troca de plano agendada para o próximo ciclo
    - Atualização dos dados de faturamento
    - Marcação de assinaturas vencidas (fornecedor inadimplente)
    - Catálogo de planos

Regras de Negócio:
    - BALANCE exige saldo disponível >= mensalidade e debita SUBSCRIPTION_PAYMENT
    - CARD exige token do provedor; recusa do gateway não altera nenhum estado;
      aprovação registra um ADJUSTMENT de crédito com origem CARD_GATEWAY e o
      SUBSCRIPTION_PAYMENT, sem afetar o saldo disponível
    - O próximo vencimento avança cycle_days a partir do vencimento atual (se futuro)
      ou de agora; a assinatura ATIVA anterior vira SUSPENSA e uma nova ATIVA é criada
    - Troca de plano com assinatura ativa só vale no próximo ciclo e nunca altera
      lançamentos já registrados
    - Assinaturas ATIVA com fim no passado viram VENCIDA e o fornecedor fica OVERDUE

Dependências:
    - SQLAlchemy para persistência
    - settlement.services.payment para cobrança com cartão
    - settlement.services.ledger_service e balance_service para o razão
"""

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.database import (
    Plan, Supplier, SupplierSubscription, SubscriptionStatus, SupplierFinancialStatus
)
from settlement.models.finance_models import AdjustmentSource, LedgerEntryType, PaymentMethod, PaymentTransaction
from settlement.services.audit_service import log_financial_event, record_admin_action
from settlement.services.balance_service import compute_balances, get_or_create_balance, apply_delta
from settlement.services.errors import (
    InvalidAmount, InsufficientBalance, PaymentDeclined, InvalidEntry, NotFound
)
from settlement.services.ledger_service import append_entry, parse_money, to_money
from settlement.services.payment.gateway_factory import normalize_gateway_name
from settlement.services.settings_service import (
    get_active_subscription, parse_decimal_field, parse_int_field, resolve_terms, DEFAULT_CYCLE_DAYS
)

logger = logging.getLogger(__name__)

BILLING_FIELDS = ("billing_name", "billing_doc", "billing_address", "billing_email")


async def _get_supplier(session: AsyncSession, supplier_id: int) -> Supplier:
    supplier = await session.get(Supplier, supplier_id)
    if not supplier:
        raise NotFound(f"Fornecedor {supplier_id} não encontrado")
    return supplier


async def _get_plan(session: AsyncSession, plan_id: int) -> Plan:
    plan = await session.get(Plan, plan_id)
    if not plan:
        raise NotFound(f"Plano {plan_id} não encontrado")
    return plan


async def _resolve_billing_plan(session: AsyncSession, supplier: Supplier) -> Plan:
    """Plano a cobrar: o agendado para o próximo ciclo, senão o atual."""
    plan_id = supplier.pending_plan_id or supplier.plan_id
    if plan_id is None:
        raise InvalidEntry("Fornecedor sem plano definido")
    return await _get_plan(session, plan_id)


async def pay_subscription(
    session: AsyncSession,
    supplier_id: int,
    method,
    now: datetime,
    gateway_factory,
    payment_token: Optional[str] = None,
    amount=None,
    gateway_name: Optional[str] = None
) -> Dict:
    """
    Paga o ciclo da assinatura do fornecedor (sem commit).

    Deve ser executado sob o lock do fornecedor.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor
        method: BALANCE ou CARD
        now (datetime): Instante do pagamento
        gateway_factory: Factory de gateways (PaymentGatewayFactory ou equivalente)
        payment_token (Optional[str]): Token do cartão (CARD)
        amount: Valor informado pelo cliente (deve coincidir com a mensalidade)
        gateway_name (Optional[str]): Gateway do cartão (padrão: stripe)

    Returns:
        Dict: subscription, next_billing_date, amount, method e ledger_entry_id

    Raises:
        InvalidEntry: Método desconhecido ou fornecedor sem plano
        InvalidAmount: Valor diferente da mensalidade
        InsufficientBalance: Saldo insuficiente (BALANCE)
        PaymentDeclined: Token ausente ou cobrança recusada (CARD)
    """
    try:
        method = PaymentMethod(method)
    except ValueError:
        raise InvalidEntry(f"Método de pagamento desconhecido: {method}")

    supplier = await _get_supplier(session, supplier_id)
    plan = await _resolve_billing_plan(session, supplier)
    price = to_money(plan.monthly_price)

    if amount is not None and parse_money(amount) != price:
        raise InvalidAmount(f"Valor informado difere da mensalidade do plano (R$ {price:.2f})")

    transaction = None
    if method == PaymentMethod.BALANCE:
        balances = await compute_balances(session, supplier_id)
        if balances["wallet_balance"] < price:
            raise InsufficientBalance(
                f"Saldo insuficiente para pagar a assinatura: disponível R$ {balances['wallet_balance']:.2f}"
            )
    else:
        if not payment_token:
            raise PaymentDeclined("Token de pagamento é obrigatório para cartão")
        gateway_name = normalize_gateway_name(gateway_name)
        try:
            gateway = gateway_factory.get_gateway(gateway_name)
        except ValueError as e:
            raise InvalidEntry(str(e))
        if price > 0:
            success, error, charge = await gateway.charge_token(
                session, price, payment_token,
                f"Assinatura {plan.name} - fornecedor #{supplier_id}",
                {"supplier_id": supplier_id, "plan_id": plan.id, "email": supplier.billing_email}
            )
            if not success:
                logger.warning("Cobrança de assinatura recusada (fornecedor %s): %s", supplier_id, error)
                raise PaymentDeclined(error or "Pagamento recusado")
            transaction = PaymentTransaction(
                supplier_id=supplier_id,
                gateway=gateway_name,
                amount=price,
                gateway_transaction_id=charge["gateway_transaction_id"],
                status="approved",
                payment_details=json.dumps({"plan_id": plan.id, "status": charge.get("status")}),
                created_at=now
            )
            session.add(transaction)

    entry_id = None
    if price > 0:
        balance = await get_or_create_balance(session, supplier_id, for_update=True)
        if method == PaymentMethod.CARD:
            await append_entry(
                session, supplier_id, LedgerEntryType.ADJUSTMENT, price,
                description=(
                    f"Recebimento via {gateway_name} ({transaction.gateway_transaction_id}) "
                    f"da assinatura {plan.name}"
                ),
                created_at=now,
                source=AdjustmentSource.CARD_GATEWAY
            )
        else:
            apply_delta(balance, wallet=-price)
        entry = await append_entry(
            session, supplier_id, LedgerEntryType.SUBSCRIPTION_PAYMENT, -price,
            description=f"Assinatura {plan.name} ({method.value})",
            created_at=now
        )
        entry_id = entry.id

    cycle_days = plan.cycle_days or DEFAULT_CYCLE_DAYS
    base = supplier.next_billing_date if supplier.next_billing_date and supplier.next_billing_date > now else now
    next_billing = base + timedelta(days=cycle_days)

    previous = await get_active_subscription(session, supplier_id)
    if previous:
        previous.status = SubscriptionStatus.SUSPENSA

    subscription = SupplierSubscription(
        supplier_id=supplier_id,
        plan_id=plan.id,
        status=SubscriptionStatus.ATIVA,
        start_date=now,
        end_date=next_billing,
        created_at=now
    )
    session.add(subscription)

    supplier.plan_id = plan.id
    supplier.pending_plan_id = None
    supplier.next_billing_date = next_billing
    supplier.financial_status = SupplierFinancialStatus.ACTIVE
    await session.flush()

    if transaction is not None:
        transaction.subscription_id = subscription.id
        await session.flush()

    log_financial_event(
        "SUBSCRIPTION_PAID", supplier_id,
        plan_id=plan.id, amount=price, method=method, next_billing_date=next_billing
    )
    return {
        "subscription": serialize_subscription(subscription),
        "nextBillingDate": next_billing.isoformat(),
        "amount": float(price),
        "method": method.value,
        "ledgerEntryId": entry_id,
    }


async def change_plan(session: AsyncSession, supplier_id: int, plan_id: int) -> Dict:
    """
    Troca o plano do fornecedor.

    Com assinatura ATIVA a troca é agendada para o próximo ciclo (aplicada no
    próximo pagamento); sem assinatura ativa é aplicada imediatamente.

    Returns:
        Dict: plan_id atual, pending_plan_id e effective ('NEXT_CYCLE' ou 'IMMEDIATE')
    """
    supplier = await _get_supplier(session, supplier_id)
    plan = await _get_plan(session, plan_id)

    active = await get_active_subscription(session, supplier_id)
    if active and active.plan_id != plan.id:
        supplier.pending_plan_id = plan.id
        effective = "NEXT_CYCLE"
    elif active:
        supplier.pending_plan_id = None
        effective = "UNCHANGED"
    else:
        supplier.plan_id = plan.id
        supplier.pending_plan_id = None
        effective = "IMMEDIATE"
    await session.flush()

    return {
        "supplierId": supplier.id,
        "planId": supplier.plan_id,
        "pendingPlanId": supplier.pending_plan_id,
        "effective": effective,
    }


async def update_billing_info(session: AsyncSession, supplier_id: int, data: Dict) -> Supplier:
    """
    Atualiza os dados de faturamento do fornecedor.

    Args:
        data (Dict): billing_name, billing_doc, billing_address, billing_email e pix_key

    Returns:
        Supplier: Fornecedor atualizado
    """
    supplier = await _get_supplier(session, supplier_id)
    email = data.get("billing_email")
    if email and "@" not in email:
        raise InvalidEntry("E-mail de faturamento inválido")

    for field in BILLING_FIELDS + ("pix_key",):
        if data.get(field) is not None:
            setattr(supplier, field, str(data[field]).strip())
    await session.flush()
    return supplier


async def check_overdue(session: AsyncSession, now: datetime) -> Dict:
    """
    Marca como VENCIDA as assinaturas ATIVA já encerradas e o fornecedor como OVERDUE.

    Returns:
        Dict: updated (quantidade) e supplier_ids
    """
    result = await session.execute(
        select(SupplierSubscription).where(
            and_(
                SupplierSubscription.status == SubscriptionStatus.ATIVA,
                SupplierSubscription.end_date < now
            )
        )
    )
    expired = result.scalars().all()

    supplier_ids = []
    for subscription in expired:
        subscription.status = SubscriptionStatus.VENCIDA
        supplier = await session.get(Supplier, subscription.supplier_id)
        if supplier and supplier.financial_status == SupplierFinancialStatus.ACTIVE:
            supplier.financial_status = SupplierFinancialStatus.OVERDUE
        supplier_ids.append(subscription.supplier_id)
    await session.flush()

    if supplier_ids:
        logger.info("Assinaturas vencidas: %s fornecedores marcados como OVERDUE", len(supplier_ids))
    return {"updated": len(supplier_ids), "supplier_ids": supplier_ids}


async def list_plans(session: AsyncSession) -> List[Plan]:
    result = await session.execute(select(Plan).order_by(Plan.monthly_price, Plan.id))
    return result.scalars().all()


async def create_plan(session: AsyncSession, data: Dict, admin: Optional[Dict] = None) -> Plan:
    """
    Cria um plano de assinatura.

    Args:
        data (Dict): name, monthly_price, cycle_days e sobrescritas opcionais
            (commission_percent, release_days, min_withdrawal, withdrawal_limit)

    Raises:
        InvalidEntry: Se algum campo for inválido ou o nome já existir
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise InvalidEntry("O nome do plano é obrigatório")
    existing = await session.execute(select(Plan).where(Plan.name == name))
    if existing.scalar_one_or_none():
        raise InvalidEntry(f"Plano '{name}' já existe")

    price = parse_money(data.get("monthly_price", 0))
    if price < 0:
        raise InvalidEntry("A mensalidade não pode ser negativa")
    cycle_days = parse_int_field(data, "cycle_days", 1) or DEFAULT_CYCLE_DAYS

    commission = parse_decimal_field(data, "commission_percent")
    if commission is not None and not (Decimal("0") <= commission <= Decimal("100")):
        raise InvalidEntry("commission_percent deve estar entre 0 e 100")
    min_withdrawal = data.get("min_withdrawal")
    if min_withdrawal is not None:
        min_withdrawal = parse_money(min_withdrawal)
        if min_withdrawal <= 0:
            raise InvalidEntry("min_withdrawal deve ser positivo")

    plan = Plan(
        name=name,
        monthly_price=price,
        cycle_days=cycle_days,
        commission_percent=commission,
        release_days=parse_int_field(data, "release_days", 0),
        min_withdrawal=min_withdrawal,
        withdrawal_limit=parse_int_field(data, "withdrawal_limit", 1),
    )
    session.add(plan)
    await session.flush()
    await record_admin_action(session, admin, "PLAN_CREATED", plan.id, details={"name": name, "price": price})
    return plan


def serialize_plan(plan: Plan) -> Dict:
    def as_float(value):
        return float(value) if value is not None else None

    return {
        "id": plan.id,
        "name": plan.name,
        "monthlyPrice": float(plan.monthly_price),
        "cycleDays": plan.cycle_days,
        "commissionPercent": as_float(plan.commission_percent),
        "releaseDays": plan.release_days,
        "minWithdrawal": as_float(plan.min_withdrawal),
        "withdrawalLimit": plan.withdrawal_limit,
    }


def serialize_subscription(subscription: Optional[SupplierSubscription]) -> Optional[Dict]:
    if subscription is None:
        return None
    return {
        "id": subscription.id,
        "planId": subscription.plan_id,
        "status": subscription.status.value,
        "startDate": subscription.start_date.isoformat() if subscription.start_date else None,
        "endDate": subscription.end_date.isoformat() if subscription.end_date else None,
    }


async def get_terms_summary(session: AsyncSession, supplier: Supplier) -> Dict:
    """Regras efetivas do fornecedor em formato serializável."""
    terms = await resolve_terms(session, supplier)
    return {
        "planId": terms["plan_id"],
        "commissionPercent": float(terms["commission_percent"]),
        "releaseDays": terms["release_days"],
        "minWithdrawal": float(terms["min_withdrawal"]),
        "withdrawalLimit": terms["withdrawal_limit"],
        "cycleDays": terms["cycle_days"],
        "monthlyPrice": float(terms["monthly_price"]),
    }
