# D:\Settlement\settlement\services\reconciliation_service.py
"""
reconciliation_service.py

Módulo responsável pela camada administrativa de conciliação e BI financeiro.

Funcionalidades principais:
    - Visão geral (GMV, comissão, receita líquida, assinaturas, saldos, saques)
    - Receita diária por período (7d, 30d, 90d)
    - Conciliação dos saldos materializados contra o razão
    - Detecção de anomalias (divergências, saldos negativos, saques parados,
      fornecedores suspensos com saldo e inconsistências de papel)
    - Indicadores por fornecedor

Regras de Negócio:
    - GMV é a soma bruta de SALE_REVENUE não estornada; receita líquida = GMV - comissão
    - Disponível + pendente + bloqueado deve igualar o líquido do razão
      (vendas retidas ou liberadas, pagamentos, assinaturas e ajustes) dentro da tolerância
    - Anomalias são apenas reportadas e registradas em log, nunca corrigidas automaticamente

Dependências:
    - SQLAlchemy para consultas agregadas
    - settlement.services.balance_service para o replay dos saldos
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import RECONCILIATION_EPSILON
from settlement.models.database import (
    Account, AccountType, Plan, Role, Supplier, SupplierFinancialStatus, User
)
from settlement.models.finance_models import (
    LedgerEntry, LedgerEntryType, LedgerEntryStatus, SupplierBalance,
    WithdrawalRequest, WithdrawalStatus, HELD_ENTRY_TYPES
)
from settlement.services.balance_service import ledger_totals, replay_from_totals, balance_to_dict
from settlement.services.errors import InvalidEntry
from settlement.services.ledger_service import to_money, ZERO
from settlement.services.settings_service import get_settings

logger = logging.getLogger(__name__)

PERIODS = {"7d": 7, "30d": 30, "90d": 90}

LIVE_STATUSES = (LedgerEntryStatus.PENDING, LedgerEntryStatus.COMPLETED)


def _money(value: Decimal) -> float:
    return float(to_money(value))


def ledger_net_from_totals(totals: Dict) -> Decimal:
    """
    Líquido do razão que deve estar representado nos saldos do fornecedor.

    Vendas e comissões contam retidas ou liberadas; pagamentos, assinaturas e
    ajustes contam apenas quando COMPLETED. Reservas de saque pendentes não entram,
    pois o valor reservado continua sob custódia (bloqueado).
    """
    net = ZERO
    for (entry_type, status), amount in totals.items():
        if entry_type in HELD_ENTRY_TYPES and status in LIVE_STATUSES:
            net += amount
        elif entry_type not in HELD_ENTRY_TYPES and status == LedgerEntryStatus.COMPLETED:
            net += amount
    return to_money(net)


async def _sum_entries(session: AsyncSession, conditions) -> Decimal:
    result = await session.execute(select(func.sum(LedgerEntry.amount)).where(and_(*conditions)))
    return to_money(result.scalar())


def _range_conditions(start: Optional[datetime], end: Optional[datetime], supplier_id: Optional[int]):
    conditions = []
    if start:
        conditions.append(LedgerEntry.created_at >= start)
    if end:
        conditions.append(LedgerEntry.created_at <= end)
    if supplier_id is not None:
        conditions.append(LedgerEntry.supplier_id == supplier_id)
    return conditions


async def daily_revenue(
    session: AsyncSession,
    now: datetime,
    period: str = "30d",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    supplier_id: Optional[int] = None
) -> List[Dict]:
    """
    Série diária de GMV, comissão e receita líquida.

    Args:
        session (AsyncSession): Sessão do banco de dados
        now (datetime): Instante de referência
        period (str): 7d, 30d ou 90d (ignorado se start for informado)
        start / end (Optional[datetime]): Intervalo explícito
        supplier_id (Optional[int]): Filtro por fornecedor

    Returns:
        List[Dict]: Um item por dia (date, gmv, commission, netRevenue, orders)

    Raises:
        InvalidEntry: Período desconhecido
    """
    if start is None:
        if period not in PERIODS:
            raise InvalidEntry(f"Período inválido: {period}. Use 7d, 30d ou 90d")
        start = (now - timedelta(days=PERIODS[period] - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
    end = end or now

    conditions = _range_conditions(start, end, supplier_id) + [
        LedgerEntry.type.in_(HELD_ENTRY_TYPES),
        LedgerEntry.status != LedgerEntryStatus.REJECTED,
    ]
    result = await session.execute(
        select(LedgerEntry.created_at, LedgerEntry.type, LedgerEntry.amount).where(and_(*conditions))
    )

    days: Dict = {}
    day = start.date()
    while day <= end.date():
        days[day] = {"gmv": ZERO, "commission": ZERO, "orders": 0}
        day += timedelta(days=1)

    for created_at, entry_type, amount in result.all():
        bucket = days.setdefault(created_at.date(), {"gmv": ZERO, "commission": ZERO, "orders": 0})
        if entry_type == LedgerEntryType.SALE_REVENUE:
            bucket["gmv"] += to_money(amount)
            bucket["orders"] += 1
        else:
            bucket["commission"] += -to_money(amount)

    return [
        {
            "date": day.isoformat(),
            "gmv": _money(values["gmv"]),
            "commission": _money(values["commission"]),
            "netRevenue": _money(values["gmv"] - values["commission"]),
            "orders": values["orders"],
        }
        for day, values in sorted(days.items())
    ]


async def overview(
    session: AsyncSession,
    now: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    supplier_id: Optional[int] = None
) -> Dict:
    """
    Visão geral financeira do período.

    Args:
        session (AsyncSession): Sessão do banco de dados
        now (datetime): Instante de referência
        start / end (Optional[datetime]): Período (padrão: últimos 30 dias)
        supplier_id (Optional[int]): Filtro por fornecedor

    Returns:
        Dict: gmv, commission, netRevenue, subscriptions, platformRevenue,
            pendingBalance, availableBalance, blockedBalance, payouts e chart
    """
    end = end or now
    start = start or (end - timedelta(days=30))
    base = _range_conditions(start, end, supplier_id)

    gmv = await _sum_entries(session, base + [
        LedgerEntry.type == LedgerEntryType.SALE_REVENUE,
        LedgerEntry.status != LedgerEntryStatus.REJECTED,
    ])
    commission = -await _sum_entries(session, base + [
        LedgerEntry.type == LedgerEntryType.SALE_COMMISSION,
        LedgerEntry.status != LedgerEntryStatus.REJECTED,
    ])
    subscriptions = -await _sum_entries(session, base + [
        LedgerEntry.type == LedgerEntryType.SUBSCRIPTION_PAYMENT,
        LedgerEntry.status == LedgerEntryStatus.COMPLETED,
    ])
    paid_out = -await _sum_entries(session, base + [
        LedgerEntry.type == LedgerEntryType.PAYOUT,
        LedgerEntry.status == LedgerEntryStatus.COMPLETED,
    ])

    balance_query = select(
        func.sum(SupplierBalance.wallet_balance),
        func.sum(SupplierBalance.pending_balance),
        func.sum(SupplierBalance.blocked_balance),
    )
    if supplier_id is not None:
        balance_query = balance_query.where(SupplierBalance.supplier_id == supplier_id)
    wallet, pending, blocked = (await session.execute(balance_query)).one()

    pending_query = select(func.count(WithdrawalRequest.id), func.sum(WithdrawalRequest.amount)).where(
        WithdrawalRequest.status == WithdrawalStatus.PENDING
    )
    if supplier_id is not None:
        pending_query = pending_query.where(WithdrawalRequest.supplier_id == supplier_id)
    pending_count, pending_amount = (await session.execute(pending_query)).one()

    return {
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "supplierId": supplier_id,
        "gmv": _money(gmv),
        "commission": _money(commission),
        "netRevenue": _money(gmv - commission),
        "subscriptions": _money(subscriptions),
        "platformRevenue": _money(commission + subscriptions),
        "availableBalance": _money(to_money(wallet)),
        "pendingBalance": _money(to_money(pending)),
        "blockedBalance": _money(to_money(blocked)),
        "payouts": {
            "paidTotal": _money(paid_out),
            "pendingCount": pending_count or 0,
            "pendingAmount": _money(to_money(pending_amount)),
        },
        "chart": await daily_revenue(session, now, start=start, end=end, supplier_id=supplier_id),
    }


async def reconciliation(
    session: AsyncSession,
    supplier_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> Dict:
    """
    Concilia os saldos materializados com o razão.

    Para cada fornecedor compara (1) o saldo materializado com o replay do razão e
    (2) disponível + pendente + bloqueado com o líquido do razão. Também resume a
    movimentação do período por tipo de lançamento.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (Optional[int]): Restringe a um fornecedor
        start / end (Optional[datetime]): Período da movimentação resumida

    Returns:
        Dict: suppliers (lista), totals, periodActivity, mismatches e balanced
    """
    supplier_query = select(Supplier).order_by(Supplier.id)
    if supplier_id is not None:
        supplier_query = supplier_query.where(Supplier.id == supplier_id)
    suppliers = (await session.execute(supplier_query)).scalars().all()

    totals_by_supplier = await ledger_totals(session, supplier_id)
    balances = {
        row.supplier_id: row
        for row in (await session.execute(select(SupplierBalance))).scalars().all()
    }

    rows = []
    held_total = ZERO
    ledger_total = ZERO
    mismatches = 0
    for supplier in suppliers:
        totals = totals_by_supplier.get(supplier.id, {})
        replay = replay_from_totals(totals)
        balance = balances.get(supplier.id)
        materialized = balance_to_dict(balance) if balance else {
            "wallet_balance": ZERO, "pending_balance": ZERO, "blocked_balance": ZERO
        }

        held = to_money(sum(materialized.values(), ZERO))
        ledger_net = ledger_net_from_totals(totals)
        difference = to_money(held - ledger_net)
        drift = {key: to_money(materialized[key] - replay[key]) for key in replay}

        consistent = abs(difference) <= RECONCILIATION_EPSILON and all(
            abs(value) <= RECONCILIATION_EPSILON for value in drift.values()
        )
        if not consistent:
            mismatches += 1

        held_total += held
        ledger_total += ledger_net
        rows.append({
            "supplierId": supplier.id,
            "supplierName": supplier.name,
            "walletBalance": _money(materialized["wallet_balance"]),
            "pendingBalance": _money(materialized["pending_balance"]),
            "blockedBalance": _money(materialized["blocked_balance"]),
            "replay": {key: _money(value) for key, value in replay.items()},
            "heldTotal": _money(held),
            "ledgerNet": _money(ledger_net),
            "difference": _money(difference),
            "drift": {key: _money(value) for key, value in drift.items()},
            "consistent": consistent,
        })

    activity_query = select(
        LedgerEntry.type, LedgerEntry.source, LedgerEntry.status,
        func.sum(LedgerEntry.amount), func.count(LedgerEntry.id)
    )
    conditions = _range_conditions(start, end, supplier_id)
    if conditions:
        activity_query = activity_query.where(and_(*conditions))
    # Ajustes saem separados por origem (administrativo, estorno, gateway)
    activity_query = activity_query.group_by(LedgerEntry.type, LedgerEntry.source, LedgerEntry.status)
    activity = [
        {
            "type": entry_type.value,
            "source": source.value if source else None,
            "status": status.value,
            "amount": _money(to_money(amount)),
            "count": count,
        }
        for entry_type, source, status, amount, count in (await session.execute(activity_query)).all()
    ]

    global_difference = to_money(held_total - ledger_total)
    return {
        "suppliers": rows,
        "totals": {
            "heldTotal": _money(held_total),
            "ledgerNet": _money(ledger_total),
            "difference": _money(global_difference),
        },
        "periodActivity": activity,
        "mismatches": mismatches,
        "balanced": mismatches == 0 and abs(global_difference) <= RECONCILIATION_EPSILON,
    }


async def anomalies(session: AsyncSession, now: datetime) -> List[Dict]:
    """
    Varredura de auditoria que lista anomalias financeiras e de permissão.

    Nenhuma anomalia é corrigida: cada uma é registrada em log (WARNING) e devolvida
    para revisão manual.

    Args:
        session (AsyncSession): Sessão do banco de dados
        now (datetime): Instante de referência

    Returns:
        List[Dict]: type, severity, message e identificadores relacionados
    """
    found: List[Dict] = []
    report = await reconciliation(session)

    for row in report["suppliers"]:
        if abs(Decimal(str(row["difference"]))) > RECONCILIATION_EPSILON:
            found.append({
                "type": "RECONCILIATION_MISMATCH",
                "severity": "HIGH",
                "supplierId": row["supplierId"],
                "message": f"Saldos do fornecedor {row['supplierName']} divergem do razão em R$ {row['difference']:.2f}",
                "details": {"heldTotal": row["heldTotal"], "ledgerNet": row["ledgerNet"]},
            })
        if any(abs(Decimal(str(value))) > RECONCILIATION_EPSILON for value in row["drift"].values()):
            found.append({
                "type": "BALANCE_DRIFT",
                "severity": "HIGH",
                "supplierId": row["supplierId"],
                "message": f"Saldo materializado do fornecedor {row['supplierName']} difere do replay do razão",
                "details": row["drift"],
            })
        values = [row["walletBalance"], row["pendingBalance"], row["blockedBalance"]] + list(row["replay"].values())
        if any(value < 0 for value in values):
            found.append({
                "type": "NEGATIVE_BALANCE",
                "severity": "CRITICAL",
                "supplierId": row["supplierId"],
                "message": f"Saldo negativo detectado para o fornecedor {row['supplierName']}",
                "details": {"materialized": values[:3], "replay": row["replay"]},
            })

    settings = await get_settings(session)
    sla_limit = now - timedelta(days=settings.withdrawal_sla_days)
    stale = await session.execute(
        select(WithdrawalRequest).where(
            and_(
                WithdrawalRequest.status == WithdrawalStatus.PENDING,
                WithdrawalRequest.requested_at < sla_limit
            )
        ).order_by(WithdrawalRequest.requested_at)
    )
    for request in stale.scalars().all():
        found.append({
            "type": "STALE_WITHDRAWAL",
            "severity": "MEDIUM",
            "supplierId": request.supplier_id,
            "withdrawalId": request.id,
            "message": f"Saque #{request.id} pendente há mais de {settings.withdrawal_sla_days} dias",
            "details": {"amount": float(request.amount), "requestedAt": request.requested_at.isoformat()},
        })

    suspended = await session.execute(
        select(Supplier, SupplierBalance)
        .join(SupplierBalance, SupplierBalance.supplier_id == Supplier.id)
        .where(
            and_(
                Supplier.financial_status == SupplierFinancialStatus.SUSPENDED,
                SupplierBalance.wallet_balance > 0
            )
        )
    )
    for supplier, balance in suspended.all():
        found.append({
            "type": "SUSPENDED_WITH_BALANCE",
            "severity": "LOW",
            "supplierId": supplier.id,
            "message": f"Fornecedor suspenso {supplier.name} possui saldo disponível",
            "details": {"walletBalance": float(balance.wallet_balance)},
        })

    rbac = await session.execute(
        select(User, Account)
        .join(Account, Account.id == User.account_id)
        .where(
            and_(
                User.role == Role.ACCOUNT_ADMIN,
                Account.type == AccountType.INDIVIDUAL
            )
        )
    )
    for user, account in rbac.all():
        found.append({
            "type": "RBAC_INDIVIDUAL_ACCOUNT_ADMIN",
            "severity": "MEDIUM",
            "userId": user.id,
            "accountId": account.id,
            "message": f"Usuário {user.email} é ACCOUNT_ADMIN em uma conta INDIVIDUAL",
            "details": {"accountName": account.name},
        })

    for anomaly in found:
        logger.warning("Anomalia %s: %s", anomaly["type"], anomaly["message"])
    return found


async def supplier_kpis(
    session: AsyncSession,
    supplier_id: Optional[int] = None,
    search: Optional[str] = None,
    status: Optional[str] = None
) -> List[Dict]:
    """
    Indicadores financeiros por fornecedor.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (Optional[int]): Filtro por fornecedor
        search (Optional[str]): Busca por nome
        status (Optional[str]): Filtro por situação financeira

    Returns:
        List[Dict]: GMV, comissão, pedidos, saques, saldos e plano de cada fornecedor
    """
    query = select(Supplier, Plan.name).outerjoin(Plan, Plan.id == Supplier.plan_id).order_by(Supplier.name)
    if supplier_id is not None:
        query = query.where(Supplier.id == supplier_id)
    if search:
        query = query.where(Supplier.name.ilike(f"%{search}%"))
    if status:
        try:
            query = query.where(Supplier.financial_status == SupplierFinancialStatus(status.upper()))
        except ValueError:
            raise InvalidEntry(f"Situação financeira desconhecida: {status}")
    suppliers = (await session.execute(query)).all()

    sales = await session.execute(
        select(
            LedgerEntry.supplier_id,
            LedgerEntry.type,
            func.sum(LedgerEntry.amount),
            func.count(LedgerEntry.id),
            func.max(LedgerEntry.created_at),
        )
        .where(
            and_(
                LedgerEntry.type.in_(HELD_ENTRY_TYPES + (LedgerEntryType.PAYOUT,)),
                or_(
                    LedgerEntry.status == LedgerEntryStatus.COMPLETED,
                    and_(LedgerEntry.status == LedgerEntryStatus.PENDING, LedgerEntry.type.in_(HELD_ENTRY_TYPES))
                )
            )
        )
        .group_by(LedgerEntry.supplier_id, LedgerEntry.type)
    )
    stats: Dict = {}
    for row_supplier, entry_type, amount, count, last in sales.all():
        stats.setdefault(row_supplier, {})[entry_type] = (to_money(amount), count, last)

    balances = {
        row.supplier_id: row
        for row in (await session.execute(select(SupplierBalance))).scalars().all()
    }

    result = []
    for supplier, plan_name in suppliers:
        supplier_stats = stats.get(supplier.id, {})
        gmv, orders, last_sale = supplier_stats.get(LedgerEntryType.SALE_REVENUE, (ZERO, 0, None))
        commission, _, _ = supplier_stats.get(LedgerEntryType.SALE_COMMISSION, (ZERO, 0, None))
        paid_out, payouts, _ = supplier_stats.get(LedgerEntryType.PAYOUT, (ZERO, 0, None))
        balance = balances.get(supplier.id)
        result.append({
            "supplierId": supplier.id,
            "name": supplier.name,
            "financialStatus": supplier.financial_status.value,
            "plan": plan_name,
            "gmv": _money(gmv),
            "commission": _money(-commission),
            "netRevenue": _money(gmv + commission),
            "orders": orders,
            "averageTicket": _money(gmv / orders) if orders else 0.0,
            "paidOut": _money(-paid_out),
            "payouts": payouts,
            "walletBalance": _money(balance.wallet_balance) if balance else 0.0,
            "pendingBalance": _money(balance.pending_balance) if balance else 0.0,
            "blockedBalance": _money(balance.blocked_balance) if balance else 0.0,
            "lastSaleAt": last_sale.isoformat() if last_sale else None,
            "nextBillingDate": supplier.next_billing_date.isoformat() if supplier.next_billing_date else None,
        })
    return result
