# D:\Settlement\settlement\services\sale_service.py
"""
sale_service.py

Módulo responsável pelos eventos de venda que alimentam o razão dos fornecedores.

Funcionalidades principais:
    - Registro de venda concluída (receita bruta e comissão retidas até D+N)
    - Estorno de venda (antes ou depois da liberação)
    - Ajuste manual de saldo por administrador

Regras de Negócio:
    - Comissão = valor bruto x percentual do plano ativo (ou padrão global),
      arredondada para centavos
    - Receita (+bruto) e comissão (-comissão) nascem PENDING com a mesma data de liberação
    - O registro é idempotente por pedido: repetir o mesmo pedido não duplica lançamentos
    - Estorno de venda retida rejeita os lançamentos; estorno de venda liberada gera
      um ADJUSTMENT negativo e exige saldo disponível
    - Ajustes manuais de débito não podem deixar o saldo disponível negativo

Dependências:
    - SQLAlchemy para persistência
    - settlement.services.ledger_service, balance_service e release_scheduler
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.database import Supplier
from settlement.models.finance_models import (
    AdjustmentSource, LedgerEntry, LedgerEntryType, LedgerEntryStatus, HELD_ENTRY_TYPES
)
from settlement.services.audit_service import log_financial_event, record_admin_action
from settlement.services.balance_service import get_or_create_balance, apply_delta
from settlement.services.errors import InvalidAmount, InvalidEntry, NotFound
from settlement.services.ledger_service import append_entry, parse_money, to_money, ZERO
from settlement.services.release_scheduler import compute_release_date
from settlement.services.settings_service import resolve_terms


async def _sale_entries(session: AsyncSession, order_id: str, supplier_id: Optional[int] = None):
    conditions = [LedgerEntry.order_id == str(order_id)]
    if supplier_id is not None:
        conditions.append(LedgerEntry.supplier_id == supplier_id)
    result = await session.execute(
        select(LedgerEntry).where(and_(*conditions)).order_by(LedgerEntry.id)
    )
    return result.scalars().all()


def _sale_summary(entries, created: bool) -> Dict:
    revenue = next((e for e in entries if e.type == LedgerEntryType.SALE_REVENUE), None)
    commission = next((e for e in entries if e.type == LedgerEntryType.SALE_COMMISSION), None)
    gross = to_money(revenue.amount) if revenue else ZERO
    commission_amount = to_money(-commission.amount) if commission else ZERO
    return {
        "supplier_id": revenue.supplier_id if revenue else None,
        "order_id": revenue.order_id if revenue else None,
        "gross_amount": gross,
        "commission_amount": commission_amount,
        "net_amount": to_money(gross - commission_amount),
        "release_date": revenue.release_date if revenue else None,
        "revenue_entry_id": revenue.id if revenue else None,
        "commission_entry_id": commission.id if commission else None,
        "created": created,
    }


async def find_order_supplier(session: AsyncSession, order_id: str) -> int:
    """
    Retorna o fornecedor dono da venda de um pedido.

    Raises:
        NotFound: Se não existir venda registrada para o pedido
    """
    result = await session.execute(
        select(LedgerEntry.supplier_id).where(
            and_(
                LedgerEntry.order_id == str(order_id),
                LedgerEntry.type == LedgerEntryType.SALE_REVENUE
            )
        ).limit(1)
    )
    supplier_id = result.scalar_one_or_none()
    if supplier_id is None:
        raise NotFound(f"Venda do pedido {order_id} não encontrada")
    return supplier_id


async def record_sale(
    session: AsyncSession,
    supplier_id: int,
    order_id: str,
    gross_amount,
    completed_at: datetime
) -> Dict:
    """
    Registra a conclusão de um pedido no razão do fornecedor.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor
        order_id (str): ID do pedido (chave de idempotência)
        gross_amount: Valor bruto da venda
        completed_at (datetime): Data de conclusão do pedido

    Returns:
        Dict: Resumo da venda (bruto, comissão, líquido, data de liberação, created)

    Raises:
        InvalidAmount: Se o valor bruto não for positivo
        NotFound: Se o fornecedor não existir
    """
    gross = parse_money(gross_amount)
    if gross <= 0:
        raise InvalidAmount("O valor da venda deve ser positivo")
    if not order_id:
        raise InvalidEntry("O pedido é obrigatório")

    supplier = await session.get(Supplier, supplier_id)
    if not supplier:
        raise NotFound(f"Fornecedor {supplier_id} não encontrado")

    existing = await _sale_entries(session, order_id, supplier_id)
    if any(e.type == LedgerEntryType.SALE_REVENUE for e in existing):
        return _sale_summary(existing, created=False)

    terms = await resolve_terms(session, supplier)
    commission = to_money(gross * terms["commission_percent"] / Decimal("100"))
    release_date = compute_release_date(terms["release_days"], completed_at)

    entries = [
        await append_entry(
            session, supplier_id, LedgerEntryType.SALE_REVENUE, gross,
            status=LedgerEntryStatus.PENDING,
            release_date=release_date,
            order_id=order_id,
            description=f"Venda do pedido #{order_id}",
            created_at=completed_at
        )
    ]
    if commission > 0:
        entries.append(
            await append_entry(
                session, supplier_id, LedgerEntryType.SALE_COMMISSION, -commission,
                status=LedgerEntryStatus.PENDING,
                release_date=release_date,
                order_id=order_id,
                description=f"Comissão ({terms['commission_percent']}%) do pedido #{order_id}",
                created_at=completed_at
            )
        )

    balance = await get_or_create_balance(session, supplier_id, for_update=True)
    apply_delta(balance, pending=gross - commission)
    await session.flush()

    summary = _sale_summary(entries, created=True)
    log_financial_event(
        "SALE_RECORDED", supplier_id,
        order_id=order_id, gross=gross, commission=commission, release_date=release_date
    )
    return summary


async def refund_sale(
    session: AsyncSession,
    order_id: str,
    reason: Optional[str],
    now: datetime
) -> Dict:
    """
    Estorna a venda de um pedido.

    Venda ainda retida: os lançamentos PENDING passam a REJECTED e saem do saldo
    pendente. Venda já liberada: é incluído um ADJUSTMENT negativo do valor líquido,
    debitado do saldo disponível. Repetir o estorno não gera novo efeito.

    Args:
        session (AsyncSession): Sessão do banco de dados
        order_id (str): ID do pedido
        reason (Optional[str]): Motivo do estorno
        now (datetime): Instante do estorno

    Returns:
        Dict: supplier_id, order_id, pending_reversed, wallet_debited, already_refunded

    Raises:
        NotFound: Se não houver venda para o pedido
        InsufficientBalance: Se o saldo disponível não cobrir o estorno
    """
    supplier_id = await find_order_supplier(session, order_id)
    entries = await _sale_entries(session, order_id, supplier_id)

    already_refunded = any(
        e.type == LedgerEntryType.ADJUSTMENT
        or (e.type in HELD_ENTRY_TYPES and e.status == LedgerEntryStatus.REJECTED)
        for e in entries
    )
    if already_refunded:
        return {
            "supplier_id": supplier_id,
            "order_id": str(order_id),
            "pending_reversed": ZERO,
            "wallet_debited": ZERO,
            "already_refunded": True,
        }

    held = [e for e in entries if e.type in HELD_ENTRY_TYPES]
    pending_part = to_money(sum((to_money(e.amount) for e in held if e.status == LedgerEntryStatus.PENDING), ZERO))
    released_part = to_money(sum((to_money(e.amount) for e in held if e.status == LedgerEntryStatus.COMPLETED), ZERO))

    balance = await get_or_create_balance(session, supplier_id, for_update=True)
    apply_delta(balance, wallet=-released_part, pending=-pending_part)

    for entry in held:
        if entry.status == LedgerEntryStatus.PENDING:
            entry.status = LedgerEntryStatus.REJECTED
            entry.updated_at = now

    if released_part != 0:
        description = f"Estorno do pedido #{order_id}"
        if reason:
            description += f" - {reason}"
        await append_entry(
            session, supplier_id, LedgerEntryType.ADJUSTMENT, -released_part,
            order_id=order_id,
            description=description[:255],
            created_at=now,
            source=AdjustmentSource.REFUND
        )

    await session.flush()
    log_financial_event(
        "REFUND_PROCESSED", supplier_id,
        order_id=order_id, pending_reversed=pending_part, wallet_debited=released_part, reason=reason
    )
    return {
        "supplier_id": supplier_id,
        "order_id": str(order_id),
        "pending_reversed": pending_part,
        "wallet_debited": released_part,
        "already_refunded": False,
    }


async def post_adjustment(
    session: AsyncSession,
    supplier_id: int,
    amount,
    description: str,
    admin: Optional[Dict],
    now: datetime
) -> LedgerEntry:
    """
    Inclui um ajuste manual (crédito ou débito) no saldo disponível.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor
        amount: Valor com sinal
        description (str): Justificativa do ajuste
        admin (Optional[Dict]): Administrador responsável
        now (datetime): Instante do ajuste

    Returns:
        LedgerEntry: Lançamento criado

    Raises:
        InvalidEntry: Se o valor for zero ou faltar descrição
        InsufficientBalance: Se o débito exceder o saldo disponível
    """
    value = parse_money(amount)
    if not description:
        raise InvalidEntry("A descrição do ajuste é obrigatória")

    entry = await append_entry(
        session, supplier_id, LedgerEntryType.ADJUSTMENT, value,
        description=description[:255],
        created_at=now
    )
    balance = await get_or_create_balance(session, supplier_id, for_update=True)
    apply_delta(balance, wallet=value)
    await session.flush()

    await record_admin_action(
        session, admin, "ADJUSTMENT_POSTED", supplier_id,
        details={"entry_id": entry.id, "amount": value}, reason=description
    )
    log_financial_event("ADJUSTMENT_POSTED", supplier_id, entry_id=entry.id, amount=value)
    return entry
