# D:\Settlement\settlement\services\balance_service.py
"""
balance_service.py

Módulo responsável pelos saldos dos fornecedores: a reconstrução completa a partir
do razão e o saldo materializado mantido incrementalmente.

Funcionalidades principais:
    - compute_balances: reconstrução (replay) pura dos saldos a partir do razão
    - get_or_create_balance: obtenção do saldo materializado (com bloqueio de linha)
    - apply_delta: atualização incremental com checagem de não-negatividade
    - verify_balance: comparação entre o saldo materializado e o replay

Regras de Negócio:
    - Disponível = soma dos lançamentos COMPLETED + soma dos PAYOUT PENDING (negativos)
    - Pendente = soma dos SALE_REVENUE e SALE_COMMISSION ainda PENDING
    - Bloqueado = valor absoluto da soma dos PAYOUT PENDING
    - O saldo disponível nunca pode ficar negativo após uma transição

Dependências:
    - SQLAlchemy para consultas agregadas
    - settlement.services.ledger_service para normalização monetária
"""

from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import TIMEZONE, RECONCILIATION_EPSILON
from settlement.models.finance_models import (
    LedgerEntry, LedgerEntryType, LedgerEntryStatus, SupplierBalance, HELD_ENTRY_TYPES
)
from settlement.services.errors import InsufficientBalance
from settlement.services.ledger_service import to_money, ZERO


async def ledger_totals(session: AsyncSession, supplier_id: Optional[int] = None) -> Dict:
    """
    Soma os valores do razão agrupados por fornecedor, tipo e status.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (Optional[int]): Restringe a um fornecedor

    Returns:
        Dict: {supplier_id: {(LedgerEntryType, LedgerEntryStatus): Decimal}}
    """
    query = select(
        LedgerEntry.supplier_id, LedgerEntry.type, LedgerEntry.status, func.sum(LedgerEntry.amount)
    ).group_by(LedgerEntry.supplier_id, LedgerEntry.type, LedgerEntry.status)
    if supplier_id is not None:
        query = query.where(LedgerEntry.supplier_id == supplier_id)

    totals: Dict = {}
    for row_supplier, entry_type, status, amount in (await session.execute(query)).all():
        totals.setdefault(row_supplier, {})[(entry_type, status)] = to_money(amount)
    return totals


def replay_from_totals(totals: Dict) -> Dict[str, Decimal]:
    """
    Aplica as regras de saldo sobre as somas por (tipo, status) de um fornecedor.

    Args:
        totals (Dict): {(LedgerEntryType, LedgerEntryStatus): Decimal}

    Returns:
        Dict[str, Decimal]: wallet_balance, pending_balance e blocked_balance
    """
    completed = ZERO
    reserved = ZERO
    pending = ZERO
    for (entry_type, status), amount in totals.items():
        if status == LedgerEntryStatus.COMPLETED:
            completed += amount
        elif status == LedgerEntryStatus.PENDING and entry_type == LedgerEntryType.PAYOUT:
            reserved += amount
        elif status == LedgerEntryStatus.PENDING and entry_type in HELD_ENTRY_TYPES:
            pending += amount

    return {
        "wallet_balance": to_money(completed + reserved),
        "pending_balance": to_money(pending),
        "blocked_balance": to_money(-reserved),
    }


async def compute_balances(session: AsyncSession, supplier_id: int) -> Dict[str, Decimal]:
    """
    Reconstrói os saldos do fornecedor a partir do razão completo.

    Leitura pura: não altera nenhum registro.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor

    Returns:
        Dict[str, Decimal]: wallet_balance, pending_balance e blocked_balance
    """
    totals = await ledger_totals(session, supplier_id)
    return replay_from_totals(totals.get(supplier_id, {}))


async def get_or_create_balance(
    session: AsyncSession,
    supplier_id: int,
    for_update: bool = False
) -> SupplierBalance:
    """
    Obtém ou cria o saldo materializado de um fornecedor.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor
        for_update (bool): Bloqueia a linha (SELECT ... FOR UPDATE) quando suportado

    Returns:
        SupplierBalance: Registro de saldo do fornecedor
    """
    query = select(SupplierBalance).where(SupplierBalance.supplier_id == supplier_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    balance = result.scalar_one_or_none()

    if not balance:
        balance = SupplierBalance(
            supplier_id=supplier_id,
            wallet_balance=ZERO,
            pending_balance=ZERO,
            blocked_balance=ZERO,
            last_updated=TIMEZONE()
        )
        session.add(balance)
        await session.flush()

    return balance


def apply_delta(
    balance: SupplierBalance,
    wallet=ZERO,
    pending=ZERO,
    blocked=ZERO
) -> SupplierBalance:
    """
    Aplica uma variação ao saldo materializado.

    Args:
        balance (SupplierBalance): Saldo a alterar
        wallet: Variação do saldo disponível
        pending: Variação do saldo pendente
        blocked: Variação do saldo bloqueado

    Returns:
        SupplierBalance: O próprio saldo atualizado

    Raises:
        InsufficientBalance: Se o saldo disponível ou bloqueado ficaria negativo
    """
    new_wallet = to_money(to_money(balance.wallet_balance) + to_money(wallet))
    new_blocked = to_money(to_money(balance.blocked_balance) + to_money(blocked))
    new_pending = to_money(to_money(balance.pending_balance) + to_money(pending))

    if new_wallet < 0:
        raise InsufficientBalance(
            f"Saldo insuficiente: disponível R$ {to_money(balance.wallet_balance):.2f}"
        )
    if new_blocked < 0:
        raise InsufficientBalance("Saldo bloqueado insuficiente para a operação")

    balance.wallet_balance = new_wallet
    balance.pending_balance = new_pending
    balance.blocked_balance = new_blocked
    balance.last_updated = TIMEZONE()
    return balance


def balance_to_dict(balance: SupplierBalance) -> Dict[str, Decimal]:
    return {
        "wallet_balance": to_money(balance.wallet_balance),
        "pending_balance": to_money(balance.pending_balance),
        "blocked_balance": to_money(balance.blocked_balance),
    }


async def verify_balance(session: AsyncSession, supplier_id: int) -> Dict:
    """
    Compara o saldo materializado com a reconstrução completa do razão.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor

    Returns:
        Dict: materialized, replay, diff por campo e consistent (bool)
    """
    balance = await get_or_create_balance(session, supplier_id)
    materialized = balance_to_dict(balance)
    replay = await compute_balances(session, supplier_id)

    diff = {key: to_money(materialized[key] - replay[key]) for key in replay}
    consistent = all(abs(value) <= RECONCILIATION_EPSILON for value in diff.values())

    return {
        "supplier_id": supplier_id,
        "materialized": materialized,
        "replay": replay,
        "diff": diff,
        "consistent": consistent,
    }
