# D:\Settlement\settlement\services\release_scheduler.py
"""
release_scheduler.py

Módulo responsável pela retenção (D+N) e liberação dos saldos de venda.

Funcionalidades principais:
    - Cálculo da data de liberação no momento da venda
    - Liberação dos lançamentos vencidos de um fornecedor
    - Varredura periódica em lotes, com limite de tempo por execução

Regras de Negócio:
    - Data de liberação = data de conclusão do pedido + dias de retenção do plano
      (ou o padrão global)
    - Lançamentos PENDING de venda com data de liberação <= agora passam a COMPLETED,
      movendo o valor do saldo pendente para o disponível
    - A liberação é idempotente: lançamentos já liberados são ignorados
    - Cada fornecedor é liberado sob o seu lock, de forma que uma liberação é vista
      por completo ou não é vista por uma checagem de saldo concorrente

Dependências:
    - SQLAlchemy para consultas e atualização dos lançamentos
    - settlement.services.balance_service para o saldo materializado
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.finance_models import LedgerEntry, LedgerEntryStatus, HELD_ENTRY_TYPES
from settlement.services.audit_service import log_financial_event
from settlement.services.balance_service import get_or_create_balance, apply_delta
from settlement.services.ledger_service import to_money, ZERO

logger = logging.getLogger(__name__)


def compute_release_date(release_days: int, completed_at: datetime) -> datetime:
    """
    Calcula a data de liberação (D+N) de uma venda.

    Args:
        release_days (int): Dias de retenção
        completed_at (datetime): Data de conclusão do pedido

    Returns:
        datetime: Data a partir da qual o valor fica disponível
    """
    return completed_at + timedelta(days=int(release_days))


def _due_conditions(now: datetime):
    return [
        LedgerEntry.status == LedgerEntryStatus.PENDING,
        LedgerEntry.type.in_(HELD_ENTRY_TYPES),
        LedgerEntry.release_date.is_not(None),
        LedgerEntry.release_date <= now,
    ]


async def find_suppliers_with_due_entries(
    session: AsyncSession,
    now: datetime,
    after_supplier_id: int = 0,
    limit: int = 100
) -> List[int]:
    """
    Lista os fornecedores com lançamentos vencidos, em ordem de ID.

    Args:
        session (AsyncSession): Sessão do banco de dados
        now (datetime): Instante de referência
        after_supplier_id (int): Cursor (retorna apenas IDs maiores)
        limit (int): Quantidade máxima de fornecedores

    Returns:
        List[int]: IDs dos fornecedores
    """
    result = await session.execute(
        select(LedgerEntry.supplier_id)
        .where(and_(*_due_conditions(now), LedgerEntry.supplier_id > after_supplier_id))
        .group_by(LedgerEntry.supplier_id)
        .order_by(LedgerEntry.supplier_id)
        .limit(limit)
    )
    return [row[0] for row in result.all()]


async def release_due_entries(session: AsyncSession, supplier_id: int, now: datetime) -> Dict:
    """
    Libera os lançamentos vencidos de um fornecedor (sem commit).

    Deve ser executado sob o lock do fornecedor.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor
        now (datetime): Instante de referência

    Returns:
        Dict: released_amount (Decimal) e released_entries (int)
    """
    result = await session.execute(
        select(LedgerEntry)
        .where(and_(LedgerEntry.supplier_id == supplier_id, *_due_conditions(now)))
        .order_by(LedgerEntry.id)
    )
    entries = result.scalars().all()
    if not entries:
        return {"released_amount": ZERO, "released_entries": 0}

    amount = to_money(sum((to_money(entry.amount) for entry in entries), ZERO))
    for entry in entries:
        entry.status = LedgerEntryStatus.COMPLETED
        entry.updated_at = now

    balance = await get_or_create_balance(session, supplier_id, for_update=True)
    apply_delta(balance, wallet=amount, pending=-amount)
    await session.flush()

    log_financial_event(
        "BALANCE_RELEASED", supplier_id,
        amount=amount, entries=[entry.id for entry in entries]
    )
    return {"released_amount": amount, "released_entries": len(entries)}


async def sweep(
    engine,
    now: Optional[datetime] = None,
    batch_size: int = 100,
    time_budget: Optional[float] = None
) -> Dict:
    """
    Executa a varredura de liberação para todos os fornecedores com valores vencidos.

    Cada fornecedor é liberado em sua própria transação, sob o seu lock. A varredura
    para quando o tempo limite é atingido; nesse caso `complete` é False e a próxima
    execução continua do ponto em que esta parou (os já liberados são ignorados).

    Args:
        engine (SettlementEngine): Motor com o criador de sessões e os locks
        now (Optional[datetime]): Instante de referência (padrão: relógio do motor)
        batch_size (int): Fornecedores consultados por lote
        time_budget (Optional[float]): Tempo máximo, em segundos

    Returns:
        Dict: released_amount, released_entries, suppliers, failed e complete
    """
    now = now or engine.clock()
    started = time.monotonic()
    released_amount = ZERO
    released_entries = 0
    suppliers = 0
    failed: List[int] = []
    cursor = 0
    complete = True

    while True:
        async with engine.session_maker() as session:
            supplier_ids = await find_suppliers_with_due_entries(session, now, cursor, batch_size)
        if not supplier_ids:
            break

        for supplier_id in supplier_ids:
            cursor = supplier_id
            if time_budget is not None and time.monotonic() - started > time_budget:
                complete = False
                break
            try:
                async with engine.locks.hold(supplier_id):
                    async with engine.session_maker() as session, session.begin():
                        outcome = await release_due_entries(session, supplier_id, now)
            except Exception:
                # Um fornecedor com problema não interrompe a varredura
                logger.exception("Falha ao liberar saldo do fornecedor %s", supplier_id)
                failed.append(supplier_id)
                continue
            if outcome["released_entries"]:
                suppliers += 1
                released_entries += outcome["released_entries"]
                released_amount += outcome["released_amount"]

        if not complete or len(supplier_ids) < batch_size:
            break

    if failed:
        complete = False

    logger.info(
        "Varredura de liberação: %s lançamentos, R$ %s, %s fornecedores (completa=%s)",
        released_entries, released_amount, suppliers, complete
    )
    return {
        "released_amount": to_money(released_amount),
        "released_entries": released_entries,
        "suppliers": suppliers,
        "failed": failed,
        "complete": complete,
    }
