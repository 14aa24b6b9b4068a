# D:\Settlement\settlement\services\ledger_service.py
"""
ledger_service.py

Módulo responsável pelo razão (ledger) financeiro dos fornecedores.

Funcionalidades principais:
    - Inclusão validada de lançamentos (único primitivo de escrita do histórico)
    - Consulta do extrato com filtros por tipo, status e período
    - Normalização de valores monetários

Regras de Negócio:
    - Valor zero, tipo desconhecido ou fornecedor inexistente invalidam o lançamento
    - SALE_REVENUE é crédito (positivo); SALE_COMMISSION, SUBSCRIPTION_PAYMENT e
      PAYOUT são débitos (negativos); ADJUSTMENT aceita qualquer sinal
    - Lançamentos nunca são removidos; apenas o status transita
      (PENDING -> COMPLETED ou PENDING -> REJECTED)

Dependências:
    - SQLAlchemy para persistência
    - settlement.models.finance_models para o modelo LedgerEntry
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import List, Optional, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import TIMEZONE
from settlement.models.database import Supplier
from settlement.models.finance_models import AdjustmentSource, LedgerEntry, LedgerEntryType, LedgerEntryStatus
from settlement.services.audit_service import log_financial_event
from settlement.services.errors import InvalidEntry

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

CREDIT_TYPES = (LedgerEntryType.SALE_REVENUE,)
DEBIT_TYPES = (
    LedgerEntryType.SALE_COMMISSION,
    LedgerEntryType.SUBSCRIPTION_PAYMENT,
    LedgerEntryType.PAYOUT,
)


def to_money(value) -> Decimal:
    """
    Converte um valor para Decimal com duas casas (arredondamento half-up).

    Args:
        value: int, float, str ou Decimal

    Returns:
        Decimal: Valor quantizado em centavos
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_money(value) -> Decimal:
    """Converte entrada externa em dinheiro, levantando InvalidEntry se não for numérica."""
    try:
        return to_money(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidEntry(f"Valor monetário inválido: {value!r}")


def is_credit(entry_type: LedgerEntryType, amount: Decimal) -> bool:
    """Indica se o lançamento entra como crédito no extrato."""
    if entry_type in CREDIT_TYPES:
        return True
    if entry_type == LedgerEntryType.ADJUSTMENT:
        return amount > 0
    return False


async def append_entry(
    session: AsyncSession,
    supplier_id: int,
    entry_type,
    amount,
    status: LedgerEntryStatus = LedgerEntryStatus.COMPLETED,
    release_date: Optional[datetime] = None,
    order_id: Optional[str] = None,
    description: Optional[str] = None,
    created_at: Optional[datetime] = None,
    source=None
) -> LedgerEntry:
    """
    Inclui um lançamento no razão do fornecedor (sem commit).

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor
        entry_type: Tipo do lançamento (LedgerEntryType ou texto equivalente)
        amount: Valor com sinal
        status (LedgerEntryStatus): Status inicial
        release_date (Optional[datetime]): Data de liberação (vendas retidas)
        order_id (Optional[str]): Pedido de origem
        description (Optional[str]): Descrição
        created_at (Optional[datetime]): Data do evento
        source: Origem do ajuste (AdjustmentSource); ADJUSTMENT sem origem vale como ADMIN

    Returns:
        LedgerEntry: Lançamento criado

    Raises:
        InvalidEntry: Se o valor for zero, o tipo desconhecido, o sinal incompatível
            com o tipo, origem em lançamento que não é ajuste ou o fornecedor inexistente
    """
    try:
        entry_type = LedgerEntryType(entry_type)
    except ValueError:
        raise InvalidEntry(f"Tipo de lançamento desconhecido: {entry_type}")

    amount = parse_money(amount)
    if amount == 0:
        raise InvalidEntry("O valor do lançamento não pode ser zero")
    if entry_type in CREDIT_TYPES and amount < 0:
        raise InvalidEntry(f"{entry_type.value} deve ser um crédito (valor positivo)")
    if entry_type in DEBIT_TYPES and amount > 0:
        raise InvalidEntry(f"{entry_type.value} deve ser um débito (valor negativo)")
    if entry_type == LedgerEntryType.ADJUSTMENT:
        try:
            source = AdjustmentSource(source or AdjustmentSource.ADMIN)
        except ValueError:
            raise InvalidEntry(f"Origem de ajuste desconhecida: {source}")
    elif source is not None:
        raise InvalidEntry("Apenas ajustes (ADJUSTMENT) têm origem")

    supplier = await session.get(Supplier, supplier_id)
    if not supplier:
        raise InvalidEntry(f"Fornecedor {supplier_id} não encontrado")

    entry = LedgerEntry(
        supplier_id=supplier_id,
        type=entry_type,
        amount=amount,
        status=status,
        release_date=release_date,
        order_id=str(order_id) if order_id is not None else None,
        description=description,
        source=source,
        created_at=created_at or TIMEZONE()
    )
    session.add(entry)
    await session.flush()

    log_financial_event(
        "LEDGER_ENTRY_CREATED", supplier_id,
        entry_id=entry.id, entry_type=entry_type, amount=amount, status=status
    )
    return entry


async def list_for_supplier(
    session: AsyncSession,
    supplier_id: int,
    entry_type: Optional[str] = None,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 20
) -> Tuple[List[LedgerEntry], int]:
    """
    Lista os lançamentos de um fornecedor, mais recentes primeiro.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor
        entry_type (Optional[str]): Filtro por tipo
        status (Optional[str]): Filtro por status
        start_date (Optional[datetime]): Data inicial
        end_date (Optional[datetime]): Data final
        page (int): Página
        page_size (int): Tamanho da página

    Returns:
        Tuple[List[LedgerEntry], int]: Lançamentos e total

    Raises:
        InvalidEntry: Se o filtro de tipo ou status for desconhecido
    """
    conditions = [LedgerEntry.supplier_id == supplier_id]

    if entry_type:
        try:
            conditions.append(LedgerEntry.type == LedgerEntryType(entry_type))
        except ValueError:
            raise InvalidEntry(f"Tipo de lançamento desconhecido: {entry_type}")
    if status:
        try:
            conditions.append(LedgerEntry.status == LedgerEntryStatus(status))
        except ValueError:
            raise InvalidEntry(f"Status de lançamento desconhecido: {status}")
    if start_date:
        conditions.append(LedgerEntry.created_at >= start_date)
    if end_date:
        conditions.append(LedgerEntry.created_at <= end_date)

    count_result = await session.execute(
        select(func.count(LedgerEntry.id)).where(and_(*conditions))
    )
    total_count = count_result.scalar() or 0

    result = await session.execute(
        select(LedgerEntry)
        .where(and_(*conditions))
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return result.scalars().all(), total_count


def serialize_entry(entry: LedgerEntry) -> dict:
    """Converte um lançamento em dicionário serializável em JSON."""
    return {
        "id": entry.id,
        "supplierId": entry.supplier_id,
        "type": entry.type.value,
        "amount": float(entry.amount),
        "isCredit": is_credit(entry.type, entry.amount),
        "status": entry.status.value,
        "releaseDate": entry.release_date.isoformat() if entry.release_date else None,
        "orderId": entry.order_id,
        "description": entry.description,
        "source": entry.source.value if entry.source else None,
        "createdAt": entry.created_at.isoformat() if entry.created_at else None,
    }
