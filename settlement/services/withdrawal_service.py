# D:\Settlement\settlement\services\withdrawal_service.py
"""
withdrawal_service.py

Módulo responsável pelas solicitações de saque dos fornecedores.

Funcionalidades principais:
    - Criação de solicitação com validação em ordem e reserva atômica do valor
    - Aprovação (pagamento) e rejeição por administrador
    - Listagem de solicitações e consulta dos limites de saque

Regras de Negócio:
    - Validação, nesta ordem: valor positivo, valor mínimo, limite mensal de
      solicitações, saldo disponível (recalculado) e elegibilidade da conta
    - A solicitação e a reserva (PAYOUT PENDING) são criadas na mesma transação
    - Aprovar torna o PAYOUT COMPLETED e libera o bloqueio; rejeitar torna o PAYOUT
      REJECTED e devolve o valor ao saldo disponível, sem novo lançamento
    - Apenas solicitações PENDING podem ser processadas
    - Uma chave de idempotência repetida devolve a solicitação original

Dependências:
    - SQLAlchemy para persistência
    - settlement.services.ledger_service e balance_service para o razão e saldos
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.database import Supplier, SupplierFinancialStatus
from settlement.models.finance_models import (
    WithdrawalRequest, WithdrawalStatus, LedgerEntry, LedgerEntryType, LedgerEntryStatus
)
from settlement.services.audit_service import log_financial_event, record_admin_action
from settlement.services.balance_service import (
    compute_balances, get_or_create_balance, apply_delta
)
from settlement.services.errors import (
    InvalidAmount, BelowMinimum, LimitExceeded, InsufficientBalance,
    AccountNotEligible, InvalidEntry, NotFound
)
from settlement.services.ledger_service import append_entry, parse_money, to_money
from settlement.services.settings_service import resolve_terms, get_active_subscription

HISTORY_STATUSES = (WithdrawalStatus.PAID, WithdrawalStatus.REJECTED)


def month_start(now: datetime) -> datetime:
    """Retorna o primeiro instante do mês-calendário de `now`."""
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def count_requests_this_month(session: AsyncSession, supplier_id: int, now: datetime) -> int:
    """Conta as solicitações (de qualquer status) feitas no mês-calendário corrente."""
    result = await session.execute(
        select(func.count(WithdrawalRequest.id)).where(
            and_(
                WithdrawalRequest.supplier_id == supplier_id,
                WithdrawalRequest.requested_at >= month_start(now)
            )
        )
    )
    return result.scalar() or 0


async def get_withdrawal_limits(session: AsyncSession, supplier: Supplier, now: datetime) -> Dict:
    """
    Retorna os limites de saque vigentes do fornecedor.

    Returns:
        Dict: min, limitCount, usedCount e remaining
    """
    terms = await resolve_terms(session, supplier)
    used = await count_requests_this_month(session, supplier.id, now)
    return {
        "min": float(terms["min_withdrawal"]),
        "limitCount": terms["withdrawal_limit"],
        "usedCount": used,
        "remaining": max(terms["withdrawal_limit"] - used, 0),
    }


async def create_withdrawal_request(
    session: AsyncSession,
    supplier_id: int,
    amount,
    pix_key: Optional[str],
    now: datetime,
    idempotency_key: Optional[str] = None
) -> Tuple[WithdrawalRequest, bool]:
    """
    Cria uma solicitação de saque e reserva o valor (sem commit).

    Deve ser executada sob o lock do fornecedor.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor
        amount: Valor solicitado
        pix_key (Optional[str]): Chave PIX (padrão: chave cadastrada do fornecedor)
        now (datetime): Instante da solicitação
        idempotency_key (Optional[str]): Chave de idempotência do cliente

    Returns:
        Tuple[WithdrawalRequest, bool]: Solicitação e se foi criada agora

    Raises:
        InvalidAmount, BelowMinimum, LimitExceeded, InsufficientBalance,
        AccountNotEligible: Conforme a ordem de validação
        NotFound: Se o fornecedor não existir
    """
    supplier = await session.get(Supplier, supplier_id)
    if not supplier:
        raise NotFound(f"Fornecedor {supplier_id} não encontrado")

    if idempotency_key:
        result = await session.execute(
            select(WithdrawalRequest).where(
                and_(
                    WithdrawalRequest.supplier_id == supplier_id,
                    WithdrawalRequest.idempotency_key == idempotency_key
                )
            )
        )
        existing = result.scalar_one_or_none()
        if existing:
            return existing, False

    try:
        value = parse_money(amount)
    except InvalidEntry:
        raise InvalidAmount("Valor de saque inválido")
    if value <= 0:
        raise InvalidAmount("O valor do saque deve ser positivo")

    terms = await resolve_terms(session, supplier)
    if value < terms["min_withdrawal"]:
        raise BelowMinimum(f"O saque mínimo é R$ {terms['min_withdrawal']:.2f}")

    used = await count_requests_this_month(session, supplier_id, now)
    if used >= terms["withdrawal_limit"]:
        raise LimitExceeded(
            f"Limite de {terms['withdrawal_limit']} saques por mês atingido"
        )

    balances = await compute_balances(session, supplier_id)
    if value > balances["wallet_balance"]:
        raise InsufficientBalance(
            f"Saldo insuficiente: disponível R$ {balances['wallet_balance']:.2f}"
        )

    subscription = await get_active_subscription(session, supplier_id, now)
    if supplier.financial_status != SupplierFinancialStatus.ACTIVE or not subscription:
        raise AccountNotEligible("Conta não elegível para saque: situação financeira ou assinatura irregular")

    pix_key = (pix_key or supplier.pix_key or "").strip()
    if not pix_key:
        raise InvalidEntry("Chave PIX é obrigatória")

    balance = await get_or_create_balance(session, supplier_id, for_update=True)
    apply_delta(balance, wallet=-value, blocked=value)

    payout = await append_entry(
        session, supplier_id, LedgerEntryType.PAYOUT, -value,
        status=LedgerEntryStatus.PENDING,
        description=f"Saque via PIX ({pix_key})"[:255],
        created_at=now
    )
    request = WithdrawalRequest(
        supplier_id=supplier_id,
        amount=value,
        pix_key=pix_key,
        status=WithdrawalStatus.PENDING,
        requested_at=now,
        idempotency_key=idempotency_key,
        ledger_entry_id=payout.id
    )
    session.add(request)
    await session.flush()

    log_financial_event(
        "WITHDRAWAL_REQUESTED", supplier_id,
        request_id=request.id, amount=value, ledger_entry_id=payout.id
    )
    return request, True


async def get_withdrawal_request(session: AsyncSession, request_id: int) -> WithdrawalRequest:
    request = await session.get(WithdrawalRequest, request_id)
    if not request:
        raise NotFound(f"Solicitação de saque {request_id} não encontrada")
    return request


async def _linked_payout(session: AsyncSession, request: WithdrawalRequest) -> LedgerEntry:
    entry = await session.get(LedgerEntry, request.ledger_entry_id) if request.ledger_entry_id else None
    if not entry or entry.status != LedgerEntryStatus.PENDING:
        raise InvalidEntry(f"Reserva da solicitação {request.id} inconsistente")
    return entry


async def approve_withdrawal(
    session: AsyncSession,
    request_id: int,
    admin: Optional[Dict],
    now: datetime
) -> WithdrawalRequest:
    """
    Aprova (paga) uma solicitação de saque PENDING (sem commit).

    Args:
        session (AsyncSession): Sessão do banco de dados
        request_id (int): ID da solicitação
        admin (Optional[Dict]): Administrador responsável
        now (datetime): Instante do processamento

    Returns:
        WithdrawalRequest: Solicitação paga

    Raises:
        NotFound: Se a solicitação não existir
        InvalidEntry: Se a solicitação não estiver PENDING
    """
    request = await get_withdrawal_request(session, request_id)
    if request.status != WithdrawalStatus.PENDING:
        raise InvalidEntry(f"Solicitação já processada ({request.status.value})")

    payout = await _linked_payout(session, request)
    payout.status = LedgerEntryStatus.COMPLETED
    payout.updated_at = now

    balance = await get_or_create_balance(session, request.supplier_id, for_update=True)
    apply_delta(balance, blocked=-to_money(request.amount))

    request.status = WithdrawalStatus.PAID
    request.processed_at = now
    request.processed_by = (admin or {}).get("id")
    await session.flush()

    await record_admin_action(
        session, admin, "WITHDRAWAL_APPROVED", request.id,
        details={"supplier_id": request.supplier_id, "amount": request.amount}
    )
    log_financial_event(
        "WITHDRAWAL_PAID", request.supplier_id,
        request_id=request.id, amount=request.amount, ledger_entry_id=payout.id
    )
    return request


async def reject_withdrawal(
    session: AsyncSession,
    request_id: int,
    reason: str,
    admin: Optional[Dict],
    now: datetime
) -> WithdrawalRequest:
    """
    Rejeita uma solicitação de saque PENDING, devolvendo o valor ao saldo disponível.

    Args:
        session (AsyncSession): Sessão do banco de dados
        request_id (int): ID da solicitação
        reason (str): Motivo da rejeição (obrigatório)
        admin (Optional[Dict]): Administrador responsável
        now (datetime): Instante do processamento

    Returns:
        WithdrawalRequest: Solicitação rejeitada

    Raises:
        InvalidEntry: Se faltar motivo ou a solicitação não estiver PENDING
        NotFound: Se a solicitação não existir
    """
    if not reason or not reason.strip():
        raise InvalidEntry("O motivo da rejeição é obrigatório")

    request = await get_withdrawal_request(session, request_id)
    if request.status != WithdrawalStatus.PENDING:
        raise InvalidEntry(f"Solicitação já processada ({request.status.value})")

    payout = await _linked_payout(session, request)
    payout.status = LedgerEntryStatus.REJECTED
    payout.updated_at = now

    amount = to_money(request.amount)
    balance = await get_or_create_balance(session, request.supplier_id, for_update=True)
    apply_delta(balance, wallet=amount, blocked=-amount)

    request.status = WithdrawalStatus.REJECTED
    request.reason = reason.strip()
    request.processed_at = now
    request.processed_by = (admin or {}).get("id")
    await session.flush()

    await record_admin_action(
        session, admin, "WITHDRAWAL_REJECTED", request.id,
        details={"supplier_id": request.supplier_id, "amount": amount}, reason=request.reason
    )
    log_financial_event(
        "WITHDRAWAL_REJECTED", request.supplier_id,
        request_id=request.id, amount=amount, reason=request.reason
    )
    return request


async def list_withdrawal_requests(
    session: AsyncSession,
    status: Optional[str] = None,
    supplier_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 20
) -> Tuple[List[WithdrawalRequest], int]:
    """
    Lista solicitações de saque, mais recentes primeiro.

    Args:
        status (Optional[str]): PENDING, PAID, REJECTED, HISTORY (PAID + REJECTED) ou ALL
        supplier_id (Optional[int]): Filtro por fornecedor
        start_date / end_date (Optional[datetime]): Período da solicitação

    Returns:
        Tuple[List[WithdrawalRequest], int]: Solicitações e total

    Raises:
        InvalidEntry: Se o status for desconhecido
    """
    conditions = []
    status = (status or "ALL").upper()
    if status == "HISTORY":
        conditions.append(WithdrawalRequest.status.in_(HISTORY_STATUSES))
    elif status != "ALL":
        try:
            conditions.append(WithdrawalRequest.status == WithdrawalStatus(status))
        except ValueError:
            raise InvalidEntry(f"Status de saque desconhecido: {status}")
    if supplier_id is not None:
        conditions.append(WithdrawalRequest.supplier_id == supplier_id)
    if start_date:
        conditions.append(WithdrawalRequest.requested_at >= start_date)
    if end_date:
        conditions.append(WithdrawalRequest.requested_at <= end_date)

    query = select(WithdrawalRequest)
    count_query = select(func.count(WithdrawalRequest.id))
    if conditions:
        query = query.where(and_(*conditions))
        count_query = count_query.where(and_(*conditions))

    total_count = (await session.execute(count_query)).scalar() or 0
    result = await session.execute(
        query.order_by(WithdrawalRequest.requested_at.desc(), WithdrawalRequest.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return result.scalars().all(), total_count


def serialize_request(request: WithdrawalRequest, supplier_name: Optional[str] = None) -> Dict:
    """Converte uma solicitação em dicionário serializável em JSON."""
    data = {
        "id": request.id,
        "supplierId": request.supplier_id,
        "amount": float(request.amount),
        "pixKey": request.pix_key,
        "status": request.status.value,
        "requestedAt": request.requested_at.isoformat() if request.requested_at else None,
        "processedAt": request.processed_at.isoformat() if request.processed_at else None,
        "processedBy": request.processed_by,
        "reason": request.reason,
        "ledgerEntryId": request.ledger_entry_id,
    }
    if supplier_name is not None:
        data["supplierName"] = supplier_name
    return data
