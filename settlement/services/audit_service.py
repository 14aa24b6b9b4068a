# D:\Settlement\settlement\services\audit_service.py
"""
audit_service.py

Módulo de auditoria do motor de liquidação.

Funcionalidades principais:
    - Emissão de eventos de auditoria financeira em JSON (uma linha por evento)
      no logger `settlement.financial_audit`, opcionalmente espelhados em arquivo
    - Registro e consulta do log de ações administrativas (AdminLog)

Regras de Negócio:
    - Toda ação administrativa (aprovação/rejeição de saque, ajuste manual,
      alteração de configurações, criação de plano) gera um AdminLog
    - O log de auditoria financeira nunca interrompe a operação de origem

Dependências:
    - logging (biblioteca padrão) para emissão dos eventos
    - SQLAlchemy para persistência do AdminLog
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Any

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import FINANCIAL_AUDIT_LOG, TIMEZONE
from settlement.models.finance_models import AdminLog

audit_logger = logging.getLogger("settlement.financial_audit")

if FINANCIAL_AUDIT_LOG:
    _handler = logging.FileHandler(FINANCIAL_AUDIT_LOG, encoding="utf-8")
    _handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(_handler)

FINANCIAL_EVENTS = (
    "SALE_RECORDED",
    "REFUND_PROCESSED",
    "BALANCE_RELEASED",
    "WITHDRAWAL_REQUESTED",
    "WITHDRAWAL_PAID",
    "WITHDRAWAL_REJECTED",
    "SUBSCRIPTION_PAID",
    "ADJUSTMENT_POSTED",
    "LEDGER_ENTRY_CREATED",
)


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return str(value)


def log_financial_event(event_type: str, supplier_id: Optional[int], **data: Any) -> None:
    """
    Emite um evento de auditoria financeira como uma linha JSON.

    Args:
        event_type (str): Tipo do evento (ver FINANCIAL_EVENTS).
        supplier_id (Optional[int]): Fornecedor afetado.
        **data: Campos adicionais do evento.

    Raises:
        ValueError: Se o tipo não estiver em FINANCIAL_EVENTS
    """
    if event_type not in FINANCIAL_EVENTS:
        raise ValueError(f"Evento financeiro desconhecido: {event_type}")
    event = {
        "timestamp": TIMEZONE().isoformat(),
        "type": event_type,
        "supplier_id": supplier_id,
        "data": data,
    }
    audit_logger.info(json.dumps(event, default=_json_default, ensure_ascii=False))


async def record_admin_action(
    session: AsyncSession,
    admin: Optional[Dict],
    action: str,
    target_id: Any = None,
    details: Optional[Dict] = None,
    reason: Optional[str] = None
) -> AdminLog:
    """
    Registra uma ação administrativa na sessão corrente (sem commit).

    Args:
        session (AsyncSession): Sessão do banco de dados
        admin (Optional[Dict]): Usuário autenticado ({"id", "name"})
        action (str): Nome da ação
        target_id (Any): Alvo da ação
        details (Optional[Dict]): Detalhes serializáveis
        reason (Optional[str]): Justificativa

    Returns:
        AdminLog: Registro criado
    """
    admin = admin or {}
    entry = AdminLog(
        admin_id=admin.get("id"),
        admin_name=admin.get("name"),
        action=action,
        target_id=str(target_id) if target_id is not None else None,
        details=json.dumps(details, default=_json_default, ensure_ascii=False) if details else None,
        reason=reason,
        created_at=TIMEZONE()
    )
    session.add(entry)
    await session.flush()
    return entry


async def list_admin_logs(
    session: AsyncSession,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 50
) -> Tuple[List[AdminLog], int]:
    """
    Lista o log de ações administrativas, mais recentes primeiro.

    Returns:
        Tuple[List[AdminLog], int]: Registros da página e total
    """
    conditions = []
    if action:
        conditions.append(AdminLog.action == action)
    if start_date:
        conditions.append(AdminLog.created_at >= start_date)
    if end_date:
        conditions.append(AdminLog.created_at <= end_date)

    query = select(AdminLog)
    count_query = select(func.count(AdminLog.id))
    if conditions:
        query = query.where(and_(*conditions))
        count_query = count_query.where(and_(*conditions))

    total_count = (await session.execute(count_query)).scalar() or 0
    result = await session.execute(
        query.order_by(AdminLog.created_at.desc(), AdminLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return result.scalars().all(), total_count
