# D:\Settlement\settlement\services\settings_service.py
"""
settings_service.py

Módulo responsável pelas configurações financeiras globais e pela resolução das
regras efetivas de cada fornecedor (plano ativo sobrescrevendo os padrões).

Funcionalidades principais:
    - Leitura (com criação dos padrões) e atualização de FinancialSettings
    - Busca da assinatura ATIVA de um fornecedor
    - Resolução das regras efetivas (comissão, retenção, saque mínimo, limite, ciclo)

Regras de Negócio:
    - Cada campo do plano vale apenas quando preenchido; caso contrário vale o padrão global
    - Dias de retenção iguais a zero são válidos (liberação imediata)
    - Saque mínimo deve ser positivo, limite mensal maior que zero e comissão entre 0 e 100

Dependências:
    - SQLAlchemy para persistência
    - settlement.services.audit_service para registro das alterações
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import TIMEZONE
from settlement.models.database import Plan, Supplier, SupplierSubscription, SubscriptionStatus
from settlement.models.finance_models import FinancialSettings
from settlement.services.audit_service import record_admin_action
from settlement.services.errors import InvalidEntry

DEFAULT_CYCLE_DAYS = 30


async def get_settings(session: AsyncSession) -> FinancialSettings:
    """
    Obtém as configurações globais, criando o registro padrão se necessário.

    Args:
        session (AsyncSession): Sessão do banco de dados

    Returns:
        FinancialSettings: Configurações vigentes
    """
    result = await session.execute(select(FinancialSettings).order_by(FinancialSettings.id).limit(1))
    settings = result.scalar_one_or_none()

    if not settings:
        settings = FinancialSettings(
            default_release_days=14,
            default_min_withdrawal=Decimal("50.00"),
            default_withdrawal_limit=4,
            default_commission_percent=Decimal("10.00"),
            withdrawal_sla_days=3,
            updated_at=TIMEZONE()
        )
        session.add(settings)
        await session.flush()

    return settings


def parse_int_field(data: Dict, field: str, minimum: int) -> Optional[int]:
    if field not in data or data[field] is None:
        return None
    try:
        value = int(data[field])
    except (TypeError, ValueError):
        raise InvalidEntry(f"Valor inválido para {field}")
    if value < minimum:
        raise InvalidEntry(f"{field} deve ser maior ou igual a {minimum}")
    return value


def parse_decimal_field(data: Dict, field: str) -> Optional[Decimal]:
    if field not in data or data[field] is None:
        return None
    try:
        value = Decimal(str(data[field]))
    except (InvalidOperation, ValueError):
        raise InvalidEntry(f"Valor inválido para {field}")
    if not value.is_finite():
        raise InvalidEntry(f"Valor inválido para {field}")
    return value


async def update_settings(session: AsyncSession, data: Dict, admin: Optional[Dict] = None) -> FinancialSettings:
    """
    Atualiza as configurações globais com validação.

    Args:
        session (AsyncSession): Sessão do banco de dados
        data (Dict): Campos a alterar (default_release_days, default_min_withdrawal,
            default_withdrawal_limit, default_commission_percent, withdrawal_sla_days)
        admin (Optional[Dict]): Administrador responsável

    Returns:
        FinancialSettings: Configurações atualizadas

    Raises:
        InvalidEntry: Se algum valor for inválido
    """
    settings = await get_settings(session)

    release_days = parse_int_field(data, "default_release_days", 0)
    withdrawal_limit = parse_int_field(data, "default_withdrawal_limit", 1)
    sla_days = parse_int_field(data, "withdrawal_sla_days", 1)
    min_withdrawal = parse_decimal_field(data, "default_min_withdrawal")
    commission = parse_decimal_field(data, "default_commission_percent")

    if min_withdrawal is not None and min_withdrawal <= 0:
        raise InvalidEntry("default_min_withdrawal deve ser positivo")
    if commission is not None and not (Decimal("0") <= commission <= Decimal("100")):
        raise InvalidEntry("default_commission_percent deve estar entre 0 e 100")

    changes = {}
    for field, value in (
        ("default_release_days", release_days),
        ("default_withdrawal_limit", withdrawal_limit),
        ("withdrawal_sla_days", sla_days),
        ("default_min_withdrawal", min_withdrawal),
        ("default_commission_percent", commission),
    ):
        if value is not None:
            changes[field] = {"from": getattr(settings, field), "to": value}
            setattr(settings, field, value)

    settings.updated_at = TIMEZONE()
    await session.flush()

    await record_admin_action(session, admin, "SETTINGS_UPDATED", settings.id, details=changes)
    return settings


async def get_active_subscription(
    session: AsyncSession,
    supplier_id: int,
    now: Optional[datetime] = None
) -> Optional[SupplierSubscription]:
    """
    Retorna a assinatura ATIVA mais recente do fornecedor.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier_id (int): ID do fornecedor
        now (Optional[datetime]): Se informado, descarta assinaturas já vencidas

    Returns:
        Optional[SupplierSubscription]: Assinatura ativa ou None
    """
    conditions = [
        SupplierSubscription.supplier_id == supplier_id,
        SupplierSubscription.status == SubscriptionStatus.ATIVA,
    ]
    if now is not None:
        conditions.append(SupplierSubscription.end_date >= now)

    result = await session.execute(
        select(SupplierSubscription)
        .where(and_(*conditions))
        .order_by(SupplierSubscription.start_date.desc(), SupplierSubscription.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_terms(session: AsyncSession, supplier: Supplier) -> Dict:
    """
    Resolve as regras financeiras efetivas de um fornecedor.

    O plano da assinatura ATIVA tem prioridade; na falta dela vale o plano atual
    do fornecedor; cada campo nulo cai para o padrão global.

    Args:
        session (AsyncSession): Sessão do banco de dados
        supplier (Supplier): Fornecedor

    Returns:
        Dict: commission_percent, release_days, min_withdrawal, withdrawal_limit,
            cycle_days, monthly_price e plan_id
    """
    settings = await get_settings(session)

    plan = None
    subscription = await get_active_subscription(session, supplier.id)
    plan_id = subscription.plan_id if subscription else supplier.plan_id
    if plan_id is not None:
        plan = await session.get(Plan, plan_id)

    def pick(plan_value, default):
        return plan_value if plan_value is not None else default

    return {
        "plan_id": plan.id if plan else None,
        "commission_percent": Decimal(pick(plan.commission_percent if plan else None,
                                           settings.default_commission_percent)),
        "release_days": int(pick(plan.release_days if plan else None, settings.default_release_days)),
        "min_withdrawal": Decimal(pick(plan.min_withdrawal if plan else None, settings.default_min_withdrawal)),
        "withdrawal_limit": int(pick(plan.withdrawal_limit if plan else None, settings.default_withdrawal_limit)),
        "cycle_days": int(plan.cycle_days) if plan and plan.cycle_days else DEFAULT_CYCLE_DAYS,
        "monthly_price": Decimal(plan.monthly_price) if plan else Decimal("0.00"),
    }
